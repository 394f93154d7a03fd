"""
Shared fixtures for transfer tracker tests.
"""
from typing import Dict, List, Optional

import pytest

from core.models import NATIVE_TOKEN, RawLedgerEvent, TransferEvent

ADDRESS_A = "0x" + "a" * 64
ADDRESS_B = "0x" + "b" * 64
ADDRESS_C = "0x" + "c" * 64


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeLedgerClient:
    """In-memory RemoteLedgerQuery with scripted failures."""

    def __init__(self):
        self.events: Dict[str, List[RawLedgerEvent]] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.balances: Dict[str, int] = {}
        self.healthy = True
        self.calls: List[tuple] = []
        self.closed = False

    async def query_events(self, address: str, limit: int) -> List[RawLedgerEvent]:
        self.calls.append((address, limit))
        pending = self.failures.get(address)
        if pending:
            raise pending.pop(0)
        events = sorted(self.events.get(address, []), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def get_balance(self, address: str, token_type: str = NATIVE_TOKEN) -> int:
        return self.balances.get(address, 0)

    async def is_healthy(self) -> bool:
        return self.healthy

    async def close(self):
        self.closed = True


def build_raw(
    tx_digest: str,
    sender: str,
    recipient: Optional[str],
    amount,
    timestamp: int,
    seq: int = 0,
    token_type: Optional[str] = None,
) -> RawLedgerEvent:
    """Raw event in the node's camelCase shape."""
    value = {}
    if recipient is not None:
        value["recipient"] = recipient
    if amount is not None:
        value["amount"] = amount
    if token_type is not None:
        value["type"] = token_type
    return RawLedgerEvent.model_validate({
        "id": {"txDigest": tx_digest, "eventSeq": seq},
        "packageId": "0x2",
        "transactionModule": "pay",
        "sender": sender,
        "timestampMs": str(timestamp * 1000),
        "parsedJson": {"value": value},
    })


def build_event(
    tx_id: str = "tx1",
    sender: str = ADDRESS_A,
    recipient: str = ADDRESS_B,
    amount: int = 1_000_000_000,
    timestamp: int = 1000,
    token_type: str = NATIVE_TOKEN,
) -> TransferEvent:
    return TransferEvent(
        id=tx_id,
        sender=sender,
        recipient=recipient,
        amount=amount,
        token_type=token_type,
        timestamp=timestamp,
    )


async def no_sleep(_seconds: float):
    return None


@pytest.fixture
def address_a() -> str:
    return ADDRESS_A


@pytest.fixture
def address_b() -> str:
    return ADDRESS_B


@pytest.fixture
def address_c() -> str:
    return ADDRESS_C


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_client() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def make_raw():
    return build_raw


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def instant_sleep():
    return no_sleep
