"""
JSON-RPC client for the Sui full node.

Implements the RemoteLedgerQuery interface consumed by the event poller
and the tracker: balances, transfer event queries and a health probe.
"""
import asyncio
import itertools
import logging
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from core.errors import NetworkError, ParseError, RemoteQueryError, TimeoutError
from core.models import NATIVE_TOKEN, RawLedgerEvent

logger = logging.getLogger(__name__)

MAINNET_RPC_URL = "https://fullnode.mainnet.sui.io:443"


@runtime_checkable
class RemoteLedgerQuery(Protocol):
    """What the tracker needs from the remote ledger."""

    async def get_balance(self, address: str, token_type: str = NATIVE_TOKEN) -> int:
        ...

    async def query_events(self, address: str, limit: int) -> List[RawLedgerEvent]:
        ...

    async def is_healthy(self) -> bool:
        ...


class SuiClient:
    """
    Async JSON-RPC client over a shared aiohttp session.

    Transport failures raise NetworkError, deadline overruns raise
    TimeoutError and RPC error objects raise RemoteQueryError, all of
    which the poller's retry policy treats as retriable.
    """

    def __init__(self, rpc_url: str = MAINNET_RPC_URL, timeout_seconds: float = 30):
        """Initialize the client. The HTTP session is opened lazily."""
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def start(self):
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "SuiClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _rpc_call(self, method: str, params: Any) -> Any:
        """Send a single JSON-RPC request and return its result field."""
        await self.start()
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            async with self._session.post(
                self.rpc_url,
                json=request,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status != 200:
                    raise NetworkError(f"{method} failed with HTTP {response.status}")
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise TimeoutError(f"{method} timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} request failed: {e}")
        except ValueError as e:
            raise ParseError(f"{method} returned invalid JSON: {e}")

        if not isinstance(data, dict):
            raise ParseError(f"{method} returned an unexpected payload")

        error = data.get("error")
        if error:
            raise RemoteQueryError(
                f"RPC error {error.get('code')}: {error.get('message')}"
            )

        if "result" not in data or data["result"] is None:
            raise RemoteQueryError(f"No result in {method} response")

        return data["result"]

    async def get_balance(self, address: str, token_type: str = NATIVE_TOKEN) -> int:
        """Total balance of one coin type for an address."""
        result = await self._rpc_call("suix_getBalance", [address, token_type])
        try:
            return int(result["totalBalance"])
        except (KeyError, TypeError, ValueError):
            raise ParseError(f"Invalid balance format for {address}")

    async def get_all_balances(self, address: str) -> List[Tuple[str, int]]:
        """All coin balances for an address as (coin_type, total) pairs."""
        result = await self._rpc_call("suix_getAllBalances", [address])
        balances = []
        for entry in result or []:
            try:
                balances.append((entry["coinType"], int(entry["totalBalance"])))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping malformed balance entry for {address}: {entry}")
        return balances

    async def query_events(self, address: str, limit: int) -> List[RawLedgerEvent]:
        """
        Most recent events sent by an address, newest first.

        Records that do not even have an event id and sender are skipped
        here; transfer-level parsing happens in the poller.
        """
        params = [{"Sender": address}, None, limit, True]
        result = await self._rpc_call("suix_queryEvents", params)

        raw_events = result.get("data", []) if isinstance(result, dict) else result
        events = []
        for raw in raw_events or []:
            try:
                events.append(RawLedgerEvent.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable event for {address}: {e.error_count()} errors")

        return events

    async def get_latest_checkpoint(self) -> int:
        result = await self._rpc_call("sui_getLatestCheckpointSequenceNumber", [])
        try:
            return int(result)
        except (TypeError, ValueError):
            raise ParseError(f"Invalid checkpoint sequence number: {result}")

    async def is_healthy(self) -> bool:
        """True if the node answers a checkpoint query."""
        try:
            await self.get_latest_checkpoint()
            return True
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False
