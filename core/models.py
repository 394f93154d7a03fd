"""
Pydantic models for transfer tracking data structures.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

MAX_U64 = 2 ** 64 - 1
NATIVE_TOKEN = "0x2::sui::SUI"


class TransactionStatus(str, Enum):
    """Transaction status enumeration."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class ExportFormat(str, Enum):
    """Ledger export format."""
    JSON = "json"
    CSV = "csv"


class WatermarkStrategy(str, Enum):
    """How far a successful poll moves an address's watermark."""
    POLL_TIME = "poll_time"  # wall-clock time the poll started
    MAX_EVENT = "max_event"  # newest applied event timestamp


class EventId(BaseModel):
    """Identity of a raw event on the network."""
    model_config = ConfigDict(populate_by_name=True)

    tx_digest: str = Field(validation_alias=AliasChoices("tx_digest", "txDigest"))
    event_seq: int = Field(default=0, validation_alias=AliasChoices("event_seq", "eventSeq"))


class RawLedgerEvent(BaseModel):
    """Event record as returned by the remote ledger query service."""
    model_config = ConfigDict(populate_by_name=True)

    id: EventId
    package_id: str = Field(default="", validation_alias=AliasChoices("package_id", "packageId"))
    transaction_module: str = Field(
        default="", validation_alias=AliasChoices("transaction_module", "transactionModule")
    )
    sender: str
    timestamp: int = 0  # unix seconds
    parsed_json: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("parsed_json", "parsedJson")
    )

    @model_validator(mode="before")
    @classmethod
    def _timestamp_from_millis(cls, data: Any) -> Any:
        # The node reports "timestampMs" as a string of milliseconds
        if isinstance(data, dict) and "timestamp" not in data and data.get("timestampMs") is not None:
            data = dict(data)
            data["timestamp"] = int(data["timestampMs"]) // 1000
        return data


class TransferEvent(BaseModel):
    """A parsed transfer event. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    recipient: str
    amount: int = Field(ge=0, le=MAX_U64)
    token_type: str = NATIVE_TOKEN
    timestamp: int = Field(ge=0)  # unix seconds
    sequence_number: int = 0
    package_id: str = ""
    transaction_module: str = ""
    event_type: str = "transfer"


class Transaction(BaseModel):
    """Ledger record of an applied transfer event."""
    id: str
    sender: str
    recipient: str
    amount: int
    token_type: str = NATIVE_TOKEN
    timestamp: int
    sequence_number: int = 0
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None
    status: TransactionStatus = TransactionStatus.SUCCESS

    @classmethod
    def from_event(cls, event: TransferEvent) -> "Transaction":
        return cls(
            id=event.id,
            sender=event.sender,
            recipient=event.recipient,
            amount=event.amount,
            token_type=event.token_type,
            timestamp=event.timestamp,
            sequence_number=event.sequence_number,
        )


class ProcessedTransaction(BaseModel):
    """Result of applying one event to the ledger."""
    transaction: Transaction
    sender_balance_change: int
    receiver_balance_change: int
    processing_time_ms: float


class AddressStats(BaseModel):
    """Per-address aggregate derived from applied transactions."""
    total_transactions: int = 0
    total_sent: int = 0
    total_received: int = 0
    first_transaction: Optional[int] = None
    last_transaction: Optional[int] = None
    average_transaction_amount: int = 0
    largest_transaction: int = 0
    smallest_transaction: Optional[int] = None

    def record(self, amount: int, timestamp: int, sent: bool) -> None:
        """Fold one transaction side (sent or received) into the aggregate."""
        self.total_transactions += 1
        if sent:
            self.total_sent = min(self.total_sent + amount, MAX_U64)
        else:
            self.total_received = min(self.total_received + amount, MAX_U64)

        self.largest_transaction = max(self.largest_transaction, amount)
        if self.smallest_transaction is None or amount < self.smallest_transaction:
            self.smallest_transaction = amount

        if self.first_transaction is None or timestamp < self.first_transaction:
            self.first_transaction = timestamp
        if self.last_transaction is None or timestamp > self.last_transaction:
            self.last_transaction = timestamp

        self.average_transaction_amount = (
            (self.total_sent + self.total_received) // self.total_transactions
        )

    @classmethod
    def replay(cls, address: str, transactions: Iterable[Transaction]) -> "AddressStats":
        """Recompute stats for an address from its transactions, oldest first."""
        stats = cls()
        for tx in sorted(transactions, key=lambda t: t.timestamp):
            if tx.sender == address:
                stats.record(tx.amount, tx.timestamp, sent=True)
            if tx.recipient == address:
                stats.record(tx.amount, tx.timestamp, sent=False)
        return stats


class BalanceSnapshot(BaseModel):
    """Balance of an address right after one transaction."""
    timestamp: int
    balance: int
    transaction_id: Optional[str] = None


class BalanceHistory(BaseModel):
    """Balance evolution reconstructed from retained history."""
    address: str
    history: List[BalanceSnapshot] = Field(default_factory=list)


class ProcessorStats(BaseModel):
    """Ledger-wide totals."""
    total_addresses: int
    total_transactions: int
    total_volume: int
    max_history_records: int


class MonitorStats(BaseModel):
    """Event poller statistics."""
    total_events_processed: int
    events_per_second: float
    last_event_time: Optional[datetime] = None
    monitored_addresses: int
    errors_count: int
    parse_errors_count: int = 0
    polls_completed: int = 0


class TrackerStats(BaseModel):
    """Process-level counters kept by the tracker."""
    total_events_processed: int = 0
    total_transactions_processed: int = 0
    total_alerts_sent: int = 0
    total_errors: int = 0
    addresses_monitored: int = 0
    uptime_seconds: int = 0
    start_time: datetime
