"""
In-memory ledger: balances, bounded transaction history and per-address stats.

apply_event() is the only mutator. One asyncio.Lock covers the whole
mutation for an event and every read, and no I/O is awaited while it is
held, so readers never see a half-applied event.
"""
import asyncio
import csv
import io
import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from core.errors import SerializationError
from core.models import (
    MAX_U64,
    AddressStats,
    BalanceHistory,
    BalanceSnapshot,
    ExportFormat,
    ProcessedTransaction,
    ProcessorStats,
    Transaction,
    TransferEvent,
)

logger = logging.getLogger(__name__)
transfers_logger = logging.getLogger("transfers")

CSV_HEADER = ["Address", "Balance", "Total Transactions", "Total Sent", "Total Received"]


def _tx_key(tx: Transaction) -> Tuple[str, int]:
    return tx.id, tx.sequence_number


class Ledger:
    """Memory-resident store of balances, history and stats for seen addresses."""

    def __init__(self, max_history_records: int = 1000, clock: Callable[[], float] = time.time):
        self.max_history_records = max_history_records
        self.clock = clock

        self._balances: Dict[str, int] = {}
        self._history: Dict[str, List[Transaction]] = {}
        self._stats: Dict[str, AddressStats] = {}
        self._lock = asyncio.Lock()

    async def apply_event(self, event: TransferEvent) -> ProcessedTransaction:
        """
        Apply one transfer event.

        Debits the sender (saturating at 0), credits the recipient (saturating
        at the u64 maximum), records the transaction in both histories and
        updates both parties' stats. Never raises.

        Applying the same event twice applies it twice; duplicate filtering
        is the poller's job.
        """
        started = time.perf_counter()
        tx = Transaction.from_event(event)
        sender, recipient, amount = event.sender, event.recipient, event.amount

        async with self._lock:
            sender_before = self._balances.get(sender, 0)
            sender_after = max(0, sender_before - amount)
            self._balances[sender] = sender_after

            recipient_before = self._balances.get(recipient, 0)
            recipient_after = min(MAX_U64, recipient_before + amount)
            self._balances[recipient] = recipient_after

            self._append_history(sender, tx)
            if recipient != sender:
                self._append_history(recipient, tx)

            self._stats.setdefault(sender, AddressStats()).record(amount, event.timestamp, sent=True)
            self._stats.setdefault(recipient, AddressStats()).record(amount, event.timestamp, sent=False)

        processing_time_ms = (time.perf_counter() - started) * 1000
        transfers_logger.info(
            f"{tx.id} {sender} -> {recipient} {amount} {tx.token_type} @ {tx.timestamp}"
        )

        return ProcessedTransaction(
            transaction=tx,
            sender_balance_change=sender_after - sender_before,
            receiver_balance_change=recipient_after - recipient_before,
            processing_time_ms=processing_time_ms,
        )

    def _append_history(self, address: str, tx: Transaction):
        history = self._history.setdefault(address, [])
        history.append(tx)
        if len(history) > self.max_history_records:
            history.sort(key=lambda t: t.timestamp, reverse=True)
            del history[self.max_history_records:]

    async def balance_of(self, address: str) -> int:
        async with self._lock:
            return self._balances.get(address, 0)

    async def history_of(self, address: str, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions involving an address, newest first."""
        async with self._lock:
            history = sorted(self._history.get(address, []), key=lambda t: t.timestamp, reverse=True)
        return history[:limit] if limit is not None else history

    async def stats_of(self, address: str) -> Optional[AddressStats]:
        async with self._lock:
            stats = self._stats.get(address)
            return stats.model_copy() if stats else None

    async def all_balances(self) -> Dict[str, int]:
        async with self._lock:
            return dict(self._balances)

    async def all_stats(self) -> Dict[str, AddressStats]:
        async with self._lock:
            return {address: stats.model_copy() for address, stats in self._stats.items()}

    async def recent_transactions(self, limit: int = 20) -> List[Transaction]:
        """Newest transactions across all addresses, each listed once."""
        async with self._lock:
            unique = {_tx_key(tx): tx for txs in self._history.values() for tx in txs}
        ordered = sorted(unique.values(), key=lambda t: t.timestamp, reverse=True)
        return ordered[:limit]

    async def volume_by_token(self, window_hours: int = 24) -> Dict[str, int]:
        """Sum of transferred amounts per token over the last window_hours."""
        start_time = self.clock() - window_hours * 3600
        async with self._lock:
            unique = {_tx_key(tx): tx for txs in self._history.values() for tx in txs}

        volume: Dict[str, int] = {}
        for tx in unique.values():
            if tx.timestamp >= start_time:
                volume[tx.token_type] = volume.get(tx.token_type, 0) + tx.amount
        return volume

    async def balance_history(self, address: str, limit: int = 100) -> BalanceHistory:
        """
        Balance evolution replayed from retained history, oldest first.

        The replay starts from zero, so once history has been trimmed the
        snapshots show relative movement rather than the absolute balance.
        """
        async with self._lock:
            transactions = sorted(self._history.get(address, []), key=lambda t: t.timestamp)

        balance = 0
        snapshots = []
        for tx in transactions[:limit]:
            if tx.sender == address:
                balance = max(0, balance - tx.amount)
            if tx.recipient == address:
                balance = min(MAX_U64, balance + tx.amount)
            snapshots.append(BalanceSnapshot(timestamp=tx.timestamp, balance=balance, transaction_id=tx.id))

        return BalanceHistory(address=address, history=snapshots)

    async def cleanup(self, max_age_seconds: int) -> int:
        """
        Drop history entries older than max_age_seconds.

        Balances and stats are cumulative and are not touched.

        Returns:
            Number of history entries removed, counted per address
        """
        now = self.clock()
        removed = 0
        async with self._lock:
            for address, history in self._history.items():
                kept = [tx for tx in history if now - tx.timestamp <= max_age_seconds]
                removed += len(history) - len(kept)
                self._history[address] = kept

        if removed:
            logger.info(f"Cleaned up {removed} old transaction records")
        return removed

    async def processor_stats(self) -> ProcessorStats:
        async with self._lock:
            return ProcessorStats(
                total_addresses=len(self._balances),
                total_transactions=sum(s.total_transactions for s in self._stats.values()),
                total_volume=sum(s.total_sent + s.total_received for s in self._stats.values()),
                max_history_records=self.max_history_records,
            )

    async def export(self, export_format: ExportFormat, now: Optional[datetime] = None) -> str:
        """
        Serialize balances and stats.

        Output is deterministic for a given state and export time.

        Raises:
            SerializationError: If the snapshot cannot be encoded
        """
        export_format = ExportFormat(export_format)
        async with self._lock:
            balances = dict(self._balances)
            stats = {address: s.model_dump() for address, s in self._stats.items()}

        if export_format == ExportFormat.JSON:
            export_time = now or datetime.fromtimestamp(self.clock(), tz=timezone.utc)
            data = {
                "balances": balances,
                "stats": stats,
                "export_time": export_time.isoformat(),
            }
            try:
                return json.dumps(data, indent=2, sort_keys=True)
            except (TypeError, ValueError) as e:
                raise SerializationError(f"JSON export failed: {e}")

        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for address in sorted(balances):
            address_stats = stats.get(address, {})
            writer.writerow([
                address,
                balances[address],
                address_stats.get("total_transactions", 0),
                address_stats.get("total_sent", 0),
                address_stats.get("total_received", 0),
            ])
        return output.getvalue()
