"""
Alert rule evaluation, deduplication and fan-out.

Every alert has a key derived from its type and subject. A key that fired
less than `cooldown_seconds` ago is suppressed. The check and the record
happen under one lock on the live cooldown table, and the record is written
before sinks run, so a failing sink cannot cause an alert storm.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set, Union

from alerts.formatting import format_alert_message, format_amount
from alerts.models import (
    Alert,
    AlertSeverity,
    AlertStats,
    CustomAlert,
    LargeTransferAlert,
    LowBalanceAlert,
    NetworkErrorAlert,
    RiskLevel,
    SuspiciousActivityAlert,
    SystemErrorAlert,
)
from alerts.sinks import AlertSink
from core.models import Transaction, TransferEvent

logger = logging.getLogger(__name__)
alerts_logger = logging.getLogger("alerts")

TransferLike = Union[Transaction, TransferEvent]

HIGH_FREQUENCY = "high_frequency_transactions"
LARGE_TRANSFER_TO_NEW_ADDRESS = "large_transfer_to_new_address"


def alert_key(alert: Alert) -> str:
    """Deduplication identity of an alert."""
    if isinstance(alert, LowBalanceAlert):
        return f"lowBalance:{alert.address}"
    if isinstance(alert, LargeTransferAlert):
        return f"largeTransfer:{alert.transaction_id}"
    if isinstance(alert, SuspiciousActivityAlert):
        return f"suspicious:{alert.address}:{alert.activity_type}"
    if isinstance(alert, NetworkErrorAlert):
        return f"networkError:{alert.component}"
    if isinstance(alert, SystemErrorAlert):
        return f"systemError:{alert.component}"
    if isinstance(alert, CustomAlert):
        return f"custom:{alert.category}:{alert.title}"
    raise TypeError(f"Unknown alert type: {type(alert).__name__}")


def low_balance_severity(balance: int, threshold: int) -> AlertSeverity:
    if balance < threshold // 10:
        return AlertSeverity.CRITICAL
    if balance < threshold // 2:
        return AlertSeverity.ERROR
    return AlertSeverity.WARNING


def large_transfer_severity(amount: int, threshold: int) -> AlertSeverity:
    if amount > threshold * 10:
        return AlertSeverity.CRITICAL
    if amount > threshold * 5:
        return AlertSeverity.ERROR
    return AlertSeverity.WARNING


class SuspiciousActivityDetector:
    """
    Best-effort heuristics over the transfer stream.

    - high frequency: a sender with more than `high_frequency_limit`
      transfers inside a rolling `window_seconds` window (event time)
    - large transfer to new address: more than twice the large-transfer
      threshold sent to a recipient the detector has never seen
    """

    def __init__(self, high_frequency_limit: int = 10, window_seconds: int = 3600):
        self.high_frequency_limit = high_frequency_limit
        self.window_seconds = window_seconds
        self._activity: Dict[str, Deque[int]] = {}
        self._seen_recipients: Set[str] = set()

    def check_transaction(self, tx: TransferLike, large_transfer_threshold: int) -> List[SuspiciousActivityAlert]:
        alerts = []

        window = self._activity.setdefault(tx.sender, deque())
        window.append(tx.timestamp)
        while window and window[0] < tx.timestamp - self.window_seconds:
            window.popleft()

        if len(window) > self.high_frequency_limit:
            alerts.append(SuspiciousActivityAlert(
                address=tx.sender,
                activity_type=HIGH_FREQUENCY,
                description=f"Address has {len(window)} transactions in the last {self.window_seconds}s",
                risk_level=RiskLevel.MEDIUM,
                related_transactions=[tx.id],
                severity=AlertSeverity.WARNING,
            ))

        is_new_recipient = tx.recipient not in self._seen_recipients
        self._seen_recipients.add(tx.recipient)

        if is_new_recipient and tx.amount > large_transfer_threshold * 2:
            alerts.append(SuspiciousActivityAlert(
                address=tx.sender,
                activity_type=LARGE_TRANSFER_TO_NEW_ADDRESS,
                description=f"Large transfer of {format_amount(tx.amount)} to new address {tx.recipient}",
                risk_level=RiskLevel.HIGH,
                related_transactions=[tx.id],
                severity=AlertSeverity.ERROR,
            ))

        return alerts

    def prune(self, now: float) -> int:
        """Forget senders with no activity inside the window."""
        stale = [s for s, w in self._activity.items() if not w or w[-1] < now - self.window_seconds]
        for sender in stale:
            del self._activity[sender]
        return len(stale)


class AlertDispatcher:
    """Evaluates alert rules and delivers the resulting alerts to every sink."""

    def __init__(
        self,
        sinks: Optional[List[AlertSink]] = None,
        low_balance_threshold: int = 1_000_000_000,
        large_transfer_threshold: int = 10_000_000_000,
        cooldown_seconds: float = 300,
        high_frequency_limit: int = 10,
        high_frequency_window_seconds: int = 3600,
        max_history: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the dispatcher.

        Args:
            sinks: Delivery destinations
            low_balance_threshold: Default threshold applied by the tracker to watched addresses
            large_transfer_threshold: Amount above which a transfer is reported
            cooldown_seconds: Minimum interval between alerts with the same key
            high_frequency_limit: Transfers per window tolerated before flagging a sender
            high_frequency_window_seconds: Rolling window for the high-frequency rule
            max_history: Number of dispatched alerts kept in memory
            clock: Source of unix time in seconds
        """
        self.sinks: List[AlertSink] = list(sinks or [])
        self.default_low_balance_threshold = low_balance_threshold
        self.large_transfer_threshold = large_transfer_threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.detector = SuspiciousActivityDetector(high_frequency_limit, high_frequency_window_seconds)

        self._thresholds: Dict[str, int] = {}
        self._cooldowns: Dict[str, float] = {}
        self._cooldown_lock = asyncio.Lock()

        self._history: Deque[Alert] = deque(maxlen=max_history)
        self._total_alerts = 0
        self._suppressed_alerts = 0
        self._by_type: Dict[str, int] = {}
        self._by_severity: Dict[str, int] = {}

    def add_sink(self, sink: AlertSink):
        self.sinks.append(sink)

    # Thresholds

    def set_threshold(self, address: str, threshold: int):
        """Set the low-balance threshold for an address."""
        self._thresholds[address] = threshold
        logger.debug(f"Low balance threshold for {address} set to {threshold}")

    def remove_threshold(self, address: str) -> bool:
        return self._thresholds.pop(address, None) is not None

    def get_threshold(self, address: str) -> Optional[int]:
        return self._thresholds.get(address)

    # Rules

    async def check_balance(self, address: str, balance: int) -> bool:
        """
        Raise a LowBalance alert if the address has a threshold and is below it.

        Returns:
            True if an alert was dispatched
        """
        threshold = self._thresholds.get(address)
        if threshold is None or balance >= threshold:
            return False

        alert = LowBalanceAlert(
            address=address,
            balance=balance,
            threshold=threshold,
            severity=low_balance_severity(balance, threshold),
        )
        return await self.dispatch(alert)

    async def check_large_transfer(self, tx: TransferLike) -> bool:
        if tx.amount <= self.large_transfer_threshold:
            return False

        alert = LargeTransferAlert(
            sender=tx.sender,
            recipient=tx.recipient,
            amount=tx.amount,
            transaction_id=tx.id,
            token_type=tx.token_type,
            severity=large_transfer_severity(tx.amount, self.large_transfer_threshold),
        )
        return await self.dispatch(alert)

    async def check_suspicious_activity(self, tx: TransferLike) -> int:
        """
        Run the suspicious-activity heuristics for one transfer.

        Returns:
            Number of alerts dispatched
        """
        dispatched = 0
        for alert in self.detector.check_transaction(tx, self.large_transfer_threshold):
            if await self.dispatch(alert):
                dispatched += 1
        return dispatched

    async def send_network_error_alert(self, error: str, component: str) -> bool:
        return await self.dispatch(NetworkErrorAlert(error=error, component=component))

    async def send_system_error_alert(self, error: str, component: str) -> bool:
        return await self.dispatch(SystemErrorAlert(error=error, component=component))

    async def send_custom_alert(
        self,
        title: str,
        message: str,
        category: str,
        severity: AlertSeverity = AlertSeverity.INFO,
    ) -> bool:
        return await self.dispatch(
            CustomAlert(title=title, message=message, category=category, severity=severity)
        )

    # Delivery

    async def dispatch(self, alert: Alert) -> bool:
        """
        Deliver an alert unless its key is cooling down.

        Returns:
            True if the alert was delivered to the sinks, False if suppressed
        """
        key = alert_key(alert)

        async with self._cooldown_lock:
            now = self.clock()
            last_sent = self._cooldowns.get(key)
            if last_sent is not None and now - last_sent < self.cooldown_seconds:
                self._suppressed_alerts += 1
                logger.debug(f"Alert {key} suppressed (cooldown)")
                return False
            self._cooldowns[key] = now

        self._record(alert)
        alerts_logger.info(format_alert_message(alert))

        await asyncio.gather(*(self._deliver(sink, alert) for sink in self.sinks))
        return True

    async def _deliver(self, sink: AlertSink, alert: Alert):
        try:
            await sink.send(alert)
        except Exception as e:
            logger.error(f"Alert sink {sink.name} failed: {e}")

    def _record(self, alert: Alert):
        self._history.append(alert)
        self._total_alerts += 1
        self._by_type[alert.kind] = self._by_type.get(alert.kind, 0) + 1
        severity = alert.severity.value
        self._by_severity[severity] = self._by_severity.get(severity, 0) + 1

    async def sweep_cooldowns(self) -> int:
        """
        Drop cooldown entries whose window has passed.

        Returns:
            Number of entries removed
        """
        async with self._cooldown_lock:
            now = self.clock()
            expired = [k for k, t in self._cooldowns.items() if now - t >= self.cooldown_seconds]
            for key in expired:
                del self._cooldowns[key]

        self.detector.prune(now)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cooldown entries")
        return len(expired)

    def cooldown_entries(self) -> Dict[str, float]:
        return dict(self._cooldowns)

    def get_alert_history(self, limit: int = 50) -> List[Alert]:
        """Dispatched alerts, newest first."""
        return list(reversed(self._history))[:limit]

    def get_alert_stats(self) -> AlertStats:
        return AlertStats(
            total_alerts=self._total_alerts,
            suppressed_alerts=self._suppressed_alerts,
            alerts_by_type=dict(self._by_type),
            alerts_by_severity=dict(self._by_severity),
        )

    async def close(self):
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Error closing alert sink {sink.name}: {e}")
