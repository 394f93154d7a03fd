"""
Periodic poller that discovers new transfer events for watched addresses.

Every tick fans out one fetch per registered address, filters each result
against the address's watermark and hands parsed events to the registered
consumers (the ledger and alert pipeline in the tracker).
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from core.errors import ParseError, ValidationError
from core.models import (
    MAX_U64,
    NATIVE_TOKEN,
    MonitorStats,
    RawLedgerEvent,
    TransferEvent,
    WatermarkStrategy,
)
from core.registry import AddressRegistry
from core.retry import retry_operation
from core.sui_client import RemoteLedgerQuery
from utils.addresses import format_address, normalize_address

logger = logging.getLogger(__name__)

EventConsumer = Callable[[TransferEvent], Awaitable[None]]


def _parse_amount(raw_amount) -> int:
    """Amounts arrive as decimal strings (u64 does not fit a JSON number) or ints."""
    if raw_amount is None:
        raise ParseError("Missing amount")
    if isinstance(raw_amount, bool):
        raise ParseError(f"Invalid amount: {raw_amount!r}")

    if isinstance(raw_amount, int):
        amount = raw_amount
    elif isinstance(raw_amount, str):
        text = raw_amount.strip()
        if not (text.isascii() and text.isdigit()):
            raise ParseError(f"Invalid amount: {raw_amount!r}")
        amount = int(text)
    else:
        raise ParseError(f"Invalid amount type: {type(raw_amount).__name__}")

    if amount < 0 or amount > MAX_U64:
        raise ParseError(f"Amount out of range: {amount}")
    return amount


def parse_transfer_event(raw: RawLedgerEvent) -> TransferEvent:
    """
    Turn a raw ledger record into a TransferEvent.

    Transfer details live under parsed_json["value"]; top-level keys are
    accepted as a fallback.

    Raises:
        ParseError: If the recipient is missing or the amount is malformed
    """
    payload = raw.parsed_json or {}
    value = payload.get("value")
    if not isinstance(value, dict):
        value = {}

    recipient = value.get("recipient") or payload.get("recipient")
    if not recipient or not isinstance(recipient, str):
        raise ParseError(f"Missing recipient in event {raw.id.tx_digest}")

    amount = _parse_amount(value.get("amount", payload.get("amount")))
    token_type = value.get("type") or payload.get("type") or NATIVE_TOKEN

    try:
        return TransferEvent(
            id=raw.id.tx_digest,
            sender=normalize_address(raw.sender),
            recipient=normalize_address(recipient),
            amount=amount,
            token_type=token_type,
            timestamp=raw.timestamp,
            sequence_number=raw.id.event_seq,
            package_id=raw.package_id,
            transaction_module=raw.transaction_module,
        )
    except PydanticValidationError as e:
        raise ParseError(f"Invalid event {raw.id.tx_digest}: {e.error_count()} field errors")


class EventPoller:
    """
    Stopped/Running poll loop over the address registry.

    The loop is cooperative: stop() clears the running flag, in-flight
    fetches for the current tick complete, and the loop exits before the
    next tick starts.
    """

    def __init__(
        self,
        client: RemoteLedgerQuery,
        registry: AddressRegistry,
        poll_interval: float = 10,
        batch_size: int = 10,
        force_check_limit: int = 50,
        max_concurrent_fetches: int = 32,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        watermark_strategy: WatermarkStrategy = WatermarkStrategy.POLL_TIME,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize the poller.

        Args:
            client: Remote ledger query service
            registry: Watched addresses and watermarks
            poll_interval: Seconds between ticks
            batch_size: Events requested per address per tick
            force_check_limit: Events requested per address by force_check_all
            max_concurrent_fetches: Cap on simultaneous remote queries
            max_attempts: Total fetch attempts per address per tick
            base_delay_ms: First retry delay, doubled on each retry
            watermark_strategy: How far a successful poll moves the watermark
            clock: Source of unix time in seconds
            sleep: Sleep coroutine used between retries
        """
        self.client = client
        self.registry = registry
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.force_check_limit = force_check_limit
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.watermark_strategy = WatermarkStrategy(watermark_strategy)
        self.clock = clock
        self._sleep = sleep or asyncio.sleep
        self._semaphore = asyncio.Semaphore(max_concurrent_fetches)

        self.running = False
        self._stop_event = asyncio.Event()
        self._consumers: List[EventConsumer] = []

        # Callback handlers
        self.on_fetch_error: Optional[Callable[[str, Exception], Awaitable[None]]] = None

        # Stats
        self._started_at = clock()
        self.total_events_processed = 0
        self.errors_count = 0
        self.parse_errors_count = 0
        self.polls_completed = 0
        self.last_event_time: Optional[datetime] = None

    def add_consumer(self, consumer: EventConsumer):
        """Register an async callable that receives every emitted TransferEvent."""
        self._consumers.append(consumer)

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self):
        """Run the poll loop until stop() is called."""
        if self.running:
            logger.warning("Event poller is already running")
            return

        self.running = True
        self._stop_event.clear()
        self._started_at = self.clock()
        logger.info(f"Starting event poller (interval {self.poll_interval}s)")

        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                self.errors_count += 1
                logger.error(f"Error in poll cycle: {e}", exc_info=True)

            if not self.running:
                break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Event poller stopped")

    async def stop(self):
        """Request the loop to stop after the current tick."""
        if not self.running:
            return
        logger.info("Stopping event poller")
        self.running = False
        self._stop_event.set()

    def update_poll_interval(self, seconds: float):
        """Change the tick interval; applies from the next tick."""
        if seconds <= 0:
            raise ValidationError("Poll interval must be greater than 0")
        self.poll_interval = seconds
        logger.info(f"Poll interval updated to {seconds}s")

    async def poll_once(self) -> int:
        """
        Run a single tick over a snapshot of the registry.

        Returns:
            Number of events emitted
        """
        poll_time = int(self.clock())
        addresses = await self.registry.list()

        if addresses:
            results = await asyncio.gather(
                *(self._isolated(address, self._poll_address(address, poll_time)) for address in sorted(addresses))
            )
            emitted = sum(results)
        else:
            emitted = 0

        self.polls_completed += 1
        if emitted:
            logger.debug(f"Poll cycle emitted {emitted} events across {len(addresses)} addresses")
        return emitted

    async def force_check_all(self, limit: Optional[int] = None) -> int:
        """
        Fetch every watched address now, ignoring watermarks and the interval.

        Every parseable event is emitted and watermarks are left untouched.

        Returns:
            Number of events emitted
        """
        limit = limit or self.force_check_limit
        addresses = await self.registry.list()
        logger.info(f"Force checking {len(addresses)} addresses (limit {limit})")

        results = await asyncio.gather(
            *(self._isolated(address, self._force_check_address(address, limit)) for address in sorted(addresses))
        )
        return sum(results)

    async def validate_addresses(self) -> Set[str]:
        return await self.registry.validate()

    def get_stats(self) -> MonitorStats:
        elapsed = self.clock() - self._started_at
        return MonitorStats(
            total_events_processed=self.total_events_processed,
            events_per_second=self.total_events_processed / elapsed if elapsed > 0 else 0.0,
            last_event_time=self.last_event_time,
            monitored_addresses=len(self.registry),
            errors_count=self.errors_count,
            parse_errors_count=self.parse_errors_count,
            polls_completed=self.polls_completed,
        )

    async def _fetch(self, address: str, limit: int) -> Optional[List[RawLedgerEvent]]:
        """Query one address under the retry policy; each attempt holds a concurrency slot. None on failure."""
        async def attempt():
            async with self._semaphore:
                return await self.client.query_events(address, limit)

        try:
            return await retry_operation(
                attempt,
                max_attempts=self.max_attempts,
                base_delay_ms=self.base_delay_ms,
                description=f"Event query for {format_address(address)}",
                sleep=self._sleep,
            )
        except Exception as e:
            self.errors_count += 1
            logger.error(f"Failed to fetch events for {address}: {e}")
            await self._notify_fetch_error(address, e)
            return None

    async def _isolated(self, address: str, work: Awaitable[int]) -> int:
        """Await one address's work so a failure there never fails the tick."""
        try:
            return await work
        except Exception as e:
            self.errors_count += 1
            logger.error(f"Processing failed for {address}: {e}", exc_info=True)
            return 0

    async def _poll_address(self, address: str, poll_time: int) -> int:
        raw_events = await self._fetch(address, self.batch_size)
        if raw_events is None:
            return 0

        watermark = await self.registry.watermark(address)
        fresh = [raw for raw in raw_events if raw.timestamp > watermark]

        emitted = 0
        newest = 0
        for event in self._parse_batch(fresh):
            await self._emit(event)
            emitted += 1
            newest = max(newest, event.timestamp)

        if emitted:
            target = poll_time if self.watermark_strategy == WatermarkStrategy.POLL_TIME else newest
            await self.registry.advance_watermark(address, target)

        return emitted

    async def _force_check_address(self, address: str, limit: int) -> int:
        raw_events = await self._fetch(address, limit)
        if raw_events is None:
            return 0

        emitted = 0
        for event in self._parse_batch(raw_events):
            await self._emit(event)
            emitted += 1
        return emitted

    def _parse_batch(self, raw_events: List[RawLedgerEvent]) -> List[TransferEvent]:
        """Parse a batch oldest first, dropping records that fail to parse."""
        events = []
        ordered = sorted(raw_events, key=lambda r: (r.timestamp, r.id.event_seq))
        for raw in ordered:
            try:
                events.append(parse_transfer_event(raw))
            except ParseError as e:
                self.parse_errors_count += 1
                logger.warning(f"Dropping event {raw.id.tx_digest}: {e}")
        return events

    async def _emit(self, event: TransferEvent):
        self.total_events_processed += 1
        self.last_event_time = datetime.fromtimestamp(self.clock(), tz=timezone.utc)

        for consumer in list(self._consumers):
            try:
                await consumer(event)
            except Exception as e:
                logger.error(f"Event consumer failed for {event.id}: {e}", exc_info=True)

    async def _notify_fetch_error(self, address: str, error: Exception):
        if not self.on_fetch_error:
            return
        try:
            await self.on_fetch_error(address, error)
        except Exception as e:
            logger.error(f"Fetch error callback failed: {e}")
