"""
Sui Transfer Tracker - Main Entry Point
Watches addresses, keeps an in-memory ledger of their transfers and raises alerts.
"""
import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from alerts.dispatcher import AlertDispatcher
from alerts.sinks import build_sinks
from config import Settings, ensure_data_directory, load_settings
from core.errors import (
    ConfigurationError,
    NetworkError,
    RemoteQueryError,
    SystemError,
    TimeoutError,
    ValidationError,
)
from core.event_poller import EventPoller
from core.ledger import Ledger
from core.models import NATIVE_TOKEN, ExportFormat, TrackerStats, TransferEvent
from core.registry import AddressRegistry
from core.sui_client import RemoteLedgerQuery, SuiClient
from utils.addresses import normalize_address
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class TransferTracker:
    """Main application orchestrating the poller, ledger and alert dispatcher."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[RemoteLedgerQuery] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        clock=time.time,
    ):
        """Initialize tracker components."""
        self.settings = settings
        self.clock = clock

        self.client = client or SuiClient(settings.rpc_url, settings.timeout_seconds)
        self.registry = AddressRegistry()
        self.ledger = Ledger(settings.max_history_records, clock=clock)
        self.dispatcher = dispatcher or AlertDispatcher(
            sinks=build_sinks(settings),
            low_balance_threshold=settings.low_balance_threshold,
            large_transfer_threshold=settings.large_transfer_threshold,
            cooldown_seconds=settings.alert_cooldown_seconds,
            high_frequency_limit=settings.high_frequency_limit,
            high_frequency_window_seconds=settings.high_frequency_window_seconds,
            clock=clock,
        )
        self.poller = EventPoller(
            self.client,
            self.registry,
            poll_interval=settings.poll_interval_seconds,
            batch_size=settings.batch_size,
            force_check_limit=settings.force_check_limit,
            max_concurrent_fetches=settings.max_concurrent_fetches,
            max_attempts=settings.max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            watermark_strategy=settings.watermark_strategy,
            clock=clock,
        )

        # Poller callbacks
        self.poller.add_consumer(self.handle_transfer)
        self.poller.on_fetch_error = self.handle_fetch_error

        self.running = False
        self._stop_event = asyncio.Event()
        self._last_cleanup = 0.0

        self.stats = TrackerStats(start_time=datetime.fromtimestamp(clock(), tz=timezone.utc))
        self._start_time = clock()

    async def setup(self):
        """Check connectivity and register configured addresses."""
        logger.info("Setting up transfer tracker...")

        ensure_data_directory(self.settings)

        if not await self.client.is_healthy():
            logger.warning("SUI network health check failed during setup")

        for address in self.settings.monitored_addresses:
            await self.add_address(address)

        logger.info(f"Setup complete! Monitoring {len(self.registry)} addresses")

    async def add_address(self, address: str) -> bool:
        """
        Start monitoring an address with the default low-balance threshold.

        Raises:
            InvalidAddressError: If the address is malformed
        """
        added = await self.registry.add(address)
        normalized = normalize_address(address)
        if self.dispatcher.get_threshold(normalized) is None:
            self.dispatcher.set_threshold(normalized, self.dispatcher.default_low_balance_threshold)
        self.stats.addresses_monitored = len(self.registry)
        return added

    async def remove_address(self, address: str) -> bool:
        removed = await self.registry.remove(address)
        if removed:
            self.dispatcher.remove_threshold(normalize_address(address))
        self.stats.addresses_monitored = len(self.registry)
        return removed

    async def handle_transfer(self, event: TransferEvent):
        """Apply a transfer to the ledger and evaluate every alert rule on it."""
        self.stats.total_events_processed += 1

        try:
            processed = await self.ledger.apply_event(event)
            self.stats.total_transactions_processed += 1

            alerts_sent = 0
            if await self.dispatcher.check_large_transfer(processed.transaction):
                alerts_sent += 1
            alerts_sent += await self.dispatcher.check_suspicious_activity(processed.transaction)

            for address in {event.sender, event.recipient}:
                balance = await self.ledger.balance_of(address)
                if await self.dispatcher.check_balance(address, balance):
                    alerts_sent += 1

            self.stats.total_alerts_sent += alerts_sent
            logger.debug(f"Processed transfer event: {event.id}")

        except Exception as e:
            self.stats.total_errors += 1
            logger.error(f"Error handling transfer {event.id}: {e}", exc_info=True)
            await self.dispatcher.send_system_error_alert(str(e), "transfer_handler")

    async def handle_fetch_error(self, address: str, error: Exception):
        """Poller callback for an address whose fetch failed after retries."""
        self.stats.total_errors += 1
        if isinstance(error, (NetworkError, TimeoutError, RemoteQueryError)):
            sent = await self.dispatcher.send_network_error_alert(
                f"Failed to query events for {address}: {error}", "event_poller"
            )
        else:
            sent = await self.dispatcher.send_system_error_alert(
                f"Failed to query events for {address}: {error}", "event_poller"
            )
        if sent:
            self.stats.total_alerts_sent += 1

    async def maintenance(self):
        """Periodic housekeeping: history cleanup, cooldown sweep, validation, health check."""
        logger.debug("Running maintenance tasks")

        now = self.clock()
        if now - self._last_cleanup >= self.settings.cleanup_interval_hours * 3600:
            await self.ledger.cleanup(self.settings.history_max_age_seconds)
            self._last_cleanup = now

        await self.dispatcher.sweep_cooldowns()
        self.stats.uptime_seconds = int(now - self._start_time)

        invalid = await self.poller.validate_addresses()
        if invalid:
            logger.warning(f"Found {len(invalid)} invalid addresses: {sorted(invalid)}")

        if not await self.client.is_healthy():
            logger.warning("SUI network health check failed")
            if await self.dispatcher.send_network_error_alert(
                "SUI network health check failed", "network_monitor"
            ):
                self.stats.total_alerts_sent += 1

    async def force_check(self) -> int:
        """Reconcile now: fetch recent events for every address, ignoring watermarks."""
        return await self.poller.force_check_all(self.settings.force_check_limit)

    async def force_balance_check(self) -> Dict[str, int]:
        """
        Read on-chain balances for every watched address and run the
        low-balance rule against them.

        Returns:
            Balances that were read successfully
        """
        logger.info("Forcing balance check for all addresses")
        balances = {}
        for address in sorted(await self.registry.list()):
            try:
                balance = await self.client.get_balance(address, NATIVE_TOKEN)
            except Exception as e:
                self.stats.total_errors += 1
                logger.error(f"Failed to get balance for address {address}: {e}")
                continue
            balances[address] = balance
            if await self.dispatcher.check_balance(address, balance):
                self.stats.total_alerts_sent += 1

        logger.info(f"Balance check completed, updated {len(balances)} addresses")
        return balances

    async def export_data(self, export_format: Union[str, ExportFormat], output_path: Union[str, Path]) -> Path:
        """
        Export ledger balances and stats to a file.

        Raises:
            ValidationError: If the format is not json or csv
            SystemError: If the file cannot be written
        """
        try:
            export_format = ExportFormat(export_format)
        except ValueError:
            raise ValidationError("Invalid export format. Use 'json' or 'csv'")

        data = await self.ledger.export(export_format)
        path = Path(output_path)
        try:
            await asyncio.to_thread(path.write_text, data, encoding="utf-8")
        except OSError as e:
            raise SystemError(f"Failed to write export to {path}: {e}")

        logger.info(f"Exported data to {path} in {export_format.value} format")
        return path

    def get_tracker_stats(self) -> TrackerStats:
        self.stats.uptime_seconds = int(self.clock() - self._start_time)
        self.stats.addresses_monitored = len(self.registry)
        return self.stats.model_copy()

    async def _maintenance_loop(self):
        while self.running:
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.settings.maintenance_interval_seconds
                )
            except asyncio.TimeoutError:
                pass

            if not self.running:
                break

            try:
                await self.maintenance()
            except Exception as e:
                self.stats.total_errors += 1
                logger.error(f"Error in maintenance tasks: {e}", exc_info=True)

    async def start(self):
        """Run the poller and maintenance loop until stop() is called."""
        if self.running:
            logger.warning("Tracker is already running")
            return

        logger.info("Starting transfer tracker...")
        self.running = True
        self._stop_event.clear()

        await asyncio.gather(self.poller.start(), self._maintenance_loop())
        logger.info("Transfer tracker stopped")

    async def stop(self):
        if not self.running:
            logger.warning("Tracker is not running")
            return
        self.running = False
        self._stop_event.set()
        await self.poller.stop()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down transfer tracker...")

        if self.running:
            await self.stop()

        await self.dispatcher.close()
        close = getattr(self.client, "close", None)
        if close:
            await close()

        logger.info("Shutdown complete")


async def main(settings: Optional[Settings] = None):
    """Main entry point."""
    try:
        settings = settings or load_settings()
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    tracker = TransferTracker(settings)

    try:
        await tracker.setup()
        await tracker.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await tracker.shutdown()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Tracker stopped by user")


if __name__ == "__main__":
    run()
