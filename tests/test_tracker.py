"""
End-to-end tests for the TransferTracker wiring.
"""
import asyncio
import json

import pytest

from alerts.dispatcher import AlertDispatcher
from alerts.models import LargeTransferAlert, LowBalanceAlert, NetworkErrorAlert
from alerts.sinks import AlertSink
from config import Settings
from core.errors import InvalidAddressError, NetworkError, ValidationError
from main import TransferTracker


class RecordingSink(AlertSink):
    name = "recording"

    def __init__(self):
        self.alerts = []

    async def send(self, alert):
        self.alerts.append(alert)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def tracker(monkeypatch, tmp_path, fake_client, clock, sink, address_a):
    monkeypatch.chdir(tmp_path)
    settings = Settings(
        monitored_addresses=[address_a],
        data_dir=str(tmp_path / "data"),
        log_dir=str(tmp_path / "logs"),
        retry_base_delay_ms=0,
        poll_interval_seconds=0.01,
        maintenance_interval_seconds=0.01,
    )
    dispatcher = AlertDispatcher(
        sinks=[sink],
        low_balance_threshold=settings.low_balance_threshold,
        large_transfer_threshold=settings.large_transfer_threshold,
        cooldown_seconds=settings.alert_cooldown_seconds,
        clock=clock,
    )
    return TransferTracker(settings, client=fake_client, dispatcher=dispatcher, clock=clock)


class TestSetup:
    """Address registration."""

    @pytest.mark.asyncio
    async def test_registers_configured_addresses(self, tracker, address_a):
        await tracker.setup()

        assert await tracker.registry.list() == {address_a}
        assert tracker.dispatcher.get_threshold(address_a) == 1_000_000_000
        assert tracker.get_tracker_stats().addresses_monitored == 1

    @pytest.mark.asyncio
    async def test_add_and_remove_address(self, tracker, address_b):
        assert await tracker.add_address(address_b) is True
        assert tracker.dispatcher.get_threshold(address_b) is not None

        assert await tracker.remove_address(address_b) is True
        assert tracker.dispatcher.get_threshold(address_b) is None

    @pytest.mark.asyncio
    async def test_add_invalid_address(self, tracker):
        with pytest.raises(InvalidAddressError):
            await tracker.add_address("not-an-address")


class TestPipeline:
    """Poll cycle into ledger and alerts."""

    @pytest.mark.asyncio
    async def test_large_transfer_flows_through(self, tracker, sink, fake_client, make_raw, address_a, address_b):
        await tracker.setup()
        fake_client.events[address_a] = [make_raw("tx1", address_a, address_b, "20000000000", 1000)]

        await tracker.poller.poll_once()

        assert await tracker.ledger.balance_of(address_b) == 20_000_000_000
        kinds = [type(a) for a in sink.alerts]
        assert LargeTransferAlert in kinds
        # address_a is watched with the default threshold and now sits at zero
        low = [a for a in sink.alerts if isinstance(a, LowBalanceAlert)]
        assert [a.address for a in low] == [address_a]
        stats = tracker.get_tracker_stats()
        assert stats.total_events_processed == 1
        assert stats.total_transactions_processed == 1
        assert stats.total_alerts_sent == len(sink.alerts)

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_network_alert(self, tracker, sink, fake_client, address_a):
        await tracker.setup()
        fake_client.failures[address_a] = [NetworkError("down")] * 3

        await tracker.poller.poll_once()

        assert any(isinstance(a, NetworkErrorAlert) for a in sink.alerts)
        assert tracker.get_tracker_stats().total_errors == 1


class TestMaintenance:
    """Housekeeping loop body."""

    @pytest.mark.asyncio
    async def test_cleanup_and_health_alert(self, tracker, sink, fake_client, make_event, address_a, address_b):
        await tracker.ledger.apply_event(make_event("old", address_a, address_b, 5, 1000))
        fake_client.healthy = False

        await tracker.maintenance()

        assert await tracker.ledger.history_of(address_a) == []
        assert [a.component for a in sink.alerts if isinstance(a, NetworkErrorAlert)] == ["network_monitor"]

    @pytest.mark.asyncio
    async def test_force_balance_check(self, tracker, sink, fake_client, address_a):
        await tracker.setup()
        fake_client.balances[address_a] = 50_000_000

        balances = await tracker.force_balance_check()

        assert balances == {address_a: 50_000_000}
        assert isinstance(sink.alerts[-1], LowBalanceAlert)


class TestExport:
    """File export."""

    @pytest.mark.asyncio
    async def test_export_json(self, tracker, tmp_path, make_event, address_a, address_b):
        await tracker.ledger.apply_event(make_event("t1", address_a, address_b, 5, 1000))

        path = await tracker.export_data("json", tmp_path / "out.json")

        data = json.loads(path.read_text())
        assert data["balances"][address_b] == 5

    @pytest.mark.asyncio
    async def test_export_csv_by_keyword(self, tracker, tmp_path, make_event, address_a, address_b):
        await tracker.ledger.apply_event(make_event("t1", address_a, address_b, 5, 1000))

        path = await tracker.export_data(export_format="csv", output_path=tmp_path / "out.csv")

        assert address_b in path.read_text()

    @pytest.mark.asyncio
    async def test_export_invalid_format(self, tracker, tmp_path):
        with pytest.raises(ValidationError):
            await tracker.export_data("xml", tmp_path / "out.xml")


class TestLifecycle:
    """Start, stop and shutdown."""

    @pytest.mark.asyncio
    async def test_start_stop_shutdown(self, tracker, fake_client):
        await tracker.setup()

        task = asyncio.create_task(tracker.start())
        await asyncio.sleep(0.05)
        assert tracker.running
        assert tracker.poller.is_running

        await tracker.stop()
        await asyncio.wait_for(task, timeout=1)
        await tracker.shutdown()

        assert not tracker.poller.is_running
        assert fake_client.closed
