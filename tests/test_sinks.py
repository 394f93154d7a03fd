"""
Tests for alert sinks.
"""
import io
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from alerts.models import AlertSeverity, CustomAlert, NetworkErrorAlert
from alerts.sinks import (
    ConsoleSink,
    EmailSink,
    FileSink,
    TelegramSink,
    WebhookSink,
    build_sinks,
)
from core.errors import NetworkError


def info_alert():
    return CustomAlert(title="Hello", message="world", category="ops")


def error_alert():
    return NetworkErrorAlert(error="down", component="poller")


class FakeResponse:
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


def fake_session(response=None, error=None):
    session = MagicMock()
    session.closed = False
    if error:
        session.post = MagicMock(side_effect=error)
    else:
        session.post = MagicMock(return_value=response)
    return session


class TestConsoleSink:
    """Stream selection by severity."""

    @pytest.mark.asyncio
    async def test_info_to_stdout(self):
        stdout, stderr = io.StringIO(), io.StringIO()

        await ConsoleSink(stdout, stderr).send(info_alert())

        assert "ALERT [INFO]: Hello - world" in stdout.getvalue()
        assert stderr.getvalue() == ""

    @pytest.mark.asyncio
    async def test_error_to_stderr(self):
        stdout, stderr = io.StringIO(), io.StringIO()

        await ConsoleSink(stdout, stderr).send(error_alert())

        assert "Network error in poller" in stderr.getvalue()
        assert stdout.getvalue() == ""


class TestFileSink:
    """Append-only line writer."""

    @pytest.mark.asyncio
    async def test_appends_lines(self, tmp_path):
        path = tmp_path / "nested" / "alerts.log"
        sink = FileSink(str(path))

        await sink.send(info_alert())
        await sink.send(error_alert())

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("[")
        assert " UTC] ALERT [INFO]: Hello - world" in lines[0]


class TestWebhookSink:
    """Discord-style webhook delivery."""

    @pytest.mark.asyncio
    async def test_posts_embed(self):
        session = fake_session(FakeResponse(204))
        sink = WebhookSink("https://hooks.example/abc", session=session)

        await sink.send(error_alert())

        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "https://hooks.example/abc"
        assert payload["embeds"][0]["title"] == "SUI Tracker Alert"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_network_error(self):
        sink = WebhookSink("https://hooks.example/abc", session=fake_session(FakeResponse(500, "nope")))

        with pytest.raises(NetworkError):
            await sink.send(error_alert())

    @pytest.mark.asyncio
    async def test_client_error_raises_network_error(self):
        session = fake_session(error=aiohttp.ClientConnectionError("refused"))
        sink = WebhookSink("https://hooks.example/abc", session=session)

        with pytest.raises(NetworkError):
            await sink.send(error_alert())


class TestEmailSink:
    """SMTP delivery in a worker thread."""

    def test_build_message(self):
        sink = EmailSink("smtp.example", 587, "tracker@example.com", ["ops@example.com", "me@example.com"])

        message = sink.build_message(error_alert())

        assert message["To"] == "ops@example.com, me@example.com"
        assert "ERROR" in message["Subject"]
        assert "Network error in poller" in message.get_content()

    @pytest.mark.asyncio
    async def test_sends_via_smtp(self):
        sink = EmailSink("smtp.example", 587, "tracker@example.com", ["ops@example.com"], username="u", password="p")

        with patch("alerts.sinks.smtplib.SMTP") as smtp_cls:
            await sink.send(error_alert())

        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("u", "p")
        smtp.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_skips_without_recipients(self):
        sink = EmailSink("smtp.example", 587, "tracker@example.com", [])

        with patch("alerts.sinks.smtplib.SMTP") as smtp_cls:
            await sink.send(error_alert())

        smtp_cls.assert_not_called()


class TestTelegramSink:
    """aiogram delivery to a chat or topic."""

    @pytest.mark.asyncio
    async def test_sends_to_topic(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        sink = TelegramSink(bot, "-100123:42")

        await sink.send(error_alert())

        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == -100123
        assert kwargs["message_thread_id"] == 42
        assert "Network error in poller" in kwargs["text"]

    def test_plain_chat_id(self):
        sink = TelegramSink(MagicMock(), "555")
        assert (sink.chat_id, sink.thread_id) == (555, None)


class TestBuildSinks:
    """Sink selection from settings."""

    def _settings(self, **overrides):
        values = dict(
            enable_console_alerts=True,
            enable_file_alerts=False,
            alert_file_path="alerts.log",
            enable_webhook_alerts=False,
            webhook_url=None,
            enable_email_alerts=False,
            smtp_server=None,
            smtp_port=587,
            smtp_username=None,
            smtp_password=None,
            email_sender=None,
            email_recipients=[],
            enable_telegram_alerts=False,
            telegram_bot_token=None,
            telegram_chat_id=None,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_console_only_by_default(self):
        sinks = build_sinks(self._settings())
        assert [s.name for s in sinks] == ["console"]

    def test_enabled_sinks(self, tmp_path):
        sinks = build_sinks(self._settings(
            enable_file_alerts=True,
            alert_file_path=str(tmp_path / "a.log"),
            enable_webhook_alerts=True,
            webhook_url="https://hooks.example/abc",
            enable_email_alerts=True,
            smtp_server="smtp.example",
            email_sender="tracker@example.com",
            email_recipients=["ops@example.com"],
        ))

        assert [s.name for s in sinks] == ["console", "file", "webhook", "email"]

    def test_misconfigured_sink_skipped(self):
        sinks = build_sinks(self._settings(enable_webhook_alerts=True, webhook_url=None))
        assert [s.name for s in sinks] == ["console"]


def test_severity_enum_values():
    assert [s.value for s in AlertSeverity] == ["info", "warning", "error", "critical"]
