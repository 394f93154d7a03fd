"""
Alert delivery sinks.

Each sink delivers one alert to one destination. Sinks raise on failure;
the dispatcher catches and logs per sink so one broken destination never
affects the others.
"""
import asyncio
import logging
import smtplib
import sys
from datetime import datetime, timezone
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional, Tuple

import aiohttp
from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from alerts.formatting import (
    SEVERITY_EMOJI,
    format_alert_message,
    format_alert_subject,
    format_telegram_message,
    format_webhook_payload,
)
from alerts.models import Alert, AlertSeverity
from core.errors import NetworkError

logger = logging.getLogger(__name__)


class AlertSink:
    """Base class for alert destinations."""

    name = "sink"

    async def send(self, alert: Alert):
        raise NotImplementedError

    async def close(self):
        pass


class ConsoleSink(AlertSink):
    """Print alerts: info to stdout, everything else to stderr."""

    name = "console"

    def __init__(self, stdout=None, stderr=None):
        self._stdout = stdout
        self._stderr = stderr

    async def send(self, alert: Alert):
        message = format_alert_message(alert)
        if alert.severity == AlertSeverity.INFO:
            stream = self._stdout or sys.stdout
            print(message, file=stream)
        else:
            stream = self._stderr or sys.stderr
            print(f"{SEVERITY_EMOJI[alert.severity]}  {message}", file=stream)


class FileSink(AlertSink):
    """Append alerts to a text file, one line each."""

    name = "file"

    def __init__(self, path: str):
        self.path = Path(path)

    def _write_line(self, line: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def send(self, alert: Alert):
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        await asyncio.to_thread(self._write_line, f"[{timestamp}] {format_alert_message(alert)}")


class WebhookSink(AlertSink):
    """POST a Discord-style embed to a webhook URL."""

    name = "webhook"

    def __init__(self, url: str, session: Optional[aiohttp.ClientSession] = None, timeout_seconds: float = 10):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def send(self, alert: Alert):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
            self._owns_session = True

        try:
            async with self._session.post(self.url, json=format_webhook_payload(alert)) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise NetworkError(f"Webhook returned HTTP {response.status}: {body[:200]}")
        except asyncio.TimeoutError:
            raise NetworkError("Webhook request timed out")
        except aiohttp.ClientError as e:
            raise NetworkError(f"Webhook request failed: {e}")

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class EmailSink(AlertSink):
    """Send alerts by SMTP. The blocking smtplib call runs in a worker thread."""

    name = "email"

    def __init__(
        self,
        smtp_server: str,
        smtp_port: int,
        sender: str,
        recipients: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout_seconds: float = 30,
    ):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def build_message(self, alert: Alert) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = format_alert_subject(alert)
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message.set_content(format_alert_message(alert))
        return message

    def _deliver(self, message: EmailMessage):
        with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout_seconds) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)

    async def send(self, alert: Alert):
        if not self.recipients:
            logger.debug("No email recipients configured, skipping email alert")
            return
        message = self.build_message(alert)
        await asyncio.to_thread(self._deliver, message)


class TelegramSink(AlertSink):
    """Send alerts to a Telegram chat or forum topic."""

    name = "telegram"

    def __init__(self, bot: Bot, chat_destination: str):
        """
        Initialize the sink.

        Args:
            bot: aiogram Bot instance
            chat_destination: Either "chat_id" or "chat_id:thread_id"
        """
        self.bot = bot
        self.chat_id, self.thread_id = self._parse_chat_destination(chat_destination)
        self._blocked = False

    @staticmethod
    def _parse_chat_destination(chat_config: str) -> Tuple[int, Optional[int]]:
        if ':' in chat_config:
            chat_id_str, thread_id_str = chat_config.split(':', 1)
            return int(chat_id_str), int(thread_id_str)
        return int(chat_config), None

    async def _send_message(self, text: str):
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            message_thread_id=self.thread_id,
            parse_mode=None,
            disable_web_page_preview=True
        )

    async def send(self, alert: Alert):
        if self._blocked:
            return

        text = format_telegram_message(alert)
        try:
            await self._send_message(text)
        except TelegramRetryAfter as e:
            logger.warning(f"Rate limit hit for chat {self.chat_id}, waiting {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            # Retry once
            await self._send_message(text)
        except TelegramForbiddenError:
            logger.warning(f"Bot blocked or removed from chat {self.chat_id}")
            self._blocked = True

    async def close(self):
        await self.bot.session.close()


def build_sinks(settings) -> List[AlertSink]:
    """Create the sinks enabled in settings."""
    sinks: List[AlertSink] = []

    if settings.enable_console_alerts:
        sinks.append(ConsoleSink())

    if settings.enable_file_alerts:
        sinks.append(FileSink(settings.alert_file_path))

    if settings.enable_webhook_alerts:
        if settings.webhook_url:
            sinks.append(WebhookSink(settings.webhook_url))
        else:
            logger.warning("Webhook alerts enabled but no webhook_url configured")

    if settings.enable_email_alerts:
        if settings.smtp_server and settings.email_sender:
            sinks.append(EmailSink(
                smtp_server=settings.smtp_server,
                smtp_port=settings.smtp_port,
                sender=settings.email_sender,
                recipients=list(settings.email_recipients),
                username=settings.smtp_username,
                password=settings.smtp_password,
            ))
        else:
            logger.warning("Email alerts enabled but SMTP server or sender missing")

    if settings.enable_telegram_alerts:
        if settings.telegram_bot_token and settings.telegram_chat_id:
            bot = Bot(token=settings.telegram_bot_token)
            sinks.append(TelegramSink(bot, settings.telegram_chat_id))
        else:
            logger.warning("Telegram alerts enabled but bot token or chat id missing")

    logger.info(f"Alert sinks enabled: {', '.join(s.name for s in sinks) or 'none'}")
    return sinks
