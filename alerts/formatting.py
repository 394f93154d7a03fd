"""
Message formatting for alert notifications.
"""
from typing import Any, Dict

from alerts.models import (
    Alert,
    AlertSeverity,
    CustomAlert,
    LargeTransferAlert,
    LowBalanceAlert,
    NetworkErrorAlert,
    SuspiciousActivityAlert,
    SystemErrorAlert,
)

MIST_PER_SUI = 1_000_000_000

SEVERITY_COLORS = {
    AlertSeverity.INFO: 0x3498DB,      # blue
    AlertSeverity.WARNING: 0xF39C12,   # orange
    AlertSeverity.ERROR: 0xE74C3C,     # red
    AlertSeverity.CRITICAL: 0x8B0000,  # dark red
}

SEVERITY_EMOJI = {
    AlertSeverity.INFO: "ℹ️",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.ERROR: "❌",
    AlertSeverity.CRITICAL: "🚨",
}


def format_amount(amount: int) -> str:
    """
    Format a raw on-chain amount as SUI with 9 decimals.

    Args:
        amount: Amount in MIST

    Returns:
        e.g. "1.500000000 SUI"
    """
    whole, frac = divmod(amount, MIST_PER_SUI)
    return f"{whole}.{frac:09d} SUI"


def truncate_address(address: str) -> str:
    """Shorten an address to 0x1234...abcd for alert text."""
    if len(address) > 10:
        return f"{address[:6]}...{address[-4:]}"
    return address


def format_alert_message(alert: Alert) -> str:
    """
    Render an alert as a single line of text.

    Args:
        alert: Any alert variant

    Returns:
        Message prefixed with "ALERT [SEVERITY]:"
    """
    prefix = f"ALERT [{alert.severity.value.upper()}]"

    if isinstance(alert, LowBalanceAlert):
        return (
            f"{prefix}: Low balance for {truncate_address(alert.address)}: "
            f"{format_amount(alert.balance)} (threshold: {format_amount(alert.threshold)})"
        )
    if isinstance(alert, LargeTransferAlert):
        return (
            f"{prefix}: Large transfer: {truncate_address(alert.sender)} → "
            f"{truncate_address(alert.recipient)} | Amount: {format_amount(alert.amount)} "
            f"{alert.token_type}"
        )
    if isinstance(alert, SuspiciousActivityAlert):
        return (
            f"{prefix}: Suspicious activity detected for {truncate_address(alert.address)}: "
            f"{alert.activity_type} - {alert.description} (Risk: {alert.risk_level.value.upper()})"
        )
    if isinstance(alert, NetworkErrorAlert):
        return f"{prefix}: Network error in {alert.component}: {alert.error}"
    if isinstance(alert, SystemErrorAlert):
        return f"{prefix}: System error in {alert.component}: {alert.error}"
    if isinstance(alert, CustomAlert):
        return f"{prefix}: {alert.title} - {alert.message}"

    raise TypeError(f"Unknown alert type: {type(alert).__name__}")


def format_alert_subject(alert: Alert) -> str:
    """Short subject line used for email alerts."""
    return f"[Transfer Tracker] {alert.severity.value.upper()} {alert.kind.replace('_', ' ')}"


def format_telegram_message(alert: Alert) -> str:
    """Plain-text Telegram message with a severity emoji header."""
    emoji = SEVERITY_EMOJI[alert.severity]
    timestamp = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
    return f"{emoji} {format_alert_message(alert)}\n\n🕐 {timestamp}"


def format_webhook_payload(alert: Alert) -> Dict[str, Any]:
    """Discord-compatible embed payload."""
    return {
        "embeds": [
            {
                "title": "SUI Tracker Alert",
                "description": format_alert_message(alert),
                "color": SEVERITY_COLORS[alert.severity],
                "timestamp": alert.timestamp.isoformat(),
            }
        ]
    }
