"""
Alert data structures.

Alert is a closed union of six variants discriminated on `kind`; every
variant carries `severity` and `timestamp`.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertSeverity(str, Enum):
    """Alert severity enumeration."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Risk level attached to suspicious activity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LowBalanceAlert(BaseModel):
    kind: Literal["low_balance"] = "low_balance"
    address: str
    balance: int
    threshold: int
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=_utcnow)


class LargeTransferAlert(BaseModel):
    kind: Literal["large_transfer"] = "large_transfer"
    sender: str
    recipient: str
    amount: int
    transaction_id: str
    token_type: str
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=_utcnow)


class SuspiciousActivityAlert(BaseModel):
    kind: Literal["suspicious_activity"] = "suspicious_activity"
    address: str
    activity_type: str
    description: str
    risk_level: RiskLevel
    related_transactions: List[str] = Field(default_factory=list)
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=_utcnow)


class NetworkErrorAlert(BaseModel):
    kind: Literal["network_error"] = "network_error"
    error: str
    component: str
    severity: AlertSeverity = AlertSeverity.ERROR
    timestamp: datetime = Field(default_factory=_utcnow)


class SystemErrorAlert(BaseModel):
    kind: Literal["system_error"] = "system_error"
    error: str
    component: str
    severity: AlertSeverity = AlertSeverity.ERROR
    timestamp: datetime = Field(default_factory=_utcnow)


class CustomAlert(BaseModel):
    kind: Literal["custom"] = "custom"
    title: str
    message: str
    category: str
    severity: AlertSeverity = AlertSeverity.INFO
    timestamp: datetime = Field(default_factory=_utcnow)


Alert = Annotated[
    Union[
        LowBalanceAlert,
        LargeTransferAlert,
        SuspiciousActivityAlert,
        NetworkErrorAlert,
        SystemErrorAlert,
        CustomAlert,
    ],
    Field(discriminator="kind"),
]


class AlertStats(BaseModel):
    """Counts of dispatched alerts."""
    total_alerts: int = 0
    suppressed_alerts: int = 0
    alerts_by_type: Dict[str, int] = Field(default_factory=dict)
    alerts_by_severity: Dict[str, int] = Field(default_factory=dict)
