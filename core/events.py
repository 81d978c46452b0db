"""Event types shared by the engine and its observers.

Events are transport-agnostic: the RPC client, the health prober and the
engine publish typed dataclasses instead of ad-hoc dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class EventType(str, Enum):
    SYSTEM_FAULT = "system_fault"
    HEALTH_UPDATE = "health_update"
    PORTFOLIO_REFRESHED = "portfolio_refreshed"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class EventBase:
    """Fields common to every event."""

    event_type: EventType
    severity: Severity
    source: str
    message: str
    detail: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SystemFaultEvent(EventBase):
    """Data-layer fault; ``category`` is a FailureReason value."""

    component: str = ""
    chain_id: Optional[int] = None
    endpoint: Optional[str] = None
    category: str = ""


@dataclass(slots=True)
class HealthStatus(EventBase):
    chain_id: Optional[int] = None
    endpoint: str = ""
    healthy: bool = True
    latency_ms: Optional[float] = None


@dataclass(slots=True)
class PortfolioRefreshedEvent(EventBase):
    owner: str = ""
    total_value_usd: float = 0.0
    holdings: int = 0
    failed_chains: tuple = ()


@dataclass(slots=True)
class EventEnvelope:
    """Wraps an event with its publish timestamp."""

    event: EventBase
    ts: float
    id: Optional[str] = None


__all__ = [
    "EventBase",
    "EventEnvelope",
    "EventType",
    "HealthStatus",
    "PortfolioRefreshedEvent",
    "Severity",
    "SystemFaultEvent",
]
