"""
Health aggregation for the delivery pipeline.

Components and how each one maps to a status:

    Component     healthy                degraded                 unhealthy
    ───────────   ─────────────────────  ───────────────────────  ────────────────
    config        READY                  not loaded / loading     last load FAILED
    enrichment    all fields resolved    pending, failed, off*    —
    transports    at least one           —                        none configured

    * disabled enrichment is reported healthy with message "Disabled".

The overall status is the worst component status. ``/health`` answers 503
only when the relay cannot deliver at all.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List

from relay.app.core.config import settings
from relay.app.delivery.models import FieldState, InitState
from relay.app.delivery.orchestrator import DeliveryOrchestrator


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # can deliver, with reduced fidelity
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            out["message"] = self.message
        if self.details:
            out["details"] = self.details
        return out


@dataclass
class HealthReport:
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    uptime_seconds: float = 0.0

    @property
    def status(self) -> HealthStatus:
        return worst(c.status for c in self.components)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_started_at = time.monotonic()

_CONFIG_STATUS = {
    InitState.READY: HealthStatus.HEALTHY,
    InitState.UNINITIALIZED: HealthStatus.DEGRADED,
    InitState.IN_FLIGHT: HealthStatus.DEGRADED,
    InitState.FAILED: HealthStatus.UNHEALTHY,
}


def worst(statuses: Iterable[HealthStatus]) -> HealthStatus:
    return max(statuses, key=lambda s: s.severity, default=HealthStatus.HEALTHY)


def check_config(orchestrator: DeliveryOrchestrator) -> ComponentHealth:
    """Nothing is delivered until the configuration is READY."""
    state = orchestrator.state
    return ComponentHealth(
        name="config",
        status=_CONFIG_STATUS[state],
        message=f"Configuration {state.value}",
        details={"attempts": orchestrator.status()["config_attempts"]},
    )


def check_enrichment(orchestrator: DeliveryOrchestrator) -> ComponentHealth:
    """Enrichment is best-effort, so it never makes the relay unhealthy."""
    if not orchestrator.collect_enrichment:
        return ComponentHealth(name="enrichment", message="Disabled")

    states = orchestrator.enrichment.states
    details = {name: state.value for name, state in states.items()}
    if all(s == FieldState.RESOLVED for s in states.values()):
        return ComponentHealth(name="enrichment", message="Collected", details=details)

    pending = any(s == FieldState.PENDING for s in states.values())
    return ComponentHealth(
        name="enrichment",
        status=HealthStatus.DEGRADED,
        message=(
            "Collection in progress" if pending
            else "Collection failed; sentinels will be rendered"
        ),
        details=details,
    )


def check_transports(orchestrator: DeliveryOrchestrator) -> ComponentHealth:
    names = [t.name for t in orchestrator.transports]
    if not names:
        return ComponentHealth(
            name="transports",
            status=HealthStatus.UNHEALTHY,
            message="No transports configured",
        )
    return ComponentHealth(
        name="transports",
        message=f"{len(names)} transport(s) configured",
        details={"order": names},
    )


def run_health_check(orchestrator: DeliveryOrchestrator) -> HealthReport:
    """Probe every component. Synchronous: reads state only, never waits."""
    return HealthReport(
        components=[
            check(orchestrator)
            for check in (check_config, check_enrichment, check_transports)
        ],
        uptime_seconds=time.monotonic() - _started_at,
    )
