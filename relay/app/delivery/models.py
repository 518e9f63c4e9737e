"""
models.py — Shared data structures for the delivery pipeline.

Defines:
    • InitState        — single-flight configuration state machine
    • FieldState       — per-field enrichment lifecycle
    • Sentinel         — terminal placeholder texts for enrichment fields
    • RemoteConfig     — validated credential + destination
    • DeliveryRequest  — one caller-supplied message
    • ClientProfile    — caller-supplied platform attributes
    • EnrichmentSnapshot — frozen view of the enrichment record
    • StrategyFailure / ChainOutcome — fallback chain results

═══════════════════════════════════════════════════════════════════════════
STATE MACHINES
═══════════════════════════════════════════════════════════════════════════

Initialization (one per orchestrator):

    UNINITIALIZED ──call──▶ IN_FLIGHT ──success──▶ READY ──call──▶ READY
                               │
                               └──failure──▶ FAILED ──call──▶ IN_FLIGHT

    FAILED is not sticky: the next caller retries from scratch.

Enrichment field (one per collected field):

    PENDING ──▶ RESOLVED(value) | FAILED | TIMED_OUT

    TIMED_OUT is a per-waiter view; the field itself stays PENDING so a
    late producer write is still visible to later deliveries.

═══════════════════════════════════════════════════════════════════════════
SENTINELS
═══════════════════════════════════════════════════════════════════════════

    Text                    Meaning
    ──────────────────────  ─────────────────────────────────────────────
    "Collecting..."         still pending (never rendered after a wait)
    "Unknown"               source answered but did not report the field
    "Collection Failed"     every source failed
    "Collection Timed Out"  the waiter's budget elapsed first
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay.app.core.errors import AllStrategiesFailedError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class InitState(str, Enum):
    """Configuration acquisition state."""
    UNINITIALIZED = "uninitialized"
    IN_FLIGHT     = "in_flight"
    READY         = "ready"
    FAILED        = "failed"


class FieldState(str, Enum):
    """Enrichment field lifecycle."""
    PENDING   = "pending"
    RESOLVED  = "resolved"
    FAILED    = "failed"
    TIMED_OUT = "timed_out"


class Sentinel(str, Enum):
    """Placeholder texts rendered in place of unresolved enrichment values."""
    PENDING   = "Collecting..."
    UNKNOWN   = "Unknown"
    FAILED    = "Collection Failed"
    TIMED_OUT = "Collection Timed Out"

    def __str__(self) -> str:
        return self.value


# ═══════════════════════════════════════════════════════════════════════════
# Remote configuration
# ═══════════════════════════════════════════════════════════════════════════

class BotSection(BaseModel):
    """Credential and destination for the bot transports."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    token: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1, alias="chatId")

    @field_validator("chat_id", mode="before")
    @classmethod
    def _coerce_chat_id(cls, v: Any) -> Any:
        # Chat ids are commonly published as JSON numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class RemoteConfig(BaseModel):
    """
    Configuration required before any delivery can proceed.

    Immutable once loaded; there is no refresh for the process lifetime.
    Expected JSON shape::

        {"telegram": {"token": "123:abc", "chatId": "-100200300"}}
    """

    model_config = ConfigDict(frozen=True)

    telegram: BotSection

    @property
    def credential(self) -> str:
        return self.telegram.token

    @property
    def destination(self) -> str:
        return self.telegram.chat_id


# ═══════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DeliveryRequest:
    """
    One message to deliver.

    ``fields`` keeps the caller's order for rendering. Keys must be
    unique. ``prefix`` / ``suffix`` of ``None`` fall back to settings.
    """
    fields: Tuple[Tuple[str, str], ...] = ()
    prefix: Optional[str] = None
    suffix: Optional[str] = None

    def __post_init__(self) -> None:
        seen = set()
        for key, _ in self.fields:
            if key in seen:
                raise ValueError(f"Duplicate field key: {key!r}")
            seen.add(key)

    @classmethod
    def from_mapping(
        cls,
        data: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]],
        *,
        prefix: Optional[str] = None,
        suffix: Optional[str] = None,
    ) -> "DeliveryRequest":
        items = data.items() if isinstance(data, Mapping) else data
        return cls(
            fields=tuple((str(k), str(v)) for k, v in items),
            prefix=prefix,
            suffix=suffix,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": dict(self.fields),
            "prefix": self.prefix,
            "suffix": self.suffix,
        }


def _local_timezone() -> str:
    return datetime.now().astimezone().tzname() or "Unknown"


@dataclass(frozen=True)
class ClientProfile:
    """Platform attributes supplied by the host; rendered as-is."""
    timezone: str = field(default_factory=_local_timezone)
    browser: str = "Unknown"
    device: str = "Unknown"
    language: str = "Unknown"


@dataclass(frozen=True)
class EnrichmentSnapshot:
    """A frozen view of the enrichment record taken by one waiter."""
    ip_address: str
    country: str
    profile: ClientProfile
    states: Dict[str, FieldState] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return all(s == FieldState.RESOLVED for s in self.states.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip_address": self.ip_address,
            "country": self.country,
            "timezone": self.profile.timezone,
            "browser": self.profile.browser,
            "device": self.profile.device,
            "language": self.profile.language,
            "states": {k: v.value for k, v in self.states.items()},
        }


# ═══════════════════════════════════════════════════════════════════════════
# Fallback chain results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StrategyFailure:
    """Record of one failed strategy attempt."""
    strategy: str
    error: BaseException
    elapsed_ms: float = 0.0
    timed_out: bool = False

    def __str__(self) -> str:
        kind = "timeout" if self.timed_out else type(self.error).__name__
        return f"{self.strategy}: {kind}: {self.error}"


@dataclass
class ChainOutcome:
    """Result of running a fallback chain."""
    chain: str
    succeeded: bool = False
    value: Any = None
    winner: Optional[str] = None
    failures: List[StrategyFailure] = field(default_factory=list)
    attempts: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[BaseException]:
        return [f.error for f in self.failures]

    def raise_for_failure(self) -> None:
        """Raise ``AllStrategiesFailedError`` unless the chain succeeded."""
        if not self.succeeded:
            raise AllStrategiesFailedError(self.chain, self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain,
            "succeeded": self.succeeded,
            "winner": self.winner,
            "attempts": list(self.attempts),
            "failures": [str(f) for f in self.failures],
        }
