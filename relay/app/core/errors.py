"""
Relay error taxonomy and its HTTP mapping.

Provides:
    • Domain-specific exception classes for every failure the delivery
      pipeline can produce
    • Consistent JSON error response format for the HTTP surface
    • Unhandled errors logged with their traceback

Propagation policy:
    Strategies raise these freely. The fallback chain records them, and
    the orchestrator absorbs everything at its boundary, converting it
    into a ``False`` return plus a logged diagnostic. Nothing in this
    module ever escapes ``initialize()`` or ``deliver()``.

Usage:
    from relay.app.core.errors import ConfigInvalidError

    raise ConfigInvalidError("fetch_json", "missing chatId")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RelayError(Exception):
    """Base exception for all application errors."""

    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class StrategyTimeoutError(RelayError):
    """A single strategy exceeded its time budget."""

    def __init__(self, strategy: str, budget_seconds: float):
        super().__init__(
            message=f"Strategy '{strategy}' timed out after {budget_seconds:.2f}s",
            error_code="STRATEGY_TIMEOUT",
            details={"strategy": strategy, "budget_seconds": budget_seconds},
        )


class AllStrategiesFailedError(RelayError):
    """A fallback chain was exhausted; carries every individual failure."""

    def __init__(self, chain: str, failures: Sequence[Any]):
        self.failures: List[Any] = list(failures)
        super().__init__(
            message=f"All {len(self.failures)} strategies failed for '{chain}'",
            error_code="ALL_STRATEGIES_FAILED",
            details={
                "chain": chain,
                "failures": [str(f) for f in self.failures],
            },
        )


class ConfigInvalidError(RelayError):
    """Configuration was retrieved but failed validation."""

    status_code = 422

    def __init__(self, source: str, reason: str = ""):
        super().__init__(
            message=f"Configuration from '{source}' is invalid: {reason}",
            error_code="CONFIG_INVALID",
            details={"source": source, "reason": reason},
        )


class ConfigUnavailableError(RelayError):
    """Every configuration retrieval strategy failed."""

    status_code = 503

    def __init__(self, endpoint: str, failures: Sequence[Any] = ()):
        self.failures: List[Any] = list(failures)
        super().__init__(
            message=f"Configuration unavailable from {endpoint}",
            error_code="CONFIG_UNAVAILABLE",
            details={
                "endpoint": endpoint,
                "failures": [str(f) for f in self.failures],
            },
        )


class EnrichmentTimeoutError(RelayError):
    """An enrichment field was not resolved within its budget (non-fatal)."""

    def __init__(self, field: str, budget_seconds: float):
        super().__init__(
            message=f"Enrichment field '{field}' timed out after {budget_seconds:.2f}s",
            error_code="ENRICHMENT_TIMEOUT",
            details={"field": field, "budget_seconds": budget_seconds},
        )


class TransportFailureError(RelayError):
    """A single transport failed; the chain falls back to the next one."""

    status_code = 502

    def __init__(self, transport: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Transport '{transport}' failed: {message}",
            error_code="TRANSPORT_FAILURE",
            details={"transport": transport, **details},
        )


class AllTransportsFailedError(RelayError):
    """Every transport failed for one delivery (terminal for that call)."""

    status_code = 502

    def __init__(self, delivery_id: str, failures: Sequence[Any] = ()):
        self.failures: List[Any] = list(failures)
        super().__init__(
            message=f"Delivery {delivery_id}: all transports failed",
            error_code="ALL_TRANSPORTS_FAILED",
            details={
                "delivery_id": delivery_id,
                "failures": [str(f) for f in self.failures],
            },
        )


# ═══════════════════════════════════════════════════════════════════════════
# HTTP mapping
# ═══════════════════════════════════════════════════════════════════════════

def _error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """``{"error": {...}}`` body shared by every handler."""
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return JSONResponse(status_code=status_code, content={"error": error})


def register_error_handlers(app: FastAPI) -> None:
    """Map relay errors, stray ValueErrors and anything else to JSON."""

    @app.exception_handler(RelayError)
    async def on_relay_error(request: Request, exc: RelayError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("%s: %s | %s", exc.error_code, exc.message, exc.details)
        return _error_response(request, exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError):
        logger.warning("Rejected request: %s", exc)
        return _error_response(request, 422, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception):
        logger.critical("Unhandled %s on %s", type(exc).__name__, request.url.path, exc_info=exc)
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _error_response(request, 500, "INTERNAL_ERROR", message)
