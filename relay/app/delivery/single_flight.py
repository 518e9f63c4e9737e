"""
single_flight.py — Run an expensive setup operation at most once at a time.

Concurrent first callers must not race several configuration loads. The
first caller to find the initializer UNINITIALIZED (or FAILED) starts one
shared task; every caller, including that first one, awaits the same task
through ``asyncio.shield`` under its own budget.

    UNINITIALIZED ──▶ IN_FLIGHT ──▶ READY        (value stored once)
                          └──────▶ FAILED        (next caller retries)

A caller whose budget elapses gets ``False``; the shared attempt keeps
running and can still reach READY for whoever asks next.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from relay.app.delivery.models import InitState

logger = logging.getLogger(__name__)


class SingleFlightInitializer:
    """
    Single-flight guard around an async ``loader``.

    Parameters
    ----------
    loader : callable
        Zero-argument coroutine function. Its return value is stored as
        ``value`` on success. Raising or returning ``None`` is a failure.
    budget : float
        Seconds each ``ensure_ready`` caller is willing to wait.
    name : str
        Diagnostic name.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[Any]],
        budget: float,
        *,
        name: str = "initializer",
    ):
        self._loader = loader
        self.budget = budget
        self.name = name
        self._state = InitState.UNINITIALIZED
        self._value: Any = None
        self._task: Optional[asyncio.Task] = None
        self.attempts = 0
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def value(self) -> Any:
        """Loaded value; ``None`` until READY."""
        return self._value

    @property
    def ready(self) -> bool:
        return self._state == InitState.READY

    async def ensure_ready(self) -> bool:
        """Return True once the loader has succeeded, waiting at most ``budget``."""
        if self._state == InitState.READY:
            return True

        if self._task is None:
            self._state = InitState.IN_FLIGHT
            self.attempts += 1
            logger.info("[%s] starting attempt %d", self.name, self.attempts)
            self._task = asyncio.create_task(self._run())

        task = self._task
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.budget)
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] not ready within %.2fs (state=%s)",
                self.name, self.budget, self._state.value,
            )
            return False
        except asyncio.CancelledError:
            # The shared attempt was cancelled, not this caller
            if task.cancelled():
                logger.warning("[%s] attempt %d cancelled", self.name, self.attempts)
                return False
            raise

    async def _run(self) -> bool:
        try:
            value = await self._loader()
        except Exception as exc:
            self.last_error = exc
            self._state = InitState.FAILED
            logger.error("[%s] attempt %d failed: %s", self.name, self.attempts, exc)
            return False
        else:
            if value is None:
                self._state = InitState.FAILED
                logger.error("[%s] attempt %d produced nothing", self.name, self.attempts)
                return False
            self._value = value
            self._state = InitState.READY
            self.last_error = None
            logger.info("[%s] ready after %d attempt(s)", self.name, self.attempts)
            return True
        finally:
            if self._state == InitState.IN_FLIGHT:
                # cancelled mid-flight
                self._state = InitState.FAILED
            self._task = None

    async def cancel(self) -> None:
        """Cancel an in-flight attempt (shutdown only)."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
