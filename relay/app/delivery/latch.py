"""
latch.py — Single-write, multi-read value slot with bounded-wait reads.

A TimedLatch starts PENDING, is settled at most once by its producer
(``resolve`` or ``fail``), and can be awaited by any number of consumers,
each under its own budget. Waiting blocks on an ``asyncio.Event``; there
is no interval polling.

    latch = TimedLatch("ip_address")
    ...
    value = await latch.await_value(budget=2.0)
    # → "1.2.3.4" | Sentinel.UNKNOWN | Sentinel.FAILED | Sentinel.TIMED_OUT

A waiter that times out does not settle the latch. The producer may still
write later and later waiters will see the value.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from relay.app.delivery.models import FieldState, Sentinel

logger = logging.getLogger(__name__)


class TimedLatch:
    """Value slot filled once by a background producer."""

    def __init__(self, name: str):
        self.name = name
        self._event = asyncio.Event()
        self._state = FieldState.PENDING
        self._value: Any = Sentinel.PENDING
        self._reason: Optional[str] = None

    def __repr__(self) -> str:
        return f"TimedLatch({self.name!r}, state={self._state.value})"

    @property
    def state(self) -> FieldState:
        return self._state

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        """Failure reason, if the producer reported one."""
        return self._reason

    def peek(self) -> Any:
        """Current value without waiting (``Sentinel.PENDING`` if unsettled)."""
        return self._value

    def resolve(self, value: Any) -> bool:
        """
        Settle with ``value``. ``None`` settles as ``Sentinel.UNKNOWN``.

        Returns False (and changes nothing) if already settled.
        """
        if self._event.is_set():
            logger.debug("Latch %s already settled; ignoring resolve", self.name)
            return False
        self._value = Sentinel.UNKNOWN if value is None else value
        self._state = FieldState.RESOLVED
        self._event.set()
        return True

    def fail(self, reason: str = "") -> bool:
        """Settle as ``Sentinel.FAILED``. Returns False if already settled."""
        if self._event.is_set():
            logger.debug("Latch %s already settled; ignoring fail", self.name)
            return False
        self._value = Sentinel.FAILED
        self._state = FieldState.FAILED
        self._reason = reason or None
        self._event.set()
        return True

    async def await_value(self, budget: float) -> Any:
        """
        Wait at most ``budget`` seconds for the latch to settle.

        Returns the settled value, or ``Sentinel.TIMED_OUT`` if the budget
        elapses first. Never waits longer than ``budget``.
        """
        if not self._event.is_set():
            try:
                await asyncio.wait_for(self._event.wait(), timeout=max(budget, 0.0))
            except asyncio.TimeoutError:
                logger.debug("Latch %s timed out after %.2fs", self.name, budget)
                return Sentinel.TIMED_OUT
        return self._value
