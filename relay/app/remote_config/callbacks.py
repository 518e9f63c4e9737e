"""
callbacks.py — Correlation handles for callback-wrapped (JSONP) responses.

A JSONP endpoint answers ``<callback>(<json>);`` where ``<callback>`` is a
name chosen by the requester. Each in-flight call reserves its own name
through ``CallbackRegistry.pending()``; the handle is released when the
``with`` block exits, whether the call succeeded, failed or was cancelled
by its time budget. A late response addressed to a released name is
dropped.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "relayCallback_"


@dataclass(frozen=True)
class CallbackHandle:
    """One reserved callback name and the future its payload resolves."""
    name: str
    future: "asyncio.Future[Any]"


class CallbackRegistry:
    """Tracks callback names reserved by in-flight requests."""

    def __init__(self, prefix: str = CALLBACK_PREFIX):
        self.prefix = prefix
        self._pending: Dict[str, "asyncio.Future[Any]"] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, name: object) -> bool:
        return name in self._pending

    @contextmanager
    def pending(self) -> Iterator[CallbackHandle]:
        """Reserve a fresh callback name for the duration of one call."""
        name = f"{self.prefix}{secrets.token_hex(5)}"
        while name in self._pending:
            name = f"{self.prefix}{secrets.token_hex(5)}"

        future = asyncio.get_running_loop().create_future()
        self._pending[name] = future
        try:
            yield CallbackHandle(name=name, future=future)
        finally:
            self._pending.pop(name, None)
            if not future.done():
                future.cancel()

    def complete(self, name: str, payload: Any) -> bool:
        """Hand ``payload`` to the call that reserved ``name``."""
        future = self._pending.get(name)
        if future is None or future.done():
            logger.debug("Dropping payload for unknown/expired callback %s", name)
            return False
        future.set_result(payload)
        return True
