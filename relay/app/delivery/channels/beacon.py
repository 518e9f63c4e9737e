"""
beacon.py — Fire-and-forget channel (lowest observability, last resort).

Delivery mechanism:
    • Schedules POST {base_url}/bot{credential}/sendMessage in the background
    • Returns as soon as the request is *dispatched*
    • The outcome is only logged, never reported to the caller

``True`` here means "handed off", not "acknowledged". Because this is the
last channel in the chain, a successful dispatch ends the delivery as
delivered even if the request later fails. That optimistic bias is kept
on purpose; see DESIGN.md.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Set

import httpx

from relay.app.delivery.channels.bot_api import send_message_url

logger = logging.getLogger(__name__)

CHANNEL = "beacon"


class BeaconTracker:
    """
    Strong references to one owner's dispatched requests.

    Each orchestrator holds its own tracker, so draining on close waits
    only for that orchestrator's dispatches, on the loop they run in.
    """

    def __init__(self) -> None:
        self._in_flight: Set[asyncio.Task] = set()

    def track(self, task: asyncio.Task) -> None:
        self._in_flight.add(task)
        task.add_done_callback(self._on_done)

    def pending(self) -> int:
        """Number of dispatched requests still outstanding."""
        return len(self._in_flight)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait (bounded) for outstanding dispatches, e.g. before closing the client."""
        if not self._in_flight:
            return
        _, still_pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        for task in still_pending:
            task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            logger.debug("[BEACON] dispatch cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("[BEACON] background request failed: %s", exc)
            return
        response: httpx.Response = task.result()
        logger.debug("[BEACON] background request answered HTTP %d", response.status_code)


async def send(
    text: str,
    destination: str,
    credential: str,
    *,
    client: httpx.AsyncClient,
    base_url: str,
    tracker: BeaconTracker,
    timeout_seconds: float = 5.0,
) -> bool:
    """Dispatch ``text`` without waiting for an answer."""
    if client.is_closed:
        logger.warning("[BEACON] client closed; cannot dispatch")
        return False

    task = asyncio.create_task(
        client.post(
            send_message_url(base_url, credential),
            json={"chat_id": destination, "text": text},
            timeout=timeout_seconds,
        )
    )
    tracker.track(task)

    logger.info("[BEACON] → %s: %d chars dispatched", destination, len(text))
    return True
