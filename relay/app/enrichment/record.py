"""
record.py — EnrichmentRecord: background-populated, bounded-wait metadata.

The record owns one TimedLatch per collected field. A single background
task runs the lookup chain and is the only writer of every latch, so no
field ever has two producers. Readers take a snapshot under a budget:

    snapshot(budget)
      ├── all latches settled in time → resolved values / "Unknown"
      ├── lookup chain exhausted      → "Collection Failed"
      └── budget elapsed first        → "Collection Timed Out" (per field)

A timed-out waiter does not close the latch. If the producer finishes
later, subsequent snapshots see the real value.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from relay.app.delivery.chain import Strategy, run_chain
from relay.app.delivery.latch import TimedLatch
from relay.app.delivery.models import (
    ChainOutcome,
    ClientProfile,
    EnrichmentSnapshot,
    FieldState,
    Sentinel,
)

logger = logging.getLogger(__name__)

ENRICHMENT_FIELDS = ("ip_address", "country")


class EnrichmentRecord:
    """Per-field latches plus the static client profile."""

    def __init__(self, profile: Optional[ClientProfile] = None):
        self.profile = profile or ClientProfile()
        self._latches: Dict[str, TimedLatch] = {
            name: TimedLatch(name) for name in ENRICHMENT_FIELDS
        }
        self._task: Optional[asyncio.Task] = None

    def latch(self, name: str) -> TimedLatch:
        return self._latches[name]

    @property
    def states(self) -> Dict[str, FieldState]:
        return {name: latch.state for name, latch in self._latches.items()}

    @property
    def closed(self) -> bool:
        """True once every field has reached a terminal state."""
        return all(latch.done for latch in self._latches.values())

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self, strategies: Sequence[Strategy], budget_per_attempt: float) -> asyncio.Task:
        """Begin background collection (idempotent). Needs a running loop."""
        if self._task is None:
            self._task = asyncio.create_task(self.collect(strategies, budget_per_attempt))
        return self._task

    async def collect(
        self,
        strategies: Sequence[Strategy],
        budget_per_attempt: float,
    ) -> ChainOutcome:
        """Run the lookup chain once and settle every latch from its outcome."""
        outcome = await run_chain(strategies, budget_per_attempt, chain="enrichment")

        if outcome.succeeded:
            for name, latch in self._latches.items():
                latch.resolve(outcome.value.get(name))
            logger.info("Enrichment collected via %s", outcome.winner)
        else:
            reason = "; ".join(str(f) for f in outcome.failures) or "no lookup services"
            for latch in self._latches.values():
                latch.fail(reason)
            logger.warning("Enrichment collection failed: %s", reason)

        return outcome

    async def snapshot(self, budget: float) -> EnrichmentSnapshot:
        """Wait at most ``budget`` for all fields together and freeze the result."""
        latches: List[TimedLatch] = list(self._latches.values())
        values = await asyncio.gather(*(latch.await_value(budget) for latch in latches))

        states: Dict[str, FieldState] = {}
        rendered: Dict[str, str] = {}
        for latch, value in zip(latches, values):
            if value is Sentinel.TIMED_OUT:
                states[latch.name] = FieldState.TIMED_OUT
            else:
                states[latch.name] = latch.state
            rendered[latch.name] = str(value)

        return EnrichmentSnapshot(
            ip_address=rendered["ip_address"],
            country=rendered["country"],
            profile=self.profile,
            states=states,
        )

    async def cancel(self) -> None:
        """Abandon the collection task (shutdown only)."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
