"""
chain.py — Strategy abstraction and the sequential fallback chain.

A Strategy is one concrete alternative way to reach a goal (fetch the
config, look up the public IP, send the message). A chain tries its
strategies strictly in order and stops at the first success.

═══════════════════════════════════════════════════════════════════════════
CHAIN SEMANTICS
═══════════════════════════════════════════════════════════════════════════

    for each strategy, in priority order:
        run it under its own budget (asyncio.wait_for)
        ├── value accepted     → stop, return success (later ones never run)
        ├── raised / rejected  → record failure, continue
        ├── returned None/False→ record failure, continue
        └── budget elapsed     → record timeout failure, continue
    exhausted → outcome carries every failure, in order

First success wins; it is not a "best result" search. Strategies never run
concurrently, so "first" is always well-defined and no abandoned attempt
can race a winner. Strategies must only write to values they own until
they report success.

Cancellation of the *caller* (CancelledError) propagates untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from relay.app.core.errors import StrategyTimeoutError
from relay.app.delivery.models import ChainOutcome, StrategyFailure

logger = logging.getLogger(__name__)


class EmptyResultError(Exception):
    """A strategy completed but reported nothing (None / False)."""


@dataclass(frozen=True)
class Strategy:
    """
    A named, stateless operation.

    ``operation`` is a zero-argument coroutine function. It signals
    failure by raising or by returning ``None`` / ``False``.
    """
    name: str
    operation: Callable[[], Awaitable[Any]]

    async def attempt(self, budget_seconds: float) -> Any:
        """Run once under ``budget_seconds``; raise on any failure."""
        try:
            result = await asyncio.wait_for(self.operation(), timeout=budget_seconds)
        except asyncio.TimeoutError as exc:
            raise StrategyTimeoutError(self.name, budget_seconds) from exc

        if result is None or result is False:
            raise EmptyResultError(f"{self.name} returned no result")
        return result


async def run_chain(
    strategies: Sequence[Strategy],
    budget_per_attempt: float,
    *,
    chain: str = "chain",
    validate: Optional[Callable[[Any], Any]] = None,
) -> ChainOutcome:
    """
    Run ``strategies`` in order until one succeeds.

    Parameters
    ----------
    strategies : sequence of Strategy
        Priority order, highest first.
    budget_per_attempt : float
        Independent time budget for each strategy, in seconds.
    chain : str
        Diagnostic name used in logs and the aggregate error.
    validate : callable, optional
        Applied to a strategy's result; its return value becomes the
        chain's value. Raising rejects the result and the chain moves on.

    Returns
    -------
    ChainOutcome
        ``succeeded`` with ``value`` and ``winner``, or every failure.
    """
    outcome = ChainOutcome(chain=chain)

    for strategy in strategies:
        outcome.attempts.append(strategy.name)
        start = time.perf_counter()

        try:
            value = await strategy.attempt(budget_per_attempt)
            if validate is not None:
                value = validate(value)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000
            failure = StrategyFailure(
                strategy=strategy.name,
                error=exc,
                elapsed_ms=elapsed_ms,
                timed_out=isinstance(exc, StrategyTimeoutError),
            )
            outcome.failures.append(failure)
            logger.warning(
                "[%s] %s failed after %.1fms: %s",
                chain, strategy.name, elapsed_ms, exc,
                extra={"chain": chain, "strategy": strategy.name,
                       "duration_ms": elapsed_ms},
            )
            continue

        elapsed_ms = (time.perf_counter() - start) * 1000
        outcome.succeeded = True
        outcome.value = value
        outcome.winner = strategy.name
        logger.info(
            "[%s] %s succeeded in %.1fms (%d earlier failure(s))",
            chain, strategy.name, elapsed_ms, len(outcome.failures),
            extra={"chain": chain, "strategy": strategy.name,
                   "duration_ms": elapsed_ms},
        )
        return outcome

    logger.error(
        "[%s] all %d strategies failed", chain, len(outcome.failures),
        extra={"chain": chain},
    )
    return outcome
