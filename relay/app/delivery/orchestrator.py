"""
orchestrator.py — DeliveryOrchestrator: the public initialize()/deliver().

This is the central coordinator. It is an explicit context object: the
hosting application constructs one and passes it around. It owns the
loaded configuration, the initialization state machine, the enrichment
record, the HTTP client and the strategy lists.

═══════════════════════════════════════════════════════════════════════════
DELIVERY FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Initialization  │  SingleFlightInitializer over the config chain
    │ (≤ timeout × chain) │  inline → fetch_json → fetch_text → fetch_jsonp
    └─────────┬───────────┘  not ready in time → False, no transport tried
              │
              ▼
    ┌─────────────────────┐
    │  2. Enrichment      │  snapshot of the background lookup (≤ timeout)
    │     (optional)      │  partial data is fine; sentinels fill the gaps
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Render          │  prefix, fields in caller order, client info,
    │                     │  suffix (deterministic)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Transport chain │  bot_api → query_string → beacon
    │     (≤ timeout each)│  first success wins → True; exhausted → False
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE SEMANTICS
═══════════════════════════════════════════════════════════════════════════

Nothing raised inside the pipeline escapes ``initialize`` or ``deliver``;
every failure becomes ``False`` plus a message on the observability sink.

A ``False`` return does not prove the message was not received: a
transport can deliver physically and still fail to confirm (timeout while
reading the acknowledgement), after which the chain moves on and may fail
overall. ``True`` from an observable transport is not expected to be a
false positive. The beacon channel is the exception: its ``True`` means
"dispatched".
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from relay.app.core.config import Settings, get_settings
from relay.app.core.errors import AllTransportsFailedError, EnrichmentTimeoutError
from relay.app.core.logging_config import LogSink, bind_log_context, emit, logger_sink, reset_log_context
from relay.app.delivery.chain import Strategy, run_chain
from relay.app.delivery.channels import beacon, bot_api, query_string
from relay.app.delivery.models import (
    ClientProfile,
    DeliveryRequest,
    EnrichmentSnapshot,
    FieldState,
    InitState,
    RemoteConfig,
)
from relay.app.delivery.render import render_message
from relay.app.delivery.single_flight import SingleFlightInitializer
from relay.app.enrichment.record import EnrichmentRecord
from relay.app.enrichment.sources import build_lookup_strategies
from relay.app.remote_config.loaders import build_config_strategies, load_remote_config

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Transport Registry
# ═══════════════════════════════════════════════════════════════════════════

# (text, destination, credential) -> delivered?
TransportSend = Callable[[str, str, str], Awaitable[bool]]


@dataclass(frozen=True)
class Transport:
    """A named send function, most observable first."""
    name: str
    send: TransportSend


def build_default_transports(
    client: httpx.AsyncClient,
    settings: Settings,
    tracker: beacon.BeaconTracker,
) -> List[Transport]:
    """bot_api → query_string → beacon, bound to ``client`` and settings."""
    common = {
        "client": client,
        "base_url": settings.BOT_API_BASE_URL,
        "timeout_seconds": settings.TIMEOUT_SECONDS,
    }
    return [
        Transport(bot_api.CHANNEL, partial(bot_api.send, parse_mode=settings.BOT_PARSE_MODE, **common)),
        Transport(query_string.CHANNEL, partial(query_string.send, **common)),
        Transport(beacon.CHANNEL, partial(beacon.send, tracker=tracker, **common)),
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryOrchestrator:
    """
    Coordinates initialization, enrichment, rendering and transport fallback.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to the process settings.
    client : httpx.AsyncClient, optional
        Shared HTTP client. Created (and closed by ``aclose``) if omitted.
    config_strategies, lookup_strategies : sequence of Strategy, optional
        Override the default retrieval / lookup chains.
    transports : sequence of Transport, optional
        Override the default transport chain.
    profile : ClientProfile, optional
        Static platform attributes for the enrichment block.
    collect_enrichment : bool, optional
        Defaults to ``settings.COLLECT_ENRICHMENT``.
    sink : LogSink, optional
        Observability collaborator; defaults to this module's logger.

    Enrichment collection starts at construction when an event loop is
    running, otherwise on the first ``initialize``/``deliver`` call.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        config_strategies: Optional[Sequence[Strategy]] = None,
        lookup_strategies: Optional[Sequence[Strategy]] = None,
        transports: Optional[Sequence[Transport]] = None,
        profile: Optional[ClientProfile] = None,
        collect_enrichment: Optional[bool] = None,
        sink: Optional[LogSink] = None,
    ):
        self.settings = settings or get_settings()
        self.timeout = self.settings.TIMEOUT_SECONDS
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.timeout)
        self.collect_enrichment = (
            self.settings.COLLECT_ENRICHMENT if collect_enrichment is None
            else collect_enrichment
        )
        self._sink = sink or logger_sink(logger)
        self.beacons = beacon.BeaconTracker()

        self._config_strategies = (
            list(config_strategies) if config_strategies is not None
            else build_config_strategies(self.client, self.settings)
        )
        self._lookup_strategies = (
            list(lookup_strategies) if lookup_strategies is not None
            else build_lookup_strategies(self.client, self.timeout)
        )
        self.transports: List[Transport] = (
            list(transports) if transports is not None
            else build_default_transports(self.client, self.settings, self.beacons)
        )

        # Each config strategy may use its full timeout before the next runs
        self._initializer = SingleFlightInitializer(
            self._load_config,
            max(1, len(self._config_strategies)) * self.timeout,
            name="config",
        )
        self.enrichment = EnrichmentRecord(profile)
        self._start_collection()

    # ── Context management ──

    async def __aenter__(self) -> "DeliveryOrchestrator":
        self._start_collection()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Abandon background work and close an owned HTTP client."""
        await self._initializer.cancel()
        await self.enrichment.cancel()
        await self.beacons.drain(self.timeout)
        if self._owns_client and not self.client.is_closed:
            await self.client.aclose()

    # ── Public surface ──

    @property
    def state(self) -> InitState:
        return self._initializer.state

    @property
    def config(self) -> Optional[RemoteConfig]:
        return self._initializer.value

    async def initialize(self) -> bool:
        """Acquire configuration (single-flight). Never raises."""
        self._start_collection()
        try:
            ready = await self._initializer.ensure_ready()
        except Exception as exc:
            emit(self._sink, logging.ERROR, f"Initialization aborted: {exc}")
            return False

        if not ready:
            reason = self._initializer.last_error or f"not ready within {self._initializer.budget:.2f}s"
            emit(self._sink, logging.ERROR, f"Initialization failed: {reason}")
        return ready

    async def deliver(self, request: DeliveryRequest, *, delivery_id: Optional[str] = None) -> bool:
        """
        Deliver one request through the transport chain.

        Returns True on the first transport success, False otherwise.
        Never raises.
        """
        delivery_id = delivery_id or uuid.uuid4().hex[:12]
        token = bind_log_context(delivery_id=delivery_id)
        try:
            return await self._deliver(request, delivery_id)
        except Exception as exc:
            emit(self._sink, logging.ERROR, f"Delivery {delivery_id} aborted: {exc}")
            return False
        finally:
            reset_log_context(token)

    async def send_message(
        self,
        data: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]],
        prefix: Optional[str] = None,
        suffix: Optional[str] = None,
    ) -> bool:
        """Convenience wrapper: build a DeliveryRequest and deliver it."""
        try:
            request = DeliveryRequest.from_mapping(data, prefix=prefix, suffix=suffix)
        except ValueError as exc:
            emit(self._sink, logging.ERROR, f"Rejected request: {exc}")
            return False
        return await self.deliver(request)

    async def render(self, request: DeliveryRequest) -> str:
        """Render ``request`` exactly as ``deliver`` would, without sending."""
        snapshot = await self._enrichment_snapshot() if self.collect_enrichment else None
        return self._render(request, snapshot)

    def status(self) -> Dict[str, Any]:
        """Point-in-time view for health checks."""
        return {
            "init_state": self.state.value,
            "config_attempts": self._initializer.attempts,
            "enrichment_enabled": self.collect_enrichment,
            "enrichment": {k: v.value for k, v in self.enrichment.states.items()},
            "transports": [t.name for t in self.transports],
        }

    # ── Internals ──

    def _start_collection(self) -> None:
        if not self.collect_enrichment or self.enrichment.started:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; enrichment starts on first use")
            return
        self.enrichment.start(self._lookup_strategies, self.timeout)

    async def _load_config(self) -> RemoteConfig:
        return await load_remote_config(
            self._config_strategies, self.timeout,
            endpoint=self.settings.CONFIG_URL,
        )

    async def _enrichment_snapshot(self) -> EnrichmentSnapshot:
        self._start_collection()
        snapshot = await self.enrichment.snapshot(self.timeout)
        for name, state in snapshot.states.items():
            if state == FieldState.TIMED_OUT:
                emit(self._sink, logging.WARNING, str(EnrichmentTimeoutError(name, self.timeout)))
            elif state == FieldState.FAILED:
                emit(self._sink, logging.WARNING, f"Enrichment field '{name}' collection failed")
        return snapshot

    def _render(self, request: DeliveryRequest, snapshot: Optional[EnrichmentSnapshot]) -> str:
        return render_message(
            request, snapshot,
            prefix=self.settings.MESSAGE_PREFIX,
            suffix=self.settings.MESSAGE_SUFFIX,
        )

    async def _deliver(self, request: DeliveryRequest, delivery_id: str) -> bool:
        if not await self.initialize():
            emit(
                self._sink, logging.ERROR,
                f"Delivery {delivery_id}: not initialized; no transport attempted",
            )
            return False

        config: RemoteConfig = self._initializer.value
        snapshot = await self._enrichment_snapshot() if self.collect_enrichment else None
        text = self._render(request, snapshot)

        strategies = [
            Strategy(
                name=transport.name,
                operation=partial(transport.send, text, config.destination, config.credential),
            )
            for transport in self.transports
        ]
        outcome = await run_chain(strategies, self.timeout, chain="transport")

        if outcome.succeeded:
            emit(
                self._sink, logging.INFO,
                f"Delivery {delivery_id} sent via {outcome.winner} "
                f"after {len(outcome.failures)} failed transport(s)",
            )
            return True

        error = AllTransportsFailedError(delivery_id, outcome.failures)
        emit(
            self._sink, logging.ERROR,
            f"{error.message}: " + "; ".join(error.details["failures"]),
        )
        return False
