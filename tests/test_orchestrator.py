"""
test_orchestrator.py — Tests for DeliveryOrchestrator (end-to-end pipeline).

Covers:
    • Transport fallback and the exact rendered message
    • Degraded enrichment (failed / timed out) never blocks delivery
    • No transport is attempted before configuration is ready
    • Single-flight initialization under concurrent deliveries
    • A hanging config source does not starve the rest of the chain
    • Closing mid-initialization answers False; delivery ids do not leak
    • Never-raise contract (broken sink, invalid request)
    • A False result does not prove non-delivery
    • Full HTTP path with the default channels

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import Mock

import httpx

from relay.app.core.config import Settings
from relay.app.core.errors import TransportFailureError
from relay.app.core.logging_config import get_log_context
from relay.app.delivery.chain import Strategy
from relay.app.delivery.channels import beacon
from relay.app.delivery.models import ClientProfile, DeliveryRequest, InitState, RemoteConfig
from relay.app.delivery.orchestrator import (
    DeliveryOrchestrator,
    Transport,
    build_default_transports,
)


CONFIG = RemoteConfig.model_validate({"telegram": {"token": "123:abc", "chatId": "-100"}})
PROFILE = ClientProfile(timezone="UTC", browser="TestAgent", device="Desktop", language="en-US")


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class _FakeTransport:
    """Scripted transport that records every call."""

    def __init__(
        self,
        name: str,
        *,
        result: bool = True,
        error: Optional[Exception] = None,
        inbox: Optional[List[str]] = None,
        order: Optional[List[str]] = None,
    ):
        self.name = name
        self.result = result
        self.error = error
        self.inbox = inbox
        self.order = order
        self.calls: List[Tuple[str, str, str]] = []

    async def send(self, text: str, destination: str, credential: str) -> bool:
        self.calls.append((text, destination, credential))
        if self.order is not None:
            self.order.append(self.name)
        if self.inbox is not None:
            self.inbox.append(text)
        if self.error is not None:
            raise self.error
        return self.result

    @property
    def transport(self) -> Transport:
        return Transport(self.name, self.send)


class _RecordingSink:
    def __init__(self):
        self.records: List[Tuple[int, str]] = []

    def __call__(self, level: int, message: str) -> None:
        self.records.append((level, message))

    def messages(self, level: int) -> List[str]:
        return [m for lvl, m in self.records if lvl == level]


def _make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "TIMEOUT_SECONDS": 0.5,
        "BOT_TOKEN": None,
        "BOT_CHAT_ID": None,
        "COLLECT_ENRICHMENT": True,
        "MESSAGE_PREFIX": "PRE\n",
        "MESSAGE_SUFFIX": "\nEND",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _config_strategy(calls: Optional[List[int]] = None, delay: float = 0.0) -> Strategy:
    async def load():
        if calls is not None:
            calls.append(1)
        if delay:
            await asyncio.sleep(delay)
        return CONFIG
    return Strategy("static", load)


def _failing_config_strategy() -> Strategy:
    async def load():
        raise ConnectionError("config host unreachable")
    return Strategy("broken", load)


def _lookup_strategy(ip: str = "1.2.3.4", country: Optional[str] = "Freedonia") -> Strategy:
    async def op():
        return {"ip_address": ip, "country": country}
    return Strategy("static_lookup", op)


def _failing_lookup_strategy(delay: float = 0.0) -> Strategy:
    async def op():
        if delay:
            await asyncio.sleep(delay)
        raise ConnectionError("lookup down")
    return Strategy("broken_lookup", op)


def _slow_lookup_strategy(delay: float, ip: str = "8.8.8.8") -> Strategy:
    async def op():
        await asyncio.sleep(delay)
        return {"ip_address": ip, "country": "Late"}
    return Strategy("slow_lookup", op)


def _make_orchestrator(
    transports: List[_FakeTransport],
    *,
    config_strategies: Optional[List[Strategy]] = None,
    lookup_strategies: Optional[List[Strategy]] = None,
    sink: Any = None,
    **settings_overrides: Any,
) -> DeliveryOrchestrator:
    return DeliveryOrchestrator(
        _make_settings(**settings_overrides),
        config_strategies=config_strategies if config_strategies is not None else [_config_strategy()],
        lookup_strategies=lookup_strategies if lookup_strategies is not None else [_lookup_strategy()],
        transports=[t.transport for t in transports],
        profile=PROFILE,
        sink=sink if sink is not None else _RecordingSink(),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Happy path & fallback
# ═══════════════════════════════════════════════════════════════════════════

class TestDelivery:

    def test_second_transport_delivers_exact_message(self):
        order: List[str] = []
        first = _FakeTransport("first", error=TransportFailureError("first", "down"), order=order)
        second = _FakeTransport("second", order=order)

        async def scenario():
            async with _make_orchestrator([first, second]) as orch:
                return await orch.send_message({"name": "Ann"})

        assert asyncio.run(scenario()) is True
        assert order == ["first", "second"]
        assert len(second.calls) == 1

        text, destination, credential = second.calls[0]
        assert destination == "-100"
        assert credential == "123:abc"
        assert text == (
            "PRE\n"
            "name: Ann\n"
            "\n------- Client Info -------\n"
            "📍 IP: 1.2.3.4\n"
            "🌍 Country: Freedonia\n"
            "⏰ Timezone: UTC\n"
            "🌎 Browser: TestAgent\n"
            "📱 Device: Desktop\n"
            "🔤 Language: en-US\n"
            "\nEND"
        )

    def test_first_success_stops_chain(self):
        first, second = _FakeTransport("first"), _FakeTransport("second")

        async def scenario():
            async with _make_orchestrator([first, second]) as orch:
                return await orch.send_message({"a": 1})

        assert asyncio.run(scenario()) is True
        assert len(first.calls) == 1
        assert second.calls == []

    def test_false_result_falls_back(self):
        first = _FakeTransport("first", result=False)
        second = _FakeTransport("second")
        sink = _RecordingSink()

        async def scenario():
            async with _make_orchestrator([first, second], sink=sink) as orch:
                return await orch.send_message({"a": 1})

        assert asyncio.run(scenario()) is True
        assert any("sent via second after 1 failed" in m for m in sink.messages(logging.INFO))

    def test_all_transports_failing_returns_false(self):
        transports = [
            _FakeTransport("bot_api", error=TransportFailureError("bot_api", "401")),
            _FakeTransport("query_string", result=False),
        ]
        sink = _RecordingSink()

        async def scenario():
            async with _make_orchestrator(transports, sink=sink) as orch:
                return await orch.send_message({"a": 1})

        assert asyncio.run(scenario()) is False
        errors = sink.messages(logging.ERROR)
        assert len(errors) == 1
        assert "all transports failed" in errors[0]
        assert "bot_api" in errors[0] and "query_string" in errors[0]

    def test_field_order_and_request_framing(self):
        transport = _FakeTransport("only")
        request = DeliveryRequest.from_mapping(
            [("zeta", "1"), ("alpha", "2")], prefix="<<", suffix=">>",
        )

        async def scenario():
            async with _make_orchestrator([transport], COLLECT_ENRICHMENT=False) as orch:
                return await orch.deliver(request)

        assert asyncio.run(scenario()) is True
        assert transport.calls[0][0] == "<<zeta: 1\nalpha: 2\n>>"

    def test_enrichment_disabled_omits_block(self):
        transport = _FakeTransport("only")

        async def scenario():
            async with _make_orchestrator([transport], COLLECT_ENRICHMENT=False) as orch:
                await orch.send_message({"a": 1})
                return orch.enrichment.started

        assert asyncio.run(scenario()) is False
        assert "Client Info" not in transport.calls[0][0]

    def test_render_is_deterministic(self):
        transport = _FakeTransport("only")
        request = DeliveryRequest.from_mapping({"name": "Ann", "email": "ann@example.com"})

        async def scenario():
            async with _make_orchestrator([transport]) as orch:
                first = await orch.render(request)
                second = await orch.render(request)
                await orch.deliver(request)
                return first, second

        first, second = asyncio.run(scenario())
        assert first == second == transport.calls[0][0]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Degraded enrichment
# ═══════════════════════════════════════════════════════════════════════════

class TestDegradedEnrichment:

    def test_failed_lookup_still_delivers(self):
        transport = _FakeTransport("only")
        sink = _RecordingSink()

        async def scenario():
            async with _make_orchestrator(
                [transport], lookup_strategies=[_failing_lookup_strategy()], sink=sink,
            ) as orch:
                return await orch.send_message({"name": "Ann"})

        assert asyncio.run(scenario()) is True
        text = transport.calls[0][0]
        assert "📍 IP: Collection Failed\n" in text
        assert "🌍 Country: Collection Failed\n" in text
        assert any("collection failed" in m for m in sink.messages(logging.WARNING))

    def test_slow_lookup_renders_timed_out(self):
        transport = _FakeTransport("only")
        sink = _RecordingSink()
        slow = [_slow_lookup_strategy(5.0) for _ in range(3)]

        async def scenario():
            async with _make_orchestrator(
                [transport], lookup_strategies=slow, sink=sink, TIMEOUT_SECONDS=0.2,
            ) as orch:
                return await orch.send_message({"name": "Ann"})

        assert asyncio.run(scenario()) is True
        text = transport.calls[0][0]
        assert "📍 IP: Collection Timed Out\n" in text
        assert "🌍 Country: Collection Timed Out\n" in text
        assert any("timed out" in m for m in sink.messages(logging.WARNING))

    def test_late_lookup_visible_to_later_delivery(self):
        transport = _FakeTransport("only")
        lookups = [_failing_lookup_strategy(delay=0.25), _slow_lookup_strategy(0.25, ip="7.7.7.7")]

        async def scenario():
            async with _make_orchestrator(
                [transport], lookup_strategies=lookups, TIMEOUT_SECONDS=0.3,
            ) as orch:
                await orch.send_message({"n": 1})
                await asyncio.sleep(0.4)
                await orch.send_message({"n": 2})

        asyncio.run(scenario())
        assert "📍 IP: Collection Timed Out" in transport.calls[0][0]
        assert "📍 IP: 7.7.7.7" in transport.calls[1][0]

    def test_missing_country_renders_unknown(self):
        transport = _FakeTransport("only")

        async def scenario():
            async with _make_orchestrator(
                [transport], lookup_strategies=[_lookup_strategy(country=None)],
            ) as orch:
                await orch.send_message({"a": 1})

        asyncio.run(scenario())
        assert "🌍 Country: Unknown\n" in transport.calls[0][0]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Initialization
# ═══════════════════════════════════════════════════════════════════════════

class TestInitialization:

    def test_init_failure_attempts_no_transport(self):
        transport = _FakeTransport("only")
        sink = _RecordingSink()

        async def scenario():
            async with _make_orchestrator(
                [transport], config_strategies=[_failing_config_strategy()], sink=sink,
            ) as orch:
                delivered = await orch.send_message({"a": 1})
                return delivered, orch.state

        delivered, state = asyncio.run(scenario())
        assert delivered is False
        assert state == InitState.FAILED
        assert transport.calls == []
        assert any("no transport attempted" in m for m in sink.messages(logging.ERROR))

    def test_concurrent_initialize_loads_once(self):
        calls: List[int] = []

        async def scenario():
            async with _make_orchestrator(
                [_FakeTransport("only")],
                config_strategies=[_config_strategy(calls, delay=0.05)],
            ) as orch:
                return await asyncio.gather(*(orch.initialize() for _ in range(10)))

        assert asyncio.run(scenario()) == [True] * 10
        assert calls == [1]

    def test_concurrent_deliveries_share_initialization(self):
        calls: List[int] = []
        transport = _FakeTransport("only")

        async def scenario():
            async with _make_orchestrator(
                [transport], config_strategies=[_config_strategy(calls, delay=0.05)],
            ) as orch:
                return await asyncio.gather(
                    *(orch.send_message({"n": i}) for i in range(5))
                )

        assert asyncio.run(scenario()) == [True] * 5
        assert calls == [1]
        assert len(transport.calls) == 5

    def test_enrichment_starts_lazily_without_loop(self):
        orch = _make_orchestrator([_FakeTransport("only")])
        assert not orch.enrichment.started

        async def scenario():
            ready = await orch.initialize()
            started = orch.enrichment.started
            await orch.aclose()
            return ready, started

        assert asyncio.run(scenario()) == (True, True)
        assert orch.client.is_closed

    def test_status_reports_state(self):
        async def scenario():
            async with _make_orchestrator([_FakeTransport("a"), _FakeTransport("b")]) as orch:
                before = orch.status()
                await orch.initialize()
                return before, orch.status()

        before, after = asyncio.run(scenario())
        assert before["init_state"] == "uninitialized"
        assert after["init_state"] == "ready"
        assert after["config_attempts"] == 1
        assert after["transports"] == ["a", "b"]

    def test_hanging_config_source_falls_through_to_next(self):
        transport = _FakeTransport("only")

        async def hang():
            await asyncio.sleep(10)
            return CONFIG

        async def scenario():
            async with _make_orchestrator(
                [transport],
                config_strategies=[Strategy("hang", hang), _config_strategy()],
                TIMEOUT_SECONDS=0.2,
            ) as orch:
                delivered = await orch.send_message({"name": "Ann"})
                return delivered, orch.state

        delivered, state = asyncio.run(scenario())
        assert delivered is True
        assert state == InitState.READY
        assert len(transport.calls) == 1

    def test_close_during_initialization_returns_false(self):
        transport = _FakeTransport("only")

        async def scenario():
            orch = _make_orchestrator(
                [transport], config_strategies=[_config_strategy(delay=5)],
            )
            waiting = asyncio.gather(orch.initialize(), orch.send_message({"a": 1}))
            await asyncio.sleep(0.05)
            await orch.aclose()
            return await waiting

        assert asyncio.run(scenario()) == [False, False]
        assert transport.calls == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Never-raise contract
# ═══════════════════════════════════════════════════════════════════════════

class TestNeverRaises:

    def test_broken_sink_does_not_escape(self):
        sink = Mock(side_effect=RuntimeError("sink down"))
        transport = _FakeTransport("only", result=False)

        async def scenario():
            async with _make_orchestrator([transport], sink=sink) as orch:
                return await orch.send_message({"a": 1})

        assert asyncio.run(scenario()) is False
        assert sink.called

    def test_duplicate_keys_rejected_without_sending(self):
        transport = _FakeTransport("only")
        sink = _RecordingSink()

        async def scenario():
            async with _make_orchestrator([transport], sink=sink) as orch:
                return await orch.send_message([("a", "1"), ("a", "2")])

        assert asyncio.run(scenario()) is False
        assert transport.calls == []
        assert any("Duplicate" in m for m in sink.messages(logging.ERROR))

    def test_false_does_not_prove_non_delivery(self):
        """A transport may deliver and still fail to confirm."""
        inbox: List[str] = []
        transports = [
            _FakeTransport(name, error=TransportFailureError(name, "ack lost"), inbox=inbox)
            for name in ("bot_api", "query_string")
        ]

        async def scenario():
            async with _make_orchestrator(transports, COLLECT_ENRICHMENT=False) as orch:
                return await orch.send_message({"a": 1})

        assert asyncio.run(scenario()) is False
        assert len(inbox) == 2

    def test_delivery_id_scoped_to_one_delivery(self):
        seen: List[Dict[str, Any]] = []

        async def send(text: str, destination: str, credential: str) -> bool:
            seen.append(dict(get_log_context()))
            return True

        async def scenario():
            orch = _make_orchestrator([], COLLECT_ENRICHMENT=False)
            orch.transports = [Transport("ctx", send)]
            async with orch:
                await orch.deliver(DeliveryRequest.from_mapping({"a": 1}), delivery_id="first")
                await orch.send_message({"b": 2})
                return get_log_context()

        after = asyncio.run(scenario())
        assert seen[0]["delivery_id"] == "first"
        assert seen[1]["delivery_id"] != "first"
        assert "delivery_id" not in after


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Default channels over HTTP
# ═══════════════════════════════════════════════════════════════════════════

class TestDefaultTransports:

    def test_json_rejection_falls_back_to_query_string(self):
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(
                    400, json={"ok": False, "description": "Bad Request: can't parse entities"},
                )
            return httpx.Response(200, json={"ok": True})

        async def scenario():
            settings = _make_settings(
                BOT_TOKEN="999:xyz", BOT_CHAT_ID="77",
                BOT_API_BASE_URL="http://bot.test", COLLECT_ENRICHMENT=False,
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                orch = DeliveryOrchestrator(settings, client=client)
                delivered = await orch.send_message({"html": "<b>unclosed"})
                await orch.aclose()
                return delivered, [t.name for t in orch.transports]

        delivered, names = asyncio.run(scenario())
        assert delivered is True
        assert names == ["bot_api", "query_string", "beacon"]
        assert [r.method for r in seen] == ["POST", "GET"]
        assert json.loads(seen[0].content)["parse_mode"] == "HTML"
        assert seen[1].url.params["chat_id"] == "77"
        assert all(r.url.path == "/bot999:xyz/sendMessage" for r in seen)

    def test_default_transport_order(self):
        client = httpx.AsyncClient()
        transports = build_default_transports(client, _make_settings(), beacon.BeaconTracker())
        names = [t.name for t in transports]
        assert names == ["bot_api", "query_string", "beacon"]
