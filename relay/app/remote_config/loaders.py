"""
loaders.py — Alternative ways of retrieving the remote configuration.

Strategies, in the order they are tried:

    Strategy      Mechanism                                   When
    ──────────    ──────────────────────────────────────────  ──────────────
    inline        BOT_TOKEN / BOT_CHAT_ID from settings       both are set
    fetch_json    GET, JSON body, no-cache headers            always
    fetch_text    GET, raw text body decoded separately       always
    fetch_jsonp   GET ?callback=<name>&_=<ms>, unwrap name()  always

Each strategy is ``(endpoint, timeout) -> raw dict | error``. Its result is
validated into a ``RemoteConfig`` inside the strategy itself, so an invalid
document surfaces as ``ConfigInvalidError`` for *that* source and the chain
moves on to the next mechanism.
"""

from __future__ import annotations

import json
import logging
import re
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from relay.app.core.config import Settings
from relay.app.core.errors import ConfigInvalidError, ConfigUnavailableError
from relay.app.delivery.chain import Strategy, run_chain
from relay.app.delivery.models import RemoteConfig
from relay.app.remote_config.callbacks import CallbackRegistry

logger = logging.getLogger(__name__)

_NO_CACHE_HEADERS = {
    "Accept": "application/json",
    "Cache-Control": "no-cache",
}

_JSONP_RE = re.compile(r"^\s*([A-Za-z_$][\w$]*)\s*\((.*)\)\s*;?\s*$", re.DOTALL)

Fetcher = Callable[[str, float], Awaitable[Dict[str, Any]]]


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

def parse_remote_config(raw: Any, source: str) -> RemoteConfig:
    """Validate a retrieved document; raise ConfigInvalidError if unusable."""
    if not isinstance(raw, dict):
        raise ConfigInvalidError(source, f"expected an object, got {type(raw).__name__}")
    try:
        return RemoteConfig.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigInvalidError(source, problems) from exc


# ═══════════════════════════════════════════════════════════════════════════
# Retrieval mechanisms
# ═══════════════════════════════════════════════════════════════════════════

async def fetch_json(client: httpx.AsyncClient, endpoint: str, timeout: float) -> Dict[str, Any]:
    """Plain JSON GET with caching disabled."""
    response = await client.get(endpoint, headers=_NO_CACHE_HEADERS, timeout=timeout)
    response.raise_for_status()
    return response.json()


async def fetch_text(client: httpx.AsyncClient, endpoint: str, timeout: float) -> Dict[str, Any]:
    """Second, independent GET that decodes the raw text body itself."""
    response = await client.get(endpoint, headers=_NO_CACHE_HEADERS, timeout=timeout)
    response.raise_for_status()
    try:
        return json.loads(response.text)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON response") from exc


async def fetch_jsonp(
    client: httpx.AsyncClient,
    registry: CallbackRegistry,
    endpoint: str,
    timeout: float,
) -> Dict[str, Any]:
    """
    Callback-wrapped retrieval for endpoints that only serve JSONP.

    The callback name is reserved for this call alone and released on
    exit, including when the surrounding budget cancels the call.
    """
    base_url = endpoint.split("?", 1)[0]
    with registry.pending() as handle:
        response = await client.get(
            base_url,
            params={"callback": handle.name, "_": int(time.time() * 1000)},
            timeout=timeout,
        )
        response.raise_for_status()

        match = _JSONP_RE.match(response.text)
        if match is None:
            raise ValueError("Response is not a callback invocation")
        name, body = match.groups()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid JSON inside callback") from exc

        if not registry.complete(name, payload):
            raise ValueError(f"Response addressed unknown callback {name!r}")
        return handle.future.result()


async def _inline(settings: Settings) -> Dict[str, Any]:
    return {"telegram": {"token": settings.BOT_TOKEN, "chatId": settings.BOT_CHAT_ID}}


# ═══════════════════════════════════════════════════════════════════════════
# Strategy assembly
# ═══════════════════════════════════════════════════════════════════════════

async def _validated(name: str, fetch: Callable[[], Awaitable[Any]]) -> RemoteConfig:
    return parse_remote_config(await fetch(), name)


def _strategy(name: str, fetch: Callable[[], Awaitable[Any]]) -> Strategy:
    return Strategy(name=name, operation=partial(_validated, name, fetch))


def build_config_strategies(
    client: httpx.AsyncClient,
    settings: Settings,
    *,
    registry: Optional[CallbackRegistry] = None,
) -> List[Strategy]:
    """Configuration strategies in priority order."""
    endpoint = settings.CONFIG_URL
    timeout = settings.TIMEOUT_SECONDS
    registry = registry or CallbackRegistry()

    strategies: List[Strategy] = []
    if settings.has_inline_credentials:
        strategies.append(_strategy("inline", partial(_inline, settings)))

    strategies.extend([
        _strategy("fetch_json", partial(fetch_json, client, endpoint, timeout)),
        _strategy("fetch_text", partial(fetch_text, client, endpoint, timeout)),
        _strategy("fetch_jsonp", partial(fetch_jsonp, client, registry, endpoint, timeout)),
    ])
    return strategies


async def load_remote_config(
    strategies: List[Strategy],
    budget_per_attempt: float,
    *,
    endpoint: str = "",
) -> RemoteConfig:
    """
    Run the configuration chain.

    Raises
    ------
    ConfigUnavailableError
        When every strategy failed (each failure is attached).
    """
    outcome = await run_chain(strategies, budget_per_attempt, chain="config")
    if not outcome.succeeded:
        raise ConfigUnavailableError(endpoint or "configuration source", outcome.failures)
    logger.info("Configuration loaded via %s", outcome.winner)
    return outcome.value
