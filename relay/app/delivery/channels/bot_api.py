"""
bot_api.py — JSON bot API channel (highest observability).

Delivery mechanism:
    • POST {base_url}/bot{credential}/sendMessage
    • Body: {"chat_id": destination, "text": text, "parse_mode": "HTML"}
    • Success only when the API answers 2xx with {"ok": true}

This is the first channel tried because it is the only one that reports a
real failure reason. A non-2xx answer raises TransportFailureError with the
API's ``description`` so the chain log says *why* it fell back.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from relay.app.core.errors import TransportFailureError

logger = logging.getLogger(__name__)

CHANNEL = "bot_api"


def send_message_url(base_url: str, credential: str) -> str:
    return f"{base_url.rstrip('/')}/bot{credential}/sendMessage"


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("description"):
        return str(data["description"])
    return response.reason_phrase or f"HTTP {response.status_code}"


async def send(
    text: str,
    destination: str,
    credential: str,
    *,
    client: httpx.AsyncClient,
    base_url: str,
    timeout_seconds: float = 5.0,
    parse_mode: Optional[str] = "HTML",
) -> bool:
    """
    Send ``text`` through the JSON endpoint.

    Returns
    -------
    bool
        True iff the API acknowledged the message.

    Raises
    ------
    TransportFailureError
        On a non-2xx answer.
    """
    payload: Dict[str, Any] = {"chat_id": destination, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode

    response = await client.post(
        send_message_url(base_url, credential),
        json=payload,
        timeout=timeout_seconds,
    )

    if response.is_error:
        raise TransportFailureError(
            CHANNEL,
            _error_description(response),
            status_code=response.status_code,
        )

    data = response.json()
    acknowledged = isinstance(data, dict) and data.get("ok") is True
    logger.info(
        "[BOT_API] → %s: %d chars, ok=%s", destination, len(text), acknowledged,
    )
    return acknowledged
