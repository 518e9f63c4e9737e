"""
query_string.py — GET-with-parameters channel (medium observability).

Delivery mechanism:
    • GET {base_url}/bot{credential}/sendMessage?chat_id=…&text=…
    • No JSON body, no parse mode
    • Any 2xx counts as delivered; the response body is not inspected

Used when the JSON endpoint refuses the request (e.g. parse-mode errors on
markup-like text). Errors are reported as ``False``, not raised.
"""

from __future__ import annotations

import logging

import httpx

from relay.app.delivery.channels.bot_api import send_message_url

logger = logging.getLogger(__name__)

CHANNEL = "query_string"


async def send(
    text: str,
    destination: str,
    credential: str,
    *,
    client: httpx.AsyncClient,
    base_url: str,
    timeout_seconds: float = 5.0,
) -> bool:
    """Send ``text`` as query parameters. Returns True on any 2xx."""
    try:
        response = await client.get(
            send_message_url(base_url, credential),
            params={"chat_id": destination, "text": text},
            timeout=timeout_seconds,
        )
    except httpx.HTTPError as exc:
        logger.warning("[QUERY_STRING] request failed: %s", exc)
        return False

    if not response.is_success:
        logger.warning("[QUERY_STRING] HTTP %d", response.status_code)
        return False

    logger.info("[QUERY_STRING] → %s: %d chars", destination, len(text))
    return True
