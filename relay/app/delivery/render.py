"""
render.py — Deterministic message rendering.

Layout (the enrichment block appears only when enrichment is enabled)::

    {prefix}
    key1: value1
    key2: value2

    ------- Client Info -------
    📍 IP: 1.2.3.4
    🌍 Country: Freedonia
    ⏰ Timezone: UTC
    🌎 Browser: Unknown
    📱 Device: Unknown
    🔤 Language: Unknown
    {suffix}

Same request + same snapshot → byte-identical text.
"""

from __future__ import annotations

from typing import List, Optional

from relay.app.delivery.models import DeliveryRequest, EnrichmentSnapshot

ENRICHMENT_HEADER = "\n------- Client Info -------\n"


def _enrichment_lines(snapshot: EnrichmentSnapshot) -> List[str]:
    profile = snapshot.profile
    return [
        f"📍 IP: {snapshot.ip_address}\n",
        f"🌍 Country: {snapshot.country}\n",
        f"⏰ Timezone: {profile.timezone}\n",
        f"🌎 Browser: {profile.browser}\n",
        f"📱 Device: {profile.device}\n",
        f"🔤 Language: {profile.language}\n",
    ]


def render_message(
    request: DeliveryRequest,
    enrichment: Optional[EnrichmentSnapshot] = None,
    *,
    prefix: str = "",
    suffix: str = "",
) -> str:
    """
    Render ``request`` into the final message text.

    ``request.prefix`` / ``request.suffix`` override the keyword defaults
    when set.
    """
    parts: List[str] = [request.prefix if request.prefix is not None else prefix]
    parts.extend(f"{key}: {value}\n" for key, value in request.fields)

    if enrichment is not None:
        parts.append(ENRICHMENT_HEADER)
        parts.extend(_enrichment_lines(enrichment))

    parts.append(request.suffix if request.suffix is not None else suffix)
    return "".join(parts)
