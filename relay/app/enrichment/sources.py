"""
sources.py — Public IP / country lookup services.

Services are tried in order on one background attempt, not raced. The
first service that answers with a 2xx JSON body wins; it reports as many
fields as it knows and no further service is asked.

    Service      URL                                     ip field    country field
    ─────────    ──────────────────────────────────────  ──────────  ─────────────
    ipify        https://api.ipify.org?format=json       ip          —
    ipapi        https://ipapi.co/json/                  ip          country_name
    db-ip        https://api.db-ip.com/v2/free/self      ipAddress   countryName
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

import httpx

from relay.app.delivery.chain import Strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupService:
    """One lookup endpoint and where its answer keeps each field."""
    name: str
    url: str
    ip_field: str
    country_field: Optional[str] = None


DEFAULT_SERVICES: List[LookupService] = [
    LookupService("ipify", "https://api.ipify.org?format=json", "ip"),
    LookupService("ipapi", "https://ipapi.co/json/", "ip", "country_name"),
    LookupService("db-ip", "https://api.db-ip.com/v2/free/self", "ipAddress", "countryName"),
]


async def lookup(
    client: httpx.AsyncClient,
    service: LookupService,
    timeout: float,
) -> Dict[str, Optional[str]]:
    """
    Query one service.

    Returns
    -------
    dict
        ``{"ip_address": str | None, "country": str | None}``. A field the
        service does not report is ``None`` (rendered as "Unknown").
    """
    response = await client.get(service.url, timeout=timeout)
    response.raise_for_status()
    data: Any = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"{service.name} returned {type(data).__name__}, expected object")

    country = data.get(service.country_field) if service.country_field else None
    return {
        "ip_address": data.get(service.ip_field) or None,
        "country": country or None,
    }


def build_lookup_strategies(
    client: httpx.AsyncClient,
    timeout: float,
    services: Sequence[LookupService] = DEFAULT_SERVICES,
) -> List[Strategy]:
    """Lookup strategies in the given service order."""
    return [
        Strategy(name=service.name, operation=partial(lookup, client, service, timeout))
        for service in services
    ]
