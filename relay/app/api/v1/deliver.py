"""
FastAPI routes: delivery endpoints.

Provides:
    POST /api/v1/deliver     — render and deliver one message
    POST /api/v1/initialize  — acquire configuration ahead of traffic
    GET  /api/v1/status      — orchestrator state (init + enrichment)

The orchestrator lives on ``app.state`` (created by the lifespan in
``relay.app.main``); handlers only look it up.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from relay.app.api.schemas import (
    DeliverRequestBody,
    DeliverResponse,
    InitializeResponse,
    reject_duplicate_keys,
)
from relay.app.delivery.models import DeliveryRequest
from relay.app.delivery.orchestrator import DeliveryOrchestrator

router = APIRouter(prefix="/api/v1", tags=["delivery"])


def _orchestrator(request: Request) -> DeliveryOrchestrator:
    return request.app.state.orchestrator


async def _unique_keys(request: Request) -> None:
    # Raises ValueError, answered as 422 by the registered handler
    json.loads(await request.body(), object_pairs_hook=reject_duplicate_keys)


@router.post(
    "/deliver",
    response_model=DeliverResponse,
    dependencies=[Depends(_unique_keys)],
)
async def deliver(body: DeliverRequestBody, request: Request) -> DeliverResponse:
    """
    Deliver one message.

    ``delivered=false`` is a normal outcome (every transport failed or the
    service is not configured yet), not an HTTP error.
    """
    delivery = DeliveryRequest.from_mapping(body.fields, prefix=body.prefix, suffix=body.suffix)
    delivery_id = uuid.uuid4().hex[:12]
    delivered = await _orchestrator(request).deliver(delivery, delivery_id=delivery_id)
    return DeliverResponse(delivery_id=delivery_id, delivered=delivered)


@router.post("/initialize", response_model=InitializeResponse)
async def initialize(request: Request) -> InitializeResponse:
    orchestrator = _orchestrator(request)
    ready = await orchestrator.initialize()
    return InitializeResponse(ready=ready, state=orchestrator.state.value)


@router.get("/status")
async def status(request: Request) -> Dict[str, Any]:
    return _orchestrator(request).status()
