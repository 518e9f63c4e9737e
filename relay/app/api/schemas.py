"""
Pydantic schemas for the delivery API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class DeliverRequestBody(BaseModel):
    """One message to deliver. Field order is preserved when rendering."""
    fields: Dict[str, Any] = Field(
        ..., min_length=1,
        description="Key/value pairs rendered as 'key: value' lines",
        examples=[{"name": "Ann", "email": "ann@example.com"}],
    )
    prefix: Optional[str] = Field(
        None, description="Overrides the configured message prefix",
    )
    suffix: Optional[str] = Field(
        None, description="Overrides the configured message suffix",
    )

    @field_validator("fields")
    @classmethod
    def _non_blank_keys(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        blank = [k for k in v if not k.strip()]
        if blank:
            raise ValueError("field keys must not be blank")
        return v


def reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    """``object_pairs_hook`` for ``json.loads``: a repeated key is an error.

    Plain JSON decoding keeps the last value of a repeated key, which would
    silently drop a field the caller sent.
    """
    seen = set()
    for key, _ in pairs:
        if key in seen:
            raise ValueError(f"Duplicate key in request body: '{key}'")
        seen.add(key)
    return dict(pairs)


class DeliverResponse(BaseModel):
    delivery_id: str
    delivered: bool = Field(
        ...,
        description=(
            "True once a transport succeeded. False does not prove the "
            "message was not received."
        ),
    )


class InitializeResponse(BaseModel):
    ready: bool
    state: str
