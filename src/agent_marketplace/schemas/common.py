"""Shared schema building blocks.

All API bodies use camelCase keys on the wire while the Python side keeps
snake_case attribute names; ORM objects validate straight into the
response models via `from_attributes`.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class CamelModel(BaseModel):
    """Base model with camelCase aliases that also accepts snake_case input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def normalize_address(value: str) -> str:
    """Validate an EVM address and return it lowercased."""
    value = value.strip()
    if not ADDRESS_PATTERN.match(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return value.lower()


def normalize_price(value: Any) -> str:
    """Validate a non-negative numeric price and return it as a decimal string."""
    if isinstance(value, bool):
        raise ValueError("Price must be numeric")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Price must be numeric, got {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise ValueError("Price must be a non-negative number")
    return str(value).strip()


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    error: str = Field(description="Machine-readable error code")
    message: str
    details: list[dict[str, Any]] | None = None


class HealthResponse(CamelModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: str = Field(description="ISO-8601 server time")
    uptime: float = Field(description="Seconds since the process started")
    database: str = "unknown"
    indexer: str = "disabled"
    last_processed_block: int | None = None
    websocket_connections: int = 0


def dump_snapshot(model_cls: type[BaseModel], obj: Any) -> dict[str, Any]:
    """Serialize an ORM object with a response schema, as sent to subscribers."""
    return model_cls.model_validate(obj).model_dump(mode="json", by_alias=True)
