"""Pydantic schemas for the Purchase API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from agent_marketplace.schemas.common import CamelModel, Pagination, normalize_address

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class PurchaseRequest(CamelModel):
    """Request body for POST /purchase/request."""

    listing_id: int = Field(..., ge=0)
    buyer: str = Field(..., description="Buyer wallet address")
    buyer_agent: str = Field(..., min_length=1, max_length=128)
    tx_hash: str = Field(..., min_length=1, max_length=66)

    @field_validator("buyer")
    @classmethod
    def _check_buyer(cls, value: str) -> str:
        return normalize_address(value)


class PurchaseStepRequest(CamelModel):
    """Request body for POST /purchase/confirm and /purchase/release."""

    listing_id: int = Field(..., ge=0)
    tx_hash: str = Field(..., min_length=1, max_length=66)


class CancelPurchaseRequest(CamelModel):
    listing_id: int = Field(..., ge=0)
    reason: str | None = Field(default=None, max_length=2000)


class RaiseDisputeRequest(CamelModel):
    """Request body for raising a dispute against a confirmed purchase."""

    listing_id: int = Field(..., ge=0)
    reason: str = Field(
        ...,
        min_length=10,
        max_length=2000,
        description="Detailed reason for the dispute",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransactionResponse(CamelModel):
    """Response schema for a purchase transaction."""

    id: uuid.UUID
    listing_id: int
    seller: str
    buyer: str
    seller_agent: str
    buyer_agent: str
    price: str
    status: str
    request_tx_hash: str
    confirm_tx_hash: str | None = None
    release_tx_hash: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    updated_at: datetime


class TransactionEnvelope(CamelModel):
    success: bool = True
    message: str | None = None
    transaction: TransactionResponse


class TransactionPage(CamelModel):
    success: bool = True
    transactions: list[TransactionResponse]
    pagination: Pagination
