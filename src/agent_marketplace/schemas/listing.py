"""Pydantic schemas for the Listings API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from agent_marketplace.domain.enums import ListingStatus
from agent_marketplace.schemas.common import (
    CamelModel,
    Pagination,
    normalize_address,
    normalize_price,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateListingRequest(CamelModel):
    """Request body for recording a new listing."""

    listing_id: int = Field(..., ge=0, description="On-chain listing ID")
    seller: str = Field(
        ...,
        description="Seller wallet address (0x-prefixed, 42 chars)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    seller_agent: str = Field(..., min_length=1, max_length=128)
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1, max_length=10_000)
    price: str = Field(
        ...,
        description="Price in the smallest unit (wei) as a decimal string",
        examples=["1000000000000000000"],
    )
    category: str = Field(..., min_length=1, max_length=100)
    location: str | None = Field(default=None, max_length=200)
    images: list[str] = Field(default_factory=list)
    tx_hash: str = Field(..., min_length=1, max_length=66)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("seller")
    @classmethod
    def _check_seller(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("price", mode="before")
    @classmethod
    def _check_price(cls, value: Any) -> str:
        return normalize_price(value)

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class UpdateListingRequest(CamelModel):
    """Request body for PATCH /listings/{id}."""

    status: ListingStatus | None = None
    buyer: str | None = None
    buyer_agent: str | None = Field(default=None, max_length=128)

    @field_validator("buyer")
    @classmethod
    def _check_buyer(cls, value: str | None) -> str | None:
        return normalize_address(value) if value is not None else None

    @model_validator(mode="after")
    def _require_a_field(self) -> UpdateListingRequest:
        if self.status is None and self.buyer is None and self.buyer_agent is None:
            raise ValueError("At least one of status, buyer or buyerAgent is required")
        return self


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ListingResponse(CamelModel):
    """Response schema for a listing."""

    id: uuid.UUID
    listing_id: int
    seller: str
    seller_agent: str
    title: str
    description: str
    price: str
    category: str
    location: str | None = None
    images: list[str] = Field(default_factory=list)
    status: str
    buyer: str | None = None
    buyer_agent: str | None = None
    tx_hash: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    updated_at: datetime


class ListingEnvelope(CamelModel):
    success: bool = True
    listing: ListingResponse


class ListingPage(CamelModel):
    success: bool = True
    listings: list[ListingResponse]
    pagination: Pagination
