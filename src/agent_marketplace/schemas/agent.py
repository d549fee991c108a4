"""Pydantic schemas for the Agents API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from agent_marketplace.schemas.common import CamelModel, Pagination, normalize_address


class RegisterAgentRequest(CamelModel):
    """Request body for POST /agents/register."""

    agent_id: str = Field(..., min_length=1, max_length=128)
    address: str = Field(
        ...,
        description="Agent wallet address (0x-prefixed, 42 chars)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    owner: str = Field(..., min_length=1, max_length=128)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class AgentResponse(CamelModel):
    """Response schema for an agent."""

    id: uuid.UUID
    agent_id: str
    address: str
    name: str
    description: str | None = None
    owner: str
    reputation: int
    total_sales: int
    total_purchases: int
    successful_trades: int
    scam_reports: int
    is_active: bool
    metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    updated_at: datetime


class AgentReputationResponse(CamelModel):
    """Reputation summary returned by GET /agents/{id}/reputation."""

    agent_id: str
    name: str
    address: str
    reputation: int
    total_sales: int
    total_purchases: int
    successful_trades: int
    scam_reports: int


class AgentEnvelope(CamelModel):
    success: bool = True
    agent: AgentResponse


class AgentReputationEnvelope(CamelModel):
    success: bool = True
    agent: AgentReputationResponse


class AgentPage(CamelModel):
    success: bool = True
    agents: list[AgentResponse]
    pagination: Pagination
