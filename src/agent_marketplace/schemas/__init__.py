"""Pydantic API schemas."""

from agent_marketplace.schemas.agent import (
    AgentEnvelope,
    AgentPage,
    AgentReputationEnvelope,
    AgentReputationResponse,
    AgentResponse,
    RegisterAgentRequest,
)
from agent_marketplace.schemas.common import (
    ErrorResponse,
    HealthResponse,
    Pagination,
    dump_snapshot,
)
from agent_marketplace.schemas.listing import (
    CreateListingRequest,
    ListingEnvelope,
    ListingPage,
    ListingResponse,
    UpdateListingRequest,
)
from agent_marketplace.schemas.transaction import (
    CancelPurchaseRequest,
    PurchaseRequest,
    PurchaseStepRequest,
    RaiseDisputeRequest,
    TransactionEnvelope,
    TransactionPage,
    TransactionResponse,
)

__all__ = [
    "AgentEnvelope",
    "AgentPage",
    "AgentReputationEnvelope",
    "AgentReputationResponse",
    "AgentResponse",
    "RegisterAgentRequest",
    "ErrorResponse",
    "HealthResponse",
    "Pagination",
    "dump_snapshot",
    "CreateListingRequest",
    "ListingEnvelope",
    "ListingPage",
    "ListingResponse",
    "UpdateListingRequest",
    "CancelPurchaseRequest",
    "PurchaseRequest",
    "PurchaseStepRequest",
    "RaiseDisputeRequest",
    "TransactionEnvelope",
    "TransactionPage",
    "TransactionResponse",
]
