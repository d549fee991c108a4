"""Agents REST API routes.

Routes:
    POST   /agents/register          — Register an agent
    GET    /agents                   — List active agents
    GET    /agents/{id}/reputation   — Reputation summary, synced from chain
    GET    /agents/{id}              — Agent details (by agent ID or address)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from agent_marketplace.api.deps import get_agent_service
from agent_marketplace.domain.enums import AgentSortField
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.agent import (
    AgentEnvelope,
    AgentPage,
    AgentReputationEnvelope,
    AgentReputationResponse,
    AgentResponse,
    RegisterAgentRequest,
)
from agent_marketplace.services.agent_service import AgentService

router = APIRouter(prefix="/agents", tags=["Agents"])
logger = get_logger(__name__)


@router.post(
    "/register",
    response_model=AgentEnvelope,
    status_code=201,
    summary="Register a new agent",
)
async def register_agent(
    request: RegisterAgentRequest,
    svc: AgentService = Depends(get_agent_service),
) -> AgentEnvelope:
    agent = await svc.register_agent(
        agent_id=request.agent_id,
        address=request.address,
        name=request.name,
        owner=request.owner,
        description=request.description,
        metadata=request.metadata,
    )
    return AgentEnvelope(agent=AgentResponse.model_validate(agent))


@router.get(
    "",
    response_model=AgentPage,
    summary="List active agents",
)
async def list_agents(
    sort_by: AgentSortField = Query(default=AgentSortField.REPUTATION, alias="sortBy"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    svc: AgentService = Depends(get_agent_service),
) -> AgentPage:
    agents, pagination = await svc.list_agents(sort_by=sort_by, page=page, limit=limit)
    return AgentPage(
        agents=[AgentResponse.model_validate(a) for a in agents],
        pagination=pagination,
    )


@router.get(
    "/{identifier}/reputation",
    response_model=AgentReputationEnvelope,
    summary="Agent reputation (synced from chain)",
)
async def get_agent_reputation(
    identifier: str,
    svc: AgentService = Depends(get_agent_service),
) -> AgentReputationEnvelope:
    agent = await svc.sync_reputation(identifier)
    return AgentReputationEnvelope(agent=AgentReputationResponse.model_validate(agent))


@router.get(
    "/{identifier}",
    response_model=AgentEnvelope,
    summary="Get agent details",
)
async def get_agent(
    identifier: str,
    svc: AgentService = Depends(get_agent_service),
) -> AgentEnvelope:
    agent = await svc.get_agent(identifier)
    return AgentEnvelope(agent=AgentResponse.model_validate(agent))
