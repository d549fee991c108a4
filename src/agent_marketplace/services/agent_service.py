"""Agent Service — registration, directory and reputation sync.

Reputation lives on chain; the store keeps a cached copy that is seeded at
registration, refreshed on demand, and overwritten by ReputationUpdated
events. Ledger failures never block a request: the cached value is used.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from agent_marketplace.config import get_settings
from agent_marketplace.domain.enums import AgentSortField, NotificationType
from agent_marketplace.domain.exceptions import AgentAlreadyRegisteredError, AgentNotFoundError
from agent_marketplace.infrastructure.database.orm_models import Agent
from agent_marketplace.infrastructure.database.repositories import AgentRepository
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.agent import AgentResponse
from agent_marketplace.schemas.common import Pagination, dump_snapshot

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from agent_marketplace.domain.ledger_protocol import LedgerReader
    from agent_marketplace.services.notifications import NotificationHub

logger = get_logger(__name__)


class AgentService:
    """Manages registered agents and their cached reputation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerReader | None = None,
        notifier: NotificationHub | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._notifier = notifier

    async def register_agent(
        self,
        agent_id: str,
        address: str,
        name: str,
        owner: str,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> Agent:
        """Register a new agent, seeding its reputation from the ledger when reachable."""
        address = address.lower()

        async with self._session_factory() as session:
            if await AgentRepository(session).exists(agent_id, address):
                raise AgentAlreadyRegisteredError(agent_id, address)

        reputation = await self._fetch_reputation(address)
        if reputation is None:
            reputation = get_settings().default_reputation

        try:
            async with self._session_factory() as session, session.begin():
                agent = await AgentRepository(session).create(
                    Agent(
                        agent_id=agent_id,
                        address=address,
                        name=name,
                        description=description,
                        owner=owner,
                        reputation=reputation,
                        metadata_json=metadata or {},
                    )
                )
        except IntegrityError:
            raise AgentAlreadyRegisteredError(agent_id, address) from None

        logger.info("agent.registered", agent_id=agent_id, name=name, reputation=reputation)
        return agent

    async def get_agent(self, identifier: str) -> Agent:
        """Look an agent up by agent ID or address."""
        async with self._session_factory() as session:
            agent = await AgentRepository(session).get_by_identifier(identifier)
        if agent is None:
            raise AgentNotFoundError(identifier)
        return agent

    async def list_agents(
        self,
        sort_by: AgentSortField = AgentSortField.REPUTATION,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Agent], Pagination]:
        limit = min(limit, get_settings().max_page_size)
        async with self._session_factory() as session:
            agents, total = await AgentRepository(session).list_active(
                sort_by=sort_by,
                offset=(page - 1) * limit,
                limit=limit,
            )
        return agents, Pagination.build(page, limit, total)

    async def sync_reputation(self, identifier: str) -> Agent:
        """Refresh an agent's cached reputation from the ledger.

        Ledger errors are logged and the cached value is returned unchanged.
        """
        agent = await self.get_agent(identifier)
        on_chain = await self._fetch_reputation(agent.address)
        if on_chain is None or on_chain == agent.reputation:
            return agent

        async with self._session_factory() as session, session.begin():
            repo = AgentRepository(session)
            fresh = await repo.get_by_address(agent.address)
            if fresh is None:
                raise AgentNotFoundError(identifier)
            agent = await repo.set_reputation(fresh, on_chain)

        logger.info("agent.reputation_synced", agent_id=agent.agent_id, reputation=on_chain)
        await self._notify_reputation(agent)
        return agent

    async def apply_reputation_update(self, address: str, new_reputation: int) -> Agent | None:
        """Mirror a ReputationUpdated event. Unknown addresses are skipped, not created."""
        async with self._session_factory() as session, session.begin():
            repo = AgentRepository(session)
            agent = await repo.get_by_address(address)
            if agent is None:
                logger.warning("chain.agent_missing", address=address.lower())
                return None
            changed = agent.reputation != new_reputation
            if changed:
                await repo.set_reputation(agent, new_reputation)

        logger.info(
            "chain.reputation_updated",
            agent_id=agent.agent_id,
            reputation=new_reputation,
            changed=changed,
        )
        if changed:
            await self._notify_reputation(agent)
        return agent

    async def _fetch_reputation(self, address: str) -> int | None:
        if self._ledger is None:
            return None
        try:
            return await asyncio.wait_for(
                self._ledger.get_agent_reputation(address),
                timeout=get_settings().ledger_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("agent.reputation_unavailable", address=address, error=str(exc))
            return None

    async def _notify_reputation(self, agent: Agent) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(
            NotificationType.REPUTATION_UPDATED, dump_snapshot(AgentResponse, agent)
        )
