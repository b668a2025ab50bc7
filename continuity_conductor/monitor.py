"""
Ecosystem State Monitor - one snapshot of every collaborator's health and state.

Each collaborator gets its own concurrent request. A failing or absent
collaborator degrades to a documented default and never aborts the others:

    knowledge        -> 0 entities
    checkpoint       -> no checkpoint ids
    filesystem       -> no activity (activity tracking is a stub)
    version control  -> branch "unknown", all counters zero
    analytics        -> no database sessions
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from .collaborators import (
    CollaboratorSet,
    RelationalStoreClient,
    check_all_health,
    settle,
)
from .config import Settings, settings as default_settings
from .models import (
    CollaboratorHealth,
    CollaboratorKind,
    CoordinationHealth,
    CoordinationStatus,
    DatabaseSessionInfo,
    EcosystemState,
    FileActivity,
    HealthStatus,
    VcsStatusSummary,
)
from .session import SessionContext

logger = logging.getLogger(__name__)


def assess_coordination_health(
    statuses: Dict[CollaboratorKind, CollaboratorHealth],
    last_full_sync: Optional[datetime] = None,
    degraded_ratio: float = 0.6,
) -> CoordinationHealth:
    """
    Healthy if every collaborator is online, degraded if at least
    ``degraded_ratio`` of them are, unhealthy otherwise.
    """
    total = len(statuses)
    online = sum(1 for s in statuses.values() if s.status == HealthStatus.ONLINE)

    if total and online == total:
        status = CoordinationStatus.HEALTHY
    elif total and online >= total * degraded_ratio:
        status = CoordinationStatus.DEGRADED
    else:
        status = CoordinationStatus.UNHEALTHY

    response_times = [s.response_time_ms for s in statuses.values() if s.response_time_ms is not None]
    average = sum(response_times) / len(response_times) if response_times else 0.0

    return CoordinationHealth(
        status=status,
        collaborator_statuses=statuses,
        last_full_sync=last_full_sync,
        average_response_time_ms=average,
        error_count=sum(1 for s in statuses.values() if s.status == HealthStatus.ERROR),
    )


class EcosystemMonitor:
    """Aggregates collaborator health and state into an EcosystemState."""

    def __init__(
        self,
        collaborators: CollaboratorSet,
        session: SessionContext,
        settings: Optional[Settings] = None,
    ):
        self.collaborators = collaborators
        self.session = session
        self.settings = settings or default_settings

    async def monitor(self) -> EcosystemState:
        caps = self.collaborators.capabilities()
        c = self.collaborators

        calls = []
        if caps.has(CollaboratorKind.KNOWLEDGE):
            calls.append(("knowledge", self._entity_count(), 0))
        if caps.has(CollaboratorKind.CHECKPOINT):
            calls.append(("checkpoint", self._checkpoint_ids(), []))
        if caps.has(CollaboratorKind.FILESYSTEM):
            calls.append(("filesystem", self._filesystem_activity(), []))
        if caps.has(CollaboratorKind.VERSION_CONTROL):
            calls.append(("version_control", self._vcs_summary(), VcsStatusSummary()))
        # One entry per database; a failing probe drops only its own session
        for name, db in (("platform", c.platform_db), ("analytics", c.analytics_db)):
            if db is not None:
                calls.append((f"{name}_db", self._database_session(name, db), None))

        health, settled = await asyncio.gather(check_all_health(c), settle(calls))

        def value(label, default):
            return settled[label][1] if label in settled else default

        state = EcosystemState(
            conversation_tokens=self.session.token_count,
            memory_entities=value("knowledge", 0),
            checkpoint_ids=value("checkpoint", []),
            filesystem_activity=value("filesystem", []),
            vcs_status=value("version_control", VcsStatusSummary()),
            database_sessions=[
                info for info in (value("platform_db", None), value("analytics_db", None))
                if info is not None
            ],
            coordination_health=assess_coordination_health(
                health,
                last_full_sync=self.session.last_sync,
                degraded_ratio=self.settings.degraded_online_ratio,
            ),
        )
        logger.info(
            f"Ecosystem state: {state.coordination_health.status.value} "
            f"({len(caps.present)}/{caps.total} collaborators configured)"
        )
        return state

    async def _entity_count(self) -> int:
        graph = await self.collaborators.knowledge.read_graph()
        return len(graph.entities)

    async def _checkpoint_ids(self) -> List[str]:
        return [cp.id for cp in await self.collaborators.checkpoints.list_checkpoints()]

    async def _filesystem_activity(self) -> List[FileActivity]:
        # The filesystem collaborator exposes no change feed yet
        return []

    async def _vcs_summary(self) -> VcsStatusSummary:
        return (await self.collaborators.version_control.status()).summary()

    async def _database_session(self, name: str, db: RelationalStoreClient) -> DatabaseSessionInfo:
        health = await db.health_check()
        return DatabaseSessionInfo(
            database=name,
            connection_status="connected" if health.status == "healthy" else "error",
        )
