"""Tests for the ecosystem state monitor."""

import pytest

from continuity_conductor.collaborators import CollaboratorSet
from continuity_conductor.models import (
    CollaboratorHealth,
    CollaboratorKind,
    CoordinationStatus,
    HealthStatus,
    KnowledgeEntity,
    VcsStatusSummary,
)
from continuity_conductor.monitor import EcosystemMonitor, assess_coordination_health

from .conftest import FailingKnowledge, FakeCheckpoints, FakeFilesystem, FakeVcs


def statuses(*online_flags):
    kinds = list(CollaboratorKind)
    return {
        kind: CollaboratorHealth(
            status=HealthStatus.ONLINE if flag else HealthStatus.ERROR,
            response_time_ms=2.0 if flag else None,
        )
        for kind, flag in zip(kinds, online_flags)
    }


class UnreachableDatabase:
    async def query(self, sql, params=None):
        raise ConnectionError("database down")

    async def health_check(self):
        raise ConnectionError("database down")


class TestCoordinationHealth:
    """Test the healthy / degraded / unhealthy thresholds."""

    def test_all_online_is_healthy(self):
        health = assess_coordination_health(statuses(True, True, True, True, True))
        assert health.status == CoordinationStatus.HEALTHY
        assert health.average_response_time_ms == 2.0

    def test_three_of_five_is_degraded(self):
        health = assess_coordination_health(statuses(True, True, True, False, False))
        assert health.status == CoordinationStatus.DEGRADED
        assert health.error_count == 2

    def test_two_of_five_is_unhealthy(self):
        health = assess_coordination_health(statuses(True, True, False, False, False))
        assert health.status == CoordinationStatus.UNHEALTHY

    def test_empty_is_unhealthy(self):
        assert assess_coordination_health({}).status == CoordinationStatus.UNHEALTHY


class TestEcosystemMonitor:
    """Test snapshots across configured, failing and absent collaborators."""

    @pytest.mark.asyncio
    async def test_full_ecosystem(self, full_set, session, settings, checkpoints):
        await checkpoints.create_checkpoint("before work", name="first")
        session.record_activity(tokens_used=1200)

        state = await EcosystemMonitor(full_set, session, settings).monitor()

        assert state.conversation_tokens == 1200
        assert state.checkpoint_ids == ["cp_1"]
        assert state.vcs_status.branch == "main"
        assert state.vcs_status.modified == 1
        assert [s.database for s in state.database_sessions] == ["platform"]
        assert state.coordination_health.status == CoordinationStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_failures_fall_back_to_defaults(self, session, settings):
        collaborators = CollaboratorSet(
            knowledge=FailingKnowledge(),
            checkpoints=FakeCheckpoints(fail=True),
            filesystem=FakeFilesystem(),
            version_control=FakeVcs(fail=True),
        )

        state = await EcosystemMonitor(collaborators, session, settings).monitor()

        assert state.memory_entities == 0
        assert state.checkpoint_ids == []
        assert state.vcs_status == VcsStatusSummary()
        assert state.database_sessions == []
        statuses = state.coordination_health.collaborator_statuses
        assert statuses[CollaboratorKind.KNOWLEDGE].status == HealthStatus.ERROR
        assert statuses[CollaboratorKind.FILESYSTEM].status == HealthStatus.ONLINE
        assert statuses[CollaboratorKind.ANALYTICS].status == HealthStatus.NOT_CONFIGURED
        assert state.coordination_health.status == CoordinationStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_one_database_failing_keeps_the_other(self, session, settings, platform_db):
        collaborators = CollaboratorSet(platform_db=platform_db, analytics_db=UnreachableDatabase())

        state = await EcosystemMonitor(collaborators, session, settings).monitor()

        assert [(s.database, s.connection_status) for s in state.database_sessions] == [
            ("platform", "connected"),
        ]
        statuses = state.coordination_health.collaborator_statuses
        assert statuses[CollaboratorKind.ANALYTICS].status == HealthStatus.ERROR

    @pytest.mark.asyncio
    async def test_no_collaborators(self, session, settings):
        state = await EcosystemMonitor(CollaboratorSet(), session, settings).monitor()
        assert state.memory_entities == 0
        assert state.coordination_health.status == CoordinationStatus.UNHEALTHY
        assert len(state.coordination_health.collaborator_statuses) == 5

    @pytest.mark.asyncio
    async def test_entity_count(self, knowledge, session, settings):
        await knowledge.create_entities([
            KnowledgeEntity(name="a", entity_type="t"),
            KnowledgeEntity(name="b", entity_type="t"),
        ])
        state = await EcosystemMonitor(CollaboratorSet(knowledge=knowledge), session, settings).monitor()
        assert state.memory_entities == 2

    @pytest.mark.asyncio
    async def test_last_sync_is_reported(self, session, settings):
        session.mark_synced()
        state = await EcosystemMonitor(CollaboratorSet(), session, settings).monitor()
        assert state.coordination_health.last_full_sync == session.last_sync
