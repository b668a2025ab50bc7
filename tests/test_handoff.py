"""Tests for unified handoff package creation."""

import pytest
from pydantic import ValidationError

from continuity_conductor.collaborators import CollaboratorSet
from continuity_conductor.entities import HANDOFF_PACKAGE, decode, entity_name, pick
from continuity_conductor.handoff import HandoffBuilder, placeholder_checkpoint_id
from continuity_conductor.models import CollaboratorKind, EventType, HandoffPackage, SessionRule
from continuity_conductor.rule_store import RuleStore

from .conftest import FailingKnowledge, FakeCheckpoints


class TestHandoffWithoutCollaborators:
    """A handoff is always structurally complete."""

    @pytest.mark.asyncio
    async def test_zero_collaborators(self, session, settings):
        session.record_activity(tokens_used=500, files=["src/app.py"], task="Write docs")

        package = await HandoffBuilder(CollaboratorSet(), session, settings=settings).build()

        assert package.session_id == session.session_id
        assert package.current_task == "Write docs"
        assert package.active_files == ["src/app.py"]
        assert package.token_count == 500

        assert package.checkpoint.placeholder is True
        assert package.checkpoint.available is False
        assert package.checkpoint.checkpoint_id == placeholder_checkpoint_id(package.handoff_id)
        assert package.memory.available is False
        assert package.filesystem.available is False
        assert package.filesystem.active_files == ["src/app.py"]
        assert package.version_control.available is False
        assert package.version_control.current_branch == "unknown"
        assert package.analytics.available is False
        assert package.analytics.session_analytics.token_count == 500

        assert package.coordination_map.primary_context == CollaboratorKind.FILESYSTEM
        assert package.coordination_map.sync_priority == []
        assert [i.step for i in package.reconstruction_instructions] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_records_event(self, session, settings):
        package = await HandoffBuilder(CollaboratorSet(), session, settings=settings).build()
        event = session.event_history[-1]
        assert event.event_type == EventType.HANDOFF_CREATED
        assert event.data["handoff_id"] == package.handoff_id


class TestHandoffWithCollaborators:
    """Test sub-packages and persistence with every collaborator present."""

    @pytest.mark.asyncio
    async def test_full_handoff(self, full_set, session, settings, checkpoints):
        store = RuleStore(full_set, settings)
        rule = await store.create_rule(SessionRule(rule="ask first"))
        session.record_activity(files=["src/app.py"], task="Refactor")

        package = await HandoffBuilder(full_set, session, store, settings).build()

        assert package.checkpoint.placeholder is False
        assert package.checkpoint.checkpoint_id == "cp_1"
        assert checkpoints.checkpoints[0].name == package.handoff_id
        assert package.version_control.current_branch == "main"
        assert package.version_control.commit_hash == "abc1234"
        assert package.version_control.uncommitted_changes == 2
        assert package.filesystem.allowed_roots == ["/work/project"]
        assert package.filesystem.project_structure_hash
        assert package.memory.session_rule_entities == [f"SessionRule_{rule.id}"]
        assert package.coordination_map.primary_context == CollaboratorKind.KNOWLEDGE
        assert package.coordination_map.sync_priority == [
            CollaboratorKind.KNOWLEDGE,
            CollaboratorKind.CHECKPOINT,
            CollaboratorKind.ANALYTICS,
            CollaboratorKind.VERSION_CONTROL,
            CollaboratorKind.FILESYSTEM,
        ]

        refs = {r.relationship_type: r for r in package.cross_references}
        assert refs["synchronized_with"].target_id == "cp_1"
        assert refs["linked_to"].target_id == "abc1234"

    @pytest.mark.asyncio
    async def test_package_persisted_and_reloadable(self, full_set, session, settings):
        package = await HandoffBuilder(full_set, session, settings=settings).build()

        entities = await full_set.knowledge.search_nodes(entity_name(HANDOFF_PACKAGE, package.handoff_id))
        stored = decode(pick(entities, HANDOFF_PACKAGE, package.handoff_id), HandoffPackage)
        assert stored == package

        rows = await full_set.platform_db.query(
            "SELECT status, handoff_id FROM conversation_sessions WHERE session_id = :sid",
            {"sid": session.session_id},
        )
        assert rows.rows == [{"status": "handed_off", "handoff_id": package.handoff_id}]

        handoffs = await full_set.platform_db.query("SELECT handoff_id FROM unified_handoffs")
        assert handoffs.rows == [{"handoff_id": package.handoff_id}]

    @pytest.mark.asyncio
    async def test_failing_checkpoint_uses_placeholder(self, session, settings):
        collaborators = CollaboratorSet(checkpoints=FakeCheckpoints(fail=True))
        package = await HandoffBuilder(collaborators, session, settings=settings).build()
        assert package.checkpoint.placeholder is True

    @pytest.mark.asyncio
    async def test_failed_knowledge_write_marks_memory_unavailable(self, session, settings, platform_db):
        collaborators = CollaboratorSet(knowledge=FailingKnowledge(), platform_db=platform_db)
        package = await HandoffBuilder(collaborators, session, settings=settings).build()

        assert package.memory.available is False
        assert package.memory.compressed_context_entities == []
        assert "unavailable" in package.memory.semantic_summary
        assert package.coordination_map.primary_context == CollaboratorKind.FILESYSTEM
        assert CollaboratorKind.KNOWLEDGE not in package.coordination_map.sync_priority

        rows = await platform_db.query("SELECT package FROM unified_handoffs")
        stored = HandoffPackage.model_validate_json(rows.rows[0]["package"])
        assert stored.memory.available is False

    @pytest.mark.asyncio
    async def test_package_is_immutable(self, session, settings):
        package = await HandoffBuilder(CollaboratorSet(), session, settings=settings).build()
        with pytest.raises(ValidationError):
            package.token_count = 10
