"""
Handoff Package Builder - snapshots the session and every collaborator's
state into one portable, immutable package.

Building a handoff never fails. Each sub-package is built independently
and falls back to an explicit ``available=False`` shape; without a
checkpointing collaborator a placeholder checkpoint keeps the package shape
stable. Persisting the finished package (knowledge entity, platform rows)
is best effort; a failed knowledge write marks the memory share unavailable.
"""

import hashlib
import logging
from typing import List, Optional

from .collaborators import Capabilities, CollaboratorSet, settle
from .config import Settings, settings as default_settings
from .entities import HANDOFF_PACKAGE, SESSION_RULE, WORKING_STATE, encode, entity_name
from .models import (
    AnalyticsHandoffData,
    CheckpointHandoffData,
    CollaboratorDependency,
    CollaboratorKind,
    CoordinationMap,
    CrossReference,
    EventPriority,
    EventType,
    FilesystemHandoffData,
    HandoffPackage,
    KnowledgeRelation,
    MemoryHandoffData,
    OrchestrationEvent,
    ProjectSnapshot,
    ReconstructionInstruction,
    SessionAnalytics,
    VersionControlHandoffData,
    new_id,
)
from .rule_store import RuleStore
from .session import SessionContext
from .stores.relational import dumps_details, record_coordination, record_handoff, upsert_session

logger = logging.getLogger(__name__)

# Preferred order for re-synchronizing after a handoff
SYNC_PRIORITY = (
    CollaboratorKind.KNOWLEDGE,
    CollaboratorKind.CHECKPOINT,
    CollaboratorKind.ANALYTICS,
    CollaboratorKind.VERSION_CONTROL,
    CollaboratorKind.FILESYSTEM,
)

# Which collaborator's state each one needs first when rebuilding
DEPENDENCIES = {
    CollaboratorKind.KNOWLEDGE: [CollaboratorKind.CHECKPOINT],
    CollaboratorKind.CHECKPOINT: [],
    CollaboratorKind.ANALYTICS: [CollaboratorKind.KNOWLEDGE],
    CollaboratorKind.VERSION_CONTROL: [CollaboratorKind.FILESYSTEM],
    CollaboratorKind.FILESYSTEM: [],
}


def placeholder_checkpoint_id(handoff_id: str) -> str:
    return f"placeholder_{handoff_id}"


class HandoffBuilder:
    """Builds and persists unified handoff packages."""

    def __init__(
        self,
        collaborators: CollaboratorSet,
        session: SessionContext,
        rule_store: Optional[RuleStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.collaborators = collaborators
        self.session = session
        self.rule_store = rule_store
        self.settings = settings or default_settings

    async def build(self) -> HandoffPackage:
        """
        Create a handoff package for the current session.

        Returns:
            A structurally complete package, even with no collaborators
        """
        handoff_id = new_id("handoff")
        caps = self.collaborators.capabilities()
        logger.info(f"Creating unified handoff package: {handoff_id}")

        # The checkpoint comes first; the memory sub-package references it
        checkpoint = await self._checkpoint_package(handoff_id, caps)

        settled = await settle([
            ("filesystem", self._filesystem_package(caps), self._filesystem_unavailable()),
            ("version_control", self._vcs_package(caps), VersionControlHandoffData(available=False)),
        ])
        filesystem = settled["filesystem"][1]
        version_control = settled["version_control"][1]

        memory = self._memory_package(handoff_id, checkpoint, caps)
        analytics = self._analytics_package(caps)

        package = HandoffPackage(
            handoff_id=handoff_id,
            session_id=self.session.session_id,
            current_task=self.session.current_task,
            active_files=list(self.session.active_files),
            token_count=self.session.token_count,
            memory=memory,
            checkpoint=checkpoint,
            filesystem=filesystem,
            version_control=version_control,
            analytics=analytics,
            cross_references=self._cross_references(handoff_id, checkpoint, version_control),
            coordination_map=self._coordination_map(caps),
            reconstruction_instructions=self._reconstruction_instructions(handoff_id, checkpoint),
        )

        package = await self._persist(package, caps)

        self.session.record_event(OrchestrationEvent(
            source=CollaboratorKind.KNOWLEDGE,
            event_type=EventType.HANDOFF_CREATED,
            data={"handoff_id": handoff_id, "checkpoint_id": checkpoint.checkpoint_id},
            affected=list(caps.present),
            priority=EventPriority.HIGH,
        ))
        logger.info(
            f"Handoff package {handoff_id} created "
            f"({len(caps.present)}/{caps.total} collaborators available)"
        )
        return package

    # ------------------------------------------------------------------
    # Sub-packages
    # ------------------------------------------------------------------

    async def _checkpoint_package(self, handoff_id: str, caps: Capabilities) -> CheckpointHandoffData:
        description = f"Conversation handoff: {self.session.current_task or 'Session boundary'}"
        working_directory = self.settings.get_working_directory()

        if caps.has(CollaboratorKind.CHECKPOINT):
            try:
                checkpoint = await self.collaborators.checkpoints.create_checkpoint(
                    description, name=handoff_id
                )
                return CheckpointHandoffData(
                    checkpoint_id=checkpoint.id,
                    description=checkpoint.description or description,
                    working_directory=working_directory,
                    created_at=checkpoint.created_at,
                    file_count=checkpoint.file_count or 0,
                )
            except Exception as e:
                logger.warning(f"Checkpoint creation failed, using placeholder: {e}")

        return CheckpointHandoffData(
            available=False,
            placeholder=True,
            checkpoint_id=placeholder_checkpoint_id(handoff_id),
            description=description,
            working_directory=working_directory,
        )

    def _memory_package(
        self,
        handoff_id: str,
        checkpoint: CheckpointHandoffData,
        caps: Capabilities,
    ) -> MemoryHandoffData:
        task = self.session.current_task or "session"
        if not caps.has(CollaboratorKind.KNOWLEDGE):
            return self._memory_unavailable()

        package_entity = entity_name(HANDOFF_PACKAGE, handoff_id)
        rule_entities: List[str] = []
        if self.rule_store is not None:
            rule_entities = [entity_name(SESSION_RULE, r.id) for r in self.rule_store.cache.values()]

        return MemoryHandoffData(
            compressed_context_entities=[package_entity],
            session_rule_entities=rule_entities,
            working_state_entity=entity_name(WORKING_STATE, self.session.session_id),
            context_relationships=[
                KnowledgeRelation(
                    source=package_entity,
                    target=entity_name(WORKING_STATE, self.session.session_id),
                    relation_type="captures",
                ),
            ],
            semantic_summary=f"Handoff package for {task}",
        )

    def _memory_unavailable(self) -> MemoryHandoffData:
        task = self.session.current_task or "session"
        return MemoryHandoffData(
            available=False,
            semantic_summary=f"Handoff package for {task} (knowledge store unavailable)",
        )

    async def _filesystem_package(self, caps: Capabilities) -> FilesystemHandoffData:
        if not caps.has(CollaboratorKind.FILESYSTEM):
            return self._filesystem_unavailable()

        roots = await self.collaborators.filesystem.list_allowed_directories()
        active = list(self.session.active_files)
        digest = hashlib.sha256("\n".join(sorted(roots) + sorted(active)).encode()).hexdigest()[:16]
        return FilesystemHandoffData(
            project_snapshot=ProjectSnapshot(root_path=roots[0] if roots else "unknown"),
            allowed_roots=roots,
            active_files=active,
            project_structure_hash=digest,
        )

    def _filesystem_unavailable(self) -> FilesystemHandoffData:
        return FilesystemHandoffData(available=False, active_files=list(self.session.active_files))

    async def _vcs_package(self, caps: Capabilities) -> VersionControlHandoffData:
        if not caps.has(CollaboratorKind.VERSION_CONTROL):
            return VersionControlHandoffData(available=False)

        status = await self.collaborators.version_control.status()
        return VersionControlHandoffData(
            current_branch=status.branch,
            commit_hash=status.head or "unknown",
            changes_summary=f"{len(status.modified)} modified, {len(status.staged)} staged",
            uncommitted_changes=len(status.modified) + len(status.untracked),
            ahead=status.ahead,
            behind=status.behind,
        )

    def _analytics_package(self, caps: Capabilities) -> AnalyticsHandoffData:
        return AnalyticsHandoffData(
            available=caps.has(CollaboratorKind.ANALYTICS),
            session_analytics=SessionAnalytics(
                session_id=self.session.session_id,
                start_time=self.session.start_time,
                token_count=self.session.token_count,
                files_modified=len(self.session.active_files),
                rules_enforced=self.session.rules_enforced,
            ),
        )

    # ------------------------------------------------------------------
    # Cross-collaborator structure
    # ------------------------------------------------------------------

    def _cross_references(
        self,
        handoff_id: str,
        checkpoint: CheckpointHandoffData,
        version_control: VersionControlHandoffData,
    ) -> List[CrossReference]:
        source = entity_name(HANDOFF_PACKAGE, handoff_id)
        return [
            CrossReference(
                source_type=CollaboratorKind.KNOWLEDGE,
                source_id=source,
                target_type=CollaboratorKind.CHECKPOINT,
                target_id=checkpoint.checkpoint_id,
                relationship_type="synchronized_with",
            ),
            CrossReference(
                source_type=CollaboratorKind.KNOWLEDGE,
                source_id=source,
                target_type=CollaboratorKind.VERSION_CONTROL,
                target_id=version_control.commit_hash,
                relationship_type="linked_to",
            ),
        ]

    def _coordination_map(self, caps: Capabilities, knowledge_written: bool = True) -> CoordinationMap:
        has_knowledge = caps.has(CollaboratorKind.KNOWLEDGE) and knowledge_written
        primary = CollaboratorKind.KNOWLEDGE if has_knowledge else CollaboratorKind.FILESYSTEM
        return CoordinationMap(
            primary_context=primary,
            dependencies=[
                CollaboratorDependency(
                    collaborator=kind,
                    depends_on=DEPENDENCIES[kind],
                    required=kind is primary,
                )
                for kind in SYNC_PRIORITY
            ],
            sync_priority=[
                k for k in SYNC_PRIORITY
                if caps.has(k) and (k is not CollaboratorKind.KNOWLEDGE or has_knowledge)
            ],
        )

    def _reconstruction_instructions(
        self,
        handoff_id: str,
        checkpoint: CheckpointHandoffData,
    ) -> List[ReconstructionInstruction]:
        return [
            ReconstructionInstruction(
                step=1,
                description="Load handoff package from the knowledge store",
                target=CollaboratorKind.KNOWLEDGE,
                operation="search_nodes",
                parameters={"query": entity_name(HANDOFF_PACKAGE, handoff_id)},
            ),
            ReconstructionInstruction(
                step=2,
                description="Restore the handoff checkpoint (dry run first)",
                target=CollaboratorKind.CHECKPOINT,
                operation="restore_checkpoint",
                parameters={"checkpoint_id": checkpoint.checkpoint_id, "dry_run": True},
                dependencies=[1],
            ),
            ReconstructionInstruction(
                step=3,
                description="Load the session record from the analytics store",
                target=CollaboratorKind.ANALYTICS,
                operation="query",
                parameters={
                    "sql": "SELECT * FROM conversation_sessions WHERE session_id = :session_id",
                    "params": {"session_id": self.session.session_id},
                },
                dependencies=[1],
            ),
            ReconstructionInstruction(
                step=4,
                description="Compare version control status with the handoff branch",
                target=CollaboratorKind.VERSION_CONTROL,
                operation="status",
                dependencies=[1],
            ),
            ReconstructionInstruction(
                step=5,
                description="Confirm the filesystem roots are still accessible",
                target=CollaboratorKind.FILESYSTEM,
                operation="list_allowed_directories",
                dependencies=[2],
            ),
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, package: HandoffPackage, caps: Capabilities) -> HandoffPackage:
        """
        Write the package to the knowledge store, then the platform rows.

        Returns:
            The package as persisted. When the knowledge write fails the
            memory share is marked unavailable and the filesystem becomes
            the primary context, so the package never points at an entity
            that does not exist.
        """
        if caps.has(CollaboratorKind.KNOWLEDGE):
            settled = await settle([(
                "knowledge",
                self.collaborators.knowledge.create_entities(
                    [encode(HANDOFF_PACKAGE, package.handoff_id, package)]
                ),
                None,
            )])
            if not settled["knowledge"][0]:
                logger.warning(f"Handoff {package.handoff_id} not persisted to knowledge")
                package = package.model_copy(update={
                    "memory": self._memory_unavailable(),
                    "coordination_map": self._coordination_map(caps, knowledge_written=False),
                })

        platform_db = self.collaborators.platform_db
        if platform_db is not None:
            settled = await settle([("analytics", self._persist_rows(platform_db, package), None)])
            if not settled["analytics"][0]:
                logger.warning(f"Handoff {package.handoff_id} not persisted to analytics")
        return package

    async def _persist_rows(self, platform_db, package: HandoffPackage) -> None:
        await upsert_session(
            platform_db,
            session_id=self.session.session_id,
            project_name=self.session.project_name,
            user_id=self.session.user_id,
            start_time=self.session.start_time,
            token_count=self.session.token_count,
            status="handed_off",
            handoff_id=package.handoff_id,
        )
        await record_handoff(platform_db, package)
        await record_coordination(
            platform_db,
            session_id=self.session.session_id,
            collaborator="knowledge",
            operation="handoff_created",
            status="success",
            details=dumps_details(
                handoff_id=package.handoff_id,
                checkpoint_id=package.checkpoint.checkpoint_id,
            ),
        )
