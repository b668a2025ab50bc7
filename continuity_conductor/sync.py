"""
State Synchronizer - best-effort per-collaborator sync in a fixed order.

Order: knowledge store, analytics, filesystem, version control,
checkpointing. Every step runs inside its own failure boundary, so one
failing collaborator never stops the steps after it. Nothing is retried;
a failed step is reported and the next sync tries again.
"""

import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from .collaborators import CollaboratorSet
from .config import Settings, settings as default_settings
from .entities import COORDINATED_CHECKPOINT, VCS_SNAPSHOT, WORKING_STATE, encode, entity_name
from .models import (
    CollaboratorKind,
    CollaboratorSyncResult,
    ConflictReport,
    CoordinatedCheckpoint,
    CrossReference,
    EventPriority,
    EventType,
    OrchestrationEvent,
    SyncResult,
    VcsSnapshot,
    WorkingStateSnapshot,
    new_id,
    utcnow,
)
from .rule_store import RuleStore
from .session import SessionContext
from .stores.relational import dumps_details, record_coordination, upsert_session

logger = logging.getLogger(__name__)

SYNC_ORDER = (
    CollaboratorKind.KNOWLEDGE,
    CollaboratorKind.ANALYTICS,
    CollaboratorKind.FILESYSTEM,
    CollaboratorKind.VERSION_CONTROL,
    CollaboratorKind.CHECKPOINT,
)

UNAVAILABLE = "unavailable"
NO_CHECKPOINT = "no_checkpoint"


class StateSynchronizer:
    """Pushes the current session state to every configured collaborator."""

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

    async def sync(self) -> SyncResult:
        start = time.perf_counter()
        caps = self.collaborators.capabilities()
        conflicts: List[ConflictReport] = []
        logger.info("Starting cross-collaborator synchronization")

        steps: Dict[CollaboratorKind, Callable[[List[ConflictReport]], Awaitable[List[str]]]] = {
            CollaboratorKind.KNOWLEDGE: self._sync_knowledge,
            CollaboratorKind.ANALYTICS: self._sync_analytics,
            CollaboratorKind.FILESYSTEM: self._sync_filesystem,
            CollaboratorKind.VERSION_CONTROL: self._sync_version_control,
            CollaboratorKind.CHECKPOINT: self._sync_checkpoints,
        }

        results: Dict[CollaboratorKind, CollaboratorSyncResult] = {}
        for kind in SYNC_ORDER:
            if not caps.has(kind):
                results[kind] = CollaboratorSyncResult(
                    collaborator=kind, success=False, error_message="not configured"
                )
                continue

            step_start = time.perf_counter()
            try:
                operations = await steps[kind](conflicts)
            except Exception as e:
                logger.warning(f"Sync step {kind.value} failed: {e}", extra={'collaborator': kind.value})
                results[kind] = CollaboratorSyncResult(
                    collaborator=kind,
                    success=False,
                    error_message=str(e),
                    response_time_ms=round((time.perf_counter() - step_start) * 1000, 3),
                )
                continue

            results[kind] = CollaboratorSyncResult(
                collaborator=kind,
                success=True,
                operations_performed=operations,
                response_time_ms=round((time.perf_counter() - step_start) * 1000, 3),
            )

        success = all(results[k].success for k in caps.present)
        now = utcnow()
        next_sync = None
        if success:
            self.session.mark_synced(now)
            next_sync = now + timedelta(seconds=self.settings.sync_interval_seconds)

        failed = [k.value for k in caps.present if not results[k].success]
        if failed:
            logger.warning(f"Synchronization finished with failures: {', '.join(failed)}")
        else:
            logger.info(f"Synchronization finished across {len(caps.present)} collaborators")

        return SyncResult(
            success=success,
            results=results,
            conflicts=conflicts,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
            next_sync_recommended=next_sync,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _sync_knowledge(self, conflicts: List[ConflictReport]) -> List[str]:
        knowledge = self.collaborators.knowledge
        snapshot = WorkingStateSnapshot(
            session_id=self.session.session_id,
            project_name=self.session.project_name,
            current_task=self.session.current_task,
            active_files=list(self.session.active_files),
            token_count=self.session.token_count,
            rules_enforced=self.session.rules_enforced,
        )
        name = entity_name(WORKING_STATE, self.session.session_id)
        await knowledge.delete_entities([name])
        await knowledge.create_entities([encode(WORKING_STATE, self.session.session_id, snapshot)])
        operations = ["sync_session_state"]

        if self.rule_store is not None:
            recovered = await self.rule_store.recover_pending()
            if recovered:
                operations.append("recover_pending_rules")
            if self.rule_store.pending_recreate:
                conflicts.append(ConflictReport(
                    conflict_type="rule_store_pending",
                    description=f"{len(self.rule_store.pending_recreate)} rule(s) still await re-creation",
                    affected=[CollaboratorKind.KNOWLEDGE],
                ))
        return operations

    async def _sync_analytics(self, conflicts: List[ConflictReport]) -> List[str]:
        db = self.collaborators.platform_db
        if db is None:
            # Only the read-only analytics database is configured
            health = await self.collaborators.analytics_db.health_check()
            if health.status != "healthy":
                raise RuntimeError(health.error_message or "analytics database unhealthy")
            return ["check_analytics_health"]

        await upsert_session(
            db,
            session_id=self.session.session_id,
            project_name=self.session.project_name,
            user_id=self.session.user_id,
            start_time=self.session.start_time,
            token_count=self.session.token_count,
        )
        await record_coordination(
            db,
            session_id=self.session.session_id,
            collaborator="analytics",
            operation="sync",
            status="success",
            details=dumps_details(token_count=self.session.token_count),
        )
        return ["update_session_analytics"]

    async def _sync_filesystem(self, conflicts: List[ConflictReport]) -> List[str]:
        roots = await self.collaborators.filesystem.list_allowed_directories()
        outside = [
            path for path in self.session.active_files
            if roots and path.startswith("/") and not any(path.startswith(root) for root in roots)
        ]
        if outside:
            conflicts.append(ConflictReport(
                conflict_type="filesystem_scope",
                description=f"{len(outside)} active file(s) outside the allowed roots",
                affected=[CollaboratorKind.FILESYSTEM],
            ))
        return ["check_allowed_roots"]

    async def _sync_version_control(self, conflicts: List[ConflictReport]) -> List[str]:
        status = await self.collaborators.version_control.status()
        operations = ["check_vcs_status"]

        if status.conflicted:
            conflicts.append(ConflictReport(
                conflict_type="vcs_conflict",
                description=f"{len(status.conflicted)} file(s) with unresolved merge conflicts",
                affected=[CollaboratorKind.VERSION_CONTROL],
            ))

        knowledge = self.collaborators.knowledge
        if knowledge is not None:
            snapshot = VcsSnapshot(session_id=self.session.session_id, status=status)
            try:
                await knowledge.delete_entities([entity_name(VCS_SNAPSHOT, self.session.session_id)])
                await knowledge.create_entities([encode(VCS_SNAPSHOT, self.session.session_id, snapshot)])
            except Exception as e:
                # The knowledge step reports its own failure
                logger.warning(f"VCS snapshot not recorded in knowledge store: {e}")
            else:
                operations.append("record_vcs_snapshot")
        return operations

    async def _sync_checkpoints(self, conflicts: List[ConflictReport]) -> List[str]:
        await self.collaborators.checkpoints.list_checkpoints()
        return ["check_checkpoint_state"]

    # ------------------------------------------------------------------
    # Coordinated checkpoint
    # ------------------------------------------------------------------

    async def coordinate_checkpoint(self) -> CoordinatedCheckpoint:
        """
        Take a checkpoint and record it in the knowledge store and the
        platform database. Each part that cannot be done is marked
        ``"unavailable"`` in the returned map; this never raises.
        """
        checkpoint_id = new_id("coordinated")
        c = self.collaborators
        markers: Dict[CollaboratorKind, str] = {
            CollaboratorKind.CHECKPOINT: UNAVAILABLE,
            CollaboratorKind.KNOWLEDGE: UNAVAILABLE,
            CollaboratorKind.ANALYTICS: UNAVAILABLE,
            CollaboratorKind.FILESYSTEM: NO_CHECKPOINT,
            CollaboratorKind.VERSION_CONTROL: NO_CHECKPOINT,
        }

        if c.checkpoints is not None:
            try:
                checkpoint = await c.checkpoints.create_checkpoint(
                    f"Coordinated checkpoint: {checkpoint_id}", name=checkpoint_id
                )
                markers[CollaboratorKind.CHECKPOINT] = checkpoint.id
            except Exception as e:
                logger.warning(f"Coordinated checkpoint {checkpoint_id}: checkpoint failed: {e}")

        if c.platform_db is not None:
            try:
                await upsert_session(
                    c.platform_db,
                    session_id=self.session.session_id,
                    project_name=self.session.project_name,
                    user_id=self.session.user_id,
                    start_time=self.session.start_time,
                    token_count=self.session.token_count,
                )
                markers[CollaboratorKind.ANALYTICS] = self.session.session_id
            except Exception as e:
                logger.warning(f"Coordinated checkpoint {checkpoint_id}: session row failed: {e}")

        memory_name = entity_name(COORDINATED_CHECKPOINT, checkpoint_id)
        if c.knowledge is not None:
            markers[CollaboratorKind.KNOWLEDGE] = memory_name

        references = []
        if markers[CollaboratorKind.CHECKPOINT] != UNAVAILABLE:
            references.append(CrossReference(
                source_type=CollaboratorKind.KNOWLEDGE,
                source_id=memory_name,
                target_type=CollaboratorKind.CHECKPOINT,
                target_id=markers[CollaboratorKind.CHECKPOINT],
                relationship_type="synchronized_with",
            ))

        coordinated = CoordinatedCheckpoint(
            checkpoint_id=checkpoint_id,
            collaborator_checkpoints=markers,
            cross_references=references,
            description=f"Coordinated checkpoint for session {self.session.session_id}",
        )

        if c.knowledge is not None:
            try:
                await c.knowledge.create_entities([encode(COORDINATED_CHECKPOINT, checkpoint_id, coordinated)])
            except Exception as e:
                logger.warning(f"Coordinated checkpoint {checkpoint_id}: knowledge entity failed: {e}")
                markers[CollaboratorKind.KNOWLEDGE] = UNAVAILABLE
                coordinated = coordinated.model_copy(update={"collaborator_checkpoints": markers})

        self.session.record_event(OrchestrationEvent(
            source=CollaboratorKind.CHECKPOINT,
            event_type=EventType.CHECKPOINT_CREATED,
            data={"checkpoint_id": checkpoint_id},
            affected=[k for k, v in markers.items() if v not in (UNAVAILABLE, NO_CHECKPOINT)],
            priority=EventPriority.MEDIUM,
        ))
        logger.info(f"Coordinated checkpoint {checkpoint_id} created")
        return coordinated
