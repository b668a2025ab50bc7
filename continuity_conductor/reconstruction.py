"""
Context Reconstructor - rehydrates a session from a handoff id.

Every collaborator available *now* is asked for its share of the state,
concurrently and independently. Two ratios score the result and are never
conflated:

    completeness          successful / attempted   (quality of what was tried)
    overall_completeness  attempted / designed     (breadth against all five)

``missing_elements`` lists every collaborator that is not configured or
whose attempt failed.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .collaborators import CollaboratorSet, settle
from .entities import HANDOFF_PACKAGE, decode, entity_name, pick
from .exceptions import HandoffNotFoundError
from .models import (
    ALL_COLLABORATORS,
    CollaboratorKind,
    HandoffPackage,
    ReconstructedContext,
    new_id,
)
from .session import SessionContext
from .stores.relational import fetch_session_analytics

logger = logging.getLogger(__name__)


class ContextReconstructor:
    """Rebuilds a working context from a handoff package id."""

    def __init__(self, collaborators: CollaboratorSet, session: SessionContext):
        self.collaborators = collaborators
        self.session = session

    async def reconstruct(self, handoff_id: str) -> ReconstructedContext:
        """
        Reconstruct context for a handoff.

        Raises:
            HandoffNotFoundError: if the knowledge store cannot produce the
                package and no other collaborator is available to try
        """
        start = time.perf_counter()
        caps = self.collaborators.capabilities()
        logger.info(f"Reconstructing context from handoff: {handoff_id}")

        attempts = {
            CollaboratorKind.KNOWLEDGE: self._load_package,
            CollaboratorKind.CHECKPOINT: self._checkpoint_state,
            CollaboratorKind.FILESYSTEM: self._filesystem_state,
            CollaboratorKind.VERSION_CONTROL: self._vcs_state,
            CollaboratorKind.ANALYTICS: self._analytics_state,
        }
        attempted = [k for k in ALL_COLLABORATORS if caps.has(k)]
        settled = await settle([
            (kind.value, attempts[kind](handoff_id), None) for kind in attempted
        ])
        results = {kind: settled[kind.value] for kind in attempted}

        knowledge_ok = results.get(CollaboratorKind.KNOWLEDGE, (False, None))[0]
        others = [k for k in attempted if k is not CollaboratorKind.KNOWLEDGE]
        if not knowledge_ok and not others:
            raise HandoffNotFoundError(handoff_id)

        package = self._recovered_package(results)
        succeeded = [k for k in attempted if results[k][0]]
        missing = [k for k in ALL_COLLABORATORS if k not in succeeded]

        completeness = len(succeeded) / len(attempted) if attempted else 0.0
        overall = len(attempted) / len(ALL_COLLABORATORS)

        def value(kind: CollaboratorKind) -> Optional[Any]:
            return results[kind][1] if kind in results else None

        context = ReconstructedContext(
            context_id=new_id(f"context_{handoff_id}"),
            source_handoff_id=handoff_id,
            package=package,
            memory_context=value(CollaboratorKind.KNOWLEDGE),
            checkpoint_state=value(CollaboratorKind.CHECKPOINT),
            filesystem_state=value(CollaboratorKind.FILESYSTEM),
            version_control_state=value(CollaboratorKind.VERSION_CONTROL),
            analytics_state=value(CollaboratorKind.ANALYTICS),
            attempted=attempted,
            completeness=completeness,
            overall_completeness=overall,
            accuracy=completeness * self._consistency(package, results),
            missing_elements=missing,
            reconstruction_time_ms=round((time.perf_counter() - start) * 1000, 3),
        )

        if package is not None:
            self.session.apply_reconstruction(package)
        else:
            logger.warning(f"Handoff {handoff_id} package not recovered, session left unchanged")

        logger.info(
            f"Context reconstruction completed: {completeness * 100:.1f}% of attempts succeeded, "
            f"{len(attempted)}/{len(ALL_COLLABORATORS)} collaborators attempted"
        )
        return context

    # ------------------------------------------------------------------
    # Per-collaborator attempts (each may raise; settle isolates them)
    # ------------------------------------------------------------------

    async def _load_package(self, handoff_id: str) -> HandoffPackage:
        entities = await self.collaborators.knowledge.search_nodes(
            entity_name(HANDOFF_PACKAGE, handoff_id)
        )
        entity = pick(entities, HANDOFF_PACKAGE, handoff_id)
        if entity is None:
            raise HandoffNotFoundError(handoff_id)
        return decode(entity, HandoffPackage)

    async def _checkpoint_state(self, handoff_id: str) -> Dict[str, Any]:
        """Find the checkpoint created for this handoff and dry-run its restore."""
        checkpoints = self.collaborators.checkpoints
        for checkpoint in await checkpoints.list_checkpoints():
            if checkpoint.name == handoff_id:
                restore = await checkpoints.restore_checkpoint(checkpoint.id, dry_run=True)
                return {"checkpoint_id": checkpoint.id, "restore": restore}
        raise LookupError(f"No checkpoint recorded for handoff {handoff_id}")

    async def _filesystem_state(self, handoff_id: str) -> Dict[str, List[str]]:
        roots = await self.collaborators.filesystem.list_allowed_directories()
        return {"allowed_roots": roots}

    async def _vcs_state(self, handoff_id: str):
        return await self.collaborators.version_control.status()

    async def _analytics_state(self, handoff_id: str) -> Dict[str, Any]:
        db = self.collaborators.platform_db or self.collaborators.analytics_db
        handoffs = await db.query(
            "SELECT handoff_id, session_id, created_at, current_task, token_count, package "
            "FROM unified_handoffs WHERE handoff_id = :handoff_id",
            {"handoff_id": handoff_id},
        )
        if not handoffs.rows:
            raise HandoffNotFoundError(handoff_id)
        row = handoffs.rows[0]
        return {"handoff": row, **await fetch_session_analytics(db, row["session_id"])}

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def _recovered_package(self, results: Dict[CollaboratorKind, tuple]) -> Optional[HandoffPackage]:
        ok, package = results.get(CollaboratorKind.KNOWLEDGE, (False, None))
        if ok:
            return package

        ok, analytics = results.get(CollaboratorKind.ANALYTICS, (False, None))
        if ok:
            try:
                return HandoffPackage.model_validate_json(analytics["handoff"]["package"])
            except ValueError as e:
                logger.warning(f"Stored handoff row could not be parsed: {e}")
        return None

    def _consistency(
        self,
        package: Optional[HandoffPackage],
        results: Dict[CollaboratorKind, tuple],
    ) -> float:
        """Fraction of recovered states that agree with the package."""
        if package is None:
            return 1.0

        checks: List[bool] = []
        ok, status = results.get(CollaboratorKind.VERSION_CONTROL, (False, None))
        if ok and package.version_control.available:
            checks.append(status.branch == package.version_control.current_branch)

        ok, checkpoint = results.get(CollaboratorKind.CHECKPOINT, (False, None))
        if ok and not package.checkpoint.placeholder:
            checks.append(checkpoint["checkpoint_id"] == package.checkpoint.checkpoint_id)

        return sum(checks) / len(checks) if checks else 1.0
