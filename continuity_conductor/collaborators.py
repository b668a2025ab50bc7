"""
Collaborator Client Set - typed, independently-nullable handles to the
five backing services.

Each collaborator is reached only through a narrow async interface and may
be missing or failing at any time. Callers resolve availability once via
``CollaboratorSet.capabilities()`` and fan out with ``settle()``, which
waits for every call to finish and substitutes an explicit default for
anything that raised.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .models import (
    ALL_COLLABORATORS,
    Checkpoint,
    CollaboratorHealth,
    CollaboratorKind,
    DatabaseHealth,
    HealthStatus,
    KnowledgeEntity,
    KnowledgeGraph,
    KnowledgeRelation,
    QueryResult,
    RestoreResult,
    VcsStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Client interfaces
# ============================================================================

@runtime_checkable
class KnowledgeStoreClient(Protocol):
    async def create_entities(self, entities: List[KnowledgeEntity]) -> None: ...

    async def delete_entities(self, names: List[str]) -> None: ...

    async def create_relations(self, relations: List[KnowledgeRelation]) -> None: ...

    async def search_nodes(self, query: str) -> List[KnowledgeEntity]: ...

    async def read_graph(self) -> KnowledgeGraph: ...


@runtime_checkable
class CheckpointClient(Protocol):
    async def create_checkpoint(self, description: str, name: Optional[str] = None) -> Checkpoint: ...

    async def list_checkpoints(self) -> List[Checkpoint]: ...

    async def restore_checkpoint(self, checkpoint_id: str, dry_run: bool = True) -> RestoreResult: ...


@runtime_checkable
class FilesystemClient(Protocol):
    async def list_allowed_directories(self) -> List[str]: ...


@runtime_checkable
class VersionControlClient(Protocol):
    async def status(self) -> VcsStatus: ...


@runtime_checkable
class RelationalStoreClient(Protocol):
    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult: ...

    async def health_check(self) -> DatabaseHealth: ...


# ============================================================================
# Client set
# ============================================================================

@dataclass
class CollaboratorSet:
    """
    The optional handles the conductor coordinates.

    The analytics collaborator is the pair of relational stores: the
    platform database receives writes, the analytics database is read for
    health only. Either one present makes the analytics collaborator
    available.
    """

    knowledge: Optional[KnowledgeStoreClient] = None
    checkpoints: Optional[CheckpointClient] = None
    filesystem: Optional[FilesystemClient] = None
    version_control: Optional[VersionControlClient] = None
    platform_db: Optional[RelationalStoreClient] = None
    analytics_db: Optional[RelationalStoreClient] = None

    def get(self, kind: CollaboratorKind) -> Optional[Any]:
        """Return the primary handle for a collaborator kind, or None."""
        if kind is CollaboratorKind.KNOWLEDGE:
            return self.knowledge
        if kind is CollaboratorKind.CHECKPOINT:
            return self.checkpoints
        if kind is CollaboratorKind.FILESYSTEM:
            return self.filesystem
        if kind is CollaboratorKind.VERSION_CONTROL:
            return self.version_control
        if kind is CollaboratorKind.ANALYTICS:
            return self.platform_db or self.analytics_db
        raise ValueError(f"Unknown collaborator kind: {kind}")

    def capabilities(self) -> "Capabilities":
        """Resolve which collaborators are configured, once, before dispatch."""
        present = tuple(k for k in ALL_COLLABORATORS if self.get(k) is not None)
        return Capabilities(present=present)


@dataclass(frozen=True)
class Capabilities:
    """Snapshot of which collaborators are configured right now."""

    present: Tuple[CollaboratorKind, ...]

    def has(self, kind: CollaboratorKind) -> bool:
        return kind in self.present

    @property
    def missing(self) -> Tuple[CollaboratorKind, ...]:
        return tuple(k for k in ALL_COLLABORATORS if k not in self.present)

    @property
    def total(self) -> int:
        return len(ALL_COLLABORATORS)


# ============================================================================
# Fan-out helpers
# ============================================================================

async def settle(
    calls: Sequence[Tuple[str, Awaitable[Any], Any]],
) -> Dict[str, Tuple[bool, Any]]:
    """
    Run awaitables concurrently and wait for all of them to settle.

    Args:
        calls: (label, awaitable, default) triples

    Returns:
        Dict of label -> (succeeded, value). Failed calls carry their default;
        the exception is logged, never re-raised.
    """
    if not calls:
        return {}

    outcomes = await asyncio.gather(*(c[1] for c in calls), return_exceptions=True)

    settled: Dict[str, Tuple[bool, Any]] = {}
    for (label, _, default), outcome in zip(calls, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                # KeyboardInterrupt / SystemExit / CancelledError propagate
                raise outcome
            logger.warning(
                f"{label} failed, using default: {outcome}",
                extra={'collaborator': label}
            )
            settled[label] = (False, default)
        else:
            settled[label] = (True, outcome)
    return settled


async def _probe(kind: CollaboratorKind, collaborators: CollaboratorSet) -> None:
    """One cheap read per collaborator, mirroring what each one is used for."""
    if kind is CollaboratorKind.KNOWLEDGE:
        await collaborators.knowledge.read_graph()
    elif kind is CollaboratorKind.CHECKPOINT:
        await collaborators.checkpoints.list_checkpoints()
    elif kind is CollaboratorKind.FILESYSTEM:
        await collaborators.filesystem.list_allowed_directories()
    elif kind is CollaboratorKind.VERSION_CONTROL:
        await collaborators.version_control.status()
    elif kind is CollaboratorKind.ANALYTICS:
        for db in (collaborators.platform_db, collaborators.analytics_db):
            if db is None:
                continue
            health = await db.health_check()
            if health.status != "healthy":
                raise RuntimeError(health.error_message or "database unhealthy")
    else:
        raise ValueError(f"Unknown collaborator kind: {kind}")


async def check_health(
    kind: CollaboratorKind,
    collaborators: CollaboratorSet,
) -> CollaboratorHealth:
    """Probe one collaborator; never raises."""
    if collaborators.get(kind) is None:
        return CollaboratorHealth(status=HealthStatus.NOT_CONFIGURED)

    start = time.perf_counter()
    try:
        await _probe(kind, collaborators)
    except Exception as e:
        return CollaboratorHealth(
            status=HealthStatus.ERROR,
            last_checked=utcnow(),
            error_message=str(e),
        )

    return CollaboratorHealth(
        status=HealthStatus.ONLINE,
        response_time_ms=round((time.perf_counter() - start) * 1000, 3),
        last_checked=utcnow(),
    )


async def check_all_health(
    collaborators: CollaboratorSet,
) -> Dict[CollaboratorKind, CollaboratorHealth]:
    """Probe every designed collaborator concurrently."""
    results = await asyncio.gather(
        *(check_health(kind, collaborators) for kind in ALL_COLLABORATORS)
    )
    return dict(zip(ALL_COLLABORATORS, results))
