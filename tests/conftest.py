# tests/conftest.py
"""
Pytest configuration for Continuity Conductor tests.

Provides in-memory fakes for the collaborators that have no reference
store (checkpoints, filesystem, version control) plus fixtures for the
two reference stores.
"""

from typing import List, Optional

import pytest
import pytest_asyncio

from continuity_conductor.collaborators import CollaboratorSet
from continuity_conductor.config import Settings
from continuity_conductor.models import Checkpoint, RestoreResult, VcsStatus
from continuity_conductor.session import SessionContext
from continuity_conductor.stores import KnowledgeGraphStore, SqlRelationalStore

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


# ============================================================================
# Fakes
# ============================================================================

class FakeCheckpoints:
    """Checkpoint collaborator keeping checkpoints in a list."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.checkpoints: List[Checkpoint] = []
        self.restores: List[str] = []

    async def create_checkpoint(self, description: str, name: Optional[str] = None) -> Checkpoint:
        if self.fail:
            raise ConnectionError("checkpoint server unreachable")
        checkpoint = Checkpoint(
            id=f"cp_{len(self.checkpoints) + 1}",
            name=name,
            description=description,
            file_count=3,
        )
        self.checkpoints.append(checkpoint)
        return checkpoint

    async def list_checkpoints(self) -> List[Checkpoint]:
        if self.fail:
            raise ConnectionError("checkpoint server unreachable")
        return list(self.checkpoints)

    async def restore_checkpoint(self, checkpoint_id: str, dry_run: bool = True) -> RestoreResult:
        self.restores.append(checkpoint_id)
        return RestoreResult(success=True, message="dry run" if dry_run else "restored", files_restored=3)


class FakeFilesystem:
    def __init__(self, roots: Optional[List[str]] = None, fail: bool = False):
        self.roots = roots if roots is not None else ["/work/project"]
        self.fail = fail

    async def list_allowed_directories(self) -> List[str]:
        if self.fail:
            raise PermissionError("filesystem server refused")
        return list(self.roots)


class FakeVcs:
    def __init__(self, status: Optional[VcsStatus] = None, fail: bool = False):
        self._status = status or VcsStatus(
            branch="main",
            head="abc1234",
            ahead=1,
            modified=["src/app.py"],
            untracked=["notes.txt"],
        )
        self.fail = fail

    async def status(self) -> VcsStatus:
        if self.fail:
            raise RuntimeError("not a git repository")
        return self._status


class FailingKnowledge:
    """Knowledge store whose every call fails."""

    async def create_entities(self, entities):
        raise ConnectionError("knowledge store down")

    async def delete_entities(self, names):
        raise ConnectionError("knowledge store down")

    async def create_relations(self, relations):
        raise ConnectionError("knowledge store down")

    async def search_nodes(self, query):
        raise ConnectionError("knowledge store down")

    async def read_graph(self):
        raise ConnectionError("knowledge store down")


class FlakyKnowledge(KnowledgeGraphStore):
    """Real graph store whose next ``fail_creates`` creates fail."""

    def __init__(self):
        super().__init__()
        self.fail_creates = 0

    async def create_entities(self, entities):
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise ConnectionError("write rejected")
        await super().create_entities(entities)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(
        project_name="demo",
        working_directory=str(tmp_path),
        analytics_database_url=f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}",
    )


@pytest.fixture
def session():
    return SessionContext.start(project_name="demo", user_id="tester")


@pytest.fixture
def knowledge():
    return KnowledgeGraphStore()


@pytest_asyncio.fixture
async def platform_db(tmp_path):
    db = SqlRelationalStore(f"sqlite+aiosqlite:///{tmp_path / 'platform.db'}")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def checkpoints():
    return FakeCheckpoints()


@pytest.fixture
def filesystem():
    return FakeFilesystem()


@pytest.fixture
def vcs():
    return FakeVcs()


@pytest.fixture
def full_set(knowledge, checkpoints, filesystem, vcs, platform_db):
    """Every collaborator configured and healthy."""
    return CollaboratorSet(
        knowledge=knowledge,
        checkpoints=checkpoints,
        filesystem=filesystem,
        version_control=vcs,
        platform_db=platform_db,
    )
