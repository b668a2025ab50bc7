"""Tests for the project intelligence cache."""

from datetime import timedelta

import pytest

from continuity_conductor.collaborators import CollaboratorSet
from continuity_conductor.intelligence import (
    DEFAULT_TRIGGERS,
    ProjectIntelligenceCache,
    affected_sections,
    detect_stack,
    matches_pattern,
    scan_project_structure,
)
from continuity_conductor.models import (
    CacheCreationOptions,
    FreshnessStatus,
    Importance,
    ProjectChange,
    RecommendedAction,
    utcnow,
)

from .conftest import FailingKnowledge


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "pkg").mkdir(parents=True)
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "setup.py").write_text("from setuptools import setup\n")
    (root / "README.md").write_text("# Demo\n")
    (root / "pkg" / "__init__.py").write_text("")
    (root / "pkg" / "core.py").write_text("x = 1\n")
    (root / "node_modules" / "lib" / "index.js").write_text("module.exports = {}\n")
    (root / ".git" / "config").write_text("[core]\n")
    return root


def options(project, **extra):
    return CacheCreationOptions(project_path=str(project), **extra)


class TestPatterns:
    """Test glob matching for invalidation triggers."""

    def test_double_star(self):
        assert matches_pattern("**/*.py", "setup.py")
        assert matches_pattern("**/*.py", "pkg/sub/core.py")
        assert not matches_pattern("**/*.py", "pkg/core.pyc")

    def test_single_level(self):
        assert matches_pattern("requirements*.txt", "requirements-dev.txt")
        assert matches_pattern("src/*.py", "src/app.py")
        assert not matches_pattern("src/*.py", "src/a/b.py")

    def test_windows_separators(self):
        assert matches_pattern("**/*.py", "pkg\\core.py")

    def test_affected_sections(self):
        code = ProjectChange(type="file_modified", path="pkg/core.py")
        docs = ProjectChange(type="file_modified", path="docs/guide.md")
        lock = ProjectChange(type="dependency_changed", path="poetry.lock", magnitude=Importance.MAJOR)

        assert affected_sections([code], DEFAULT_TRIGGERS) == ["structure", "architecture"]
        assert affected_sections([docs], DEFAULT_TRIGGERS) == ["context"]
        assert affected_sections([lock], DEFAULT_TRIGGERS) == ["architecture"]
        assert affected_sections([], DEFAULT_TRIGGERS) == []


class TestScanning:
    """Test project structure and stack detection."""

    def test_scan_skips_hidden_and_excluded(self, project):
        structure = scan_project_structure(str(project), ["node_modules"])

        assert structure.total_files == 4
        assert {f.path for f in structure.critical_files} == {"setup.py", "README.md"}
        assert [d.path for d in structure.key_directories] == ["pkg"]

    def test_detect_stack(self, project):
        stack = detect_stack(str(project), ["node_modules"])
        assert stack.language == "Python"
        assert stack.tools == ["setup.py"]

    def test_empty_project(self, tmp_path):
        assert detect_stack(str(tmp_path), []).language == ""


class TestIntelligenceLifecycle:
    """Test create, load, validate, refresh and invalidate."""

    @pytest.mark.asyncio
    async def test_create_and_reload(self, project, knowledge, vcs, settings):
        collaborators = CollaboratorSet(knowledge=knowledge, version_control=vcs)
        cache = ProjectIntelligenceCache(collaborators, settings)

        created = await cache.create("demo", options(project))

        assert created.cache_version == 1
        assert created.freshness.status == FreshnessStatus.FRESH
        assert created.development.vcs_branch == "main"
        assert created.development.uncommitted_changes == 2
        assert created.metadata.technologies == ["Python"]

        fresh_cache = ProjectIntelligenceCache(collaborators, settings)
        assert await fresh_cache.load("demo") == created

    @pytest.mark.asyncio
    async def test_fresh_snapshot_is_usable(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))

        result = await cache.validate("demo")

        assert result.valid is True
        assert result.recommended_action == RecommendedAction.USE
        assert result.confidence > 0.99
        assert result.cache_version == 1

    @pytest.mark.asyncio
    async def test_old_snapshot_needs_refresh(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        created = await cache.create("demo", options(project))
        await cache._save(created.model_copy(update={"last_updated": utcnow() - timedelta(hours=30)}))

        result = await cache.validate("demo")

        assert result.recommended_action == RecommendedAction.REFRESH
        assert result.valid is False
        assert result.confidence == pytest.approx(1 - 30 / 48, abs=0.01)
        assert result.partial_updates_available == ["architecture", "development", "structure"]

    @pytest.mark.asyncio
    async def test_very_old_snapshot_discarded(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        created = await cache.create("demo", options(project))
        await cache._save(created.model_copy(update={"last_updated": utcnow() - timedelta(hours=60)}))

        result = await cache.validate("demo")

        assert result.recommended_action == RecommendedAction.DISCARD
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)

        assert await cache.load("nothing") is None
        assert (await cache.validate("nothing")).recommended_action == RecommendedAction.DISCARD
        assert (await cache.refresh("nothing")).success is False
        assert await cache.invalidate("nothing", "because") is False

    @pytest.mark.asyncio
    async def test_refresh_rebuilds_and_bumps_version(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))
        (project / "pkg" / "extra.py").write_text("y = 2\n")

        result = await cache.refresh("demo")

        assert result.success is True
        assert result.updated_sections == ["structure", "architecture", "development"]
        assert result.invalidated_sections == []
        assert result.new_cache_version == 2
        reloaded = await cache.load("demo")
        assert reloaded.structure.total_files == 5
        assert reloaded.freshness.status == FreshnessStatus.FRESH

    @pytest.mark.asyncio
    async def test_refresh_from_doc_change_invalidates_context(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))

        result = await cache.refresh("demo", changes=[ProjectChange(type="file_modified", path="README.md")])

        assert result.updated_sections == []
        assert result.invalidated_sections == ["context"]
        reloaded = await cache.load("demo")
        assert reloaded.freshness.status == FreshnessStatus.STALE
        assert reloaded.freshness.confidence == 0.7

    @pytest.mark.asyncio
    async def test_refresh_with_explicit_update(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))

        result = await cache.refresh(
            "demo",
            changes=[ProjectChange(type="file_modified", path="README.md")],
            updates={"context": {"purpose": "Demo project"}},
        )

        assert result.updated_sections == ["context"]
        assert (await cache.load("demo")).context.purpose == "Demo project"

    @pytest.mark.asyncio
    async def test_invalidate_then_refresh(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))

        assert await cache.invalidate("demo", "branch switched") is True
        result = await cache.validate("demo")
        assert result.recommended_action == RecommendedAction.REFRESH
        assert "branch switched" in result.staleness_reasons
        assert result.confidence <= 0.4

        update = await cache.refresh("demo")
        assert update.confidence_improvement == pytest.approx(0.6)
        assert (await cache.validate("demo")).recommended_action == RecommendedAction.USE

    @pytest.mark.asyncio
    async def test_refresh_with_unrelated_change_keeps_invalidation(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        created = await cache.create("demo", options(project))
        await cache.invalidate("demo", "schema rewritten")

        result = await cache.refresh("demo", changes=[ProjectChange(type="file_modified", path="data/blob.bin")])

        assert result.updated_sections == []
        assert result.invalidated_sections == []
        assert result.confidence_improvement == 0.0
        reloaded = await cache.load("demo")
        assert reloaded.cache_version == 2
        assert reloaded.last_updated == created.last_updated

        validation = await cache.validate("demo")
        assert validation.recommended_action == RecommendedAction.REFRESH
        assert "schema rewritten" in validation.staleness_reasons
        assert validation.confidence <= 0.4

    @pytest.mark.asyncio
    async def test_partial_refresh_keeps_invalidation(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))
        await cache.invalidate("demo", "schema rewritten")

        result = await cache.refresh("demo", changes=[ProjectChange(type="file_modified", path="pkg/core.py")])

        assert result.updated_sections == ["structure", "architecture"]
        validation = await cache.validate("demo")
        assert validation.recommended_action == RecommendedAction.REFRESH
        assert "schema rewritten" in validation.staleness_reasons

    @pytest.mark.asyncio
    async def test_expire_discards(self, project, knowledge, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=knowledge), settings)
        await cache.create("demo", options(project))
        await cache.invalidate("demo", "repository rewritten", expire=True)
        assert (await cache.validate("demo")).recommended_action == RecommendedAction.DISCARD


class TestIntelligenceWithoutStore:
    """Snapshots survive in-process when the knowledge store is absent or down."""

    @pytest.mark.asyncio
    async def test_no_knowledge_store(self, project, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(), settings)
        created = await cache.create("demo", options(project, include_vcs_info=False))
        assert await cache.load("demo") == created

    @pytest.mark.asyncio
    async def test_failing_knowledge_store(self, project, settings):
        cache = ProjectIntelligenceCache(CollaboratorSet(knowledge=FailingKnowledge()), settings)
        created = await cache.create("demo", options(project))
        assert await cache.load("demo") == created
