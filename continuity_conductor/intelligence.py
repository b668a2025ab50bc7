"""
Project Intelligence Cache - versioned snapshot of a project's structure,
architecture and development state, persisted as one structured entity.

The snapshot lives in the knowledge store as ``ProjectIntelligence_<name>``
(JSON document, so nothing is dropped on reload). Without a knowledge store
snapshots are kept in-process for the lifetime of the conductor.

Freshness confidence decays linearly with age: full confidence when just
built, half at ``intelligence_max_age_hours``, zero at twice that age.
"""

import fnmatch
import logging
import os
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .collaborators import CollaboratorSet
from .config import Settings, settings as default_settings
from .entities import PROJECT_INTELLIGENCE, decode, encode, entity_name, pick
from .exceptions import MalformedEntityError
from .models import (
    ArchitectureState,
    CacheCreationOptions,
    CacheUpdateResult,
    CacheValidationResult,
    DevelopmentState,
    DirectoryInfo,
    FileInfo,
    FreshnessAssessment,
    FreshnessStatus,
    Importance,
    InvalidationTrigger,
    ProjectChange,
    ProjectContext,
    ProjectIntelligence,
    ProjectMetadata,
    ProjectStructure,
    RecommendedAction,
    TechnicalStack,
    utcnow,
)

logger = logging.getLogger(__name__)

SECTIONS = ("structure", "architecture", "development", "context")

# Sections that can be rebuilt from the filesystem / version control
REBUILDABLE = frozenset({"structure", "architecture", "development"})

MIN_USABLE_CONFIDENCE = 0.5

LANGUAGES = {
    ".py": "Python",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".js": "JavaScript",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".cs": "C#",
    ".rb": "Ruby",
}

# Manifest files that mark the project's critical configuration
MANIFESTS = {
    "setup.py": "Python packaging",
    "pyproject.toml": "Python packaging",
    "requirements.txt": "Python dependencies",
    "package.json": "Node.js packaging",
    "Cargo.toml": "Rust packaging",
    "go.mod": "Go module",
    "README.md": "Project overview",
}

DEFAULT_TRIGGERS = [
    InvalidationTrigger(pattern="**/*.py", importance=Importance.MAJOR, sections=["structure", "architecture"]),
    InvalidationTrigger(pattern="**/*.ts", importance=Importance.MAJOR, sections=["structure", "architecture"]),
    InvalidationTrigger(pattern="requirements*.txt", importance=Importance.CRITICAL, sections=["architecture"]),
    InvalidationTrigger(pattern="setup.py", importance=Importance.CRITICAL, sections=["architecture"]),
    InvalidationTrigger(pattern="pyproject.toml", importance=Importance.CRITICAL, sections=["architecture"]),
    InvalidationTrigger(pattern="package.json", importance=Importance.CRITICAL, sections=["architecture"]),
    InvalidationTrigger(pattern="**/*.md", importance=Importance.MINOR, sections=["context"]),
]


# ============================================================================
# Pattern matching
# ============================================================================

def matches_pattern(pattern: str, path: str) -> bool:
    """Glob match per path segment; ``**`` spans any number of directories."""
    path = path.replace("\\", "/")
    pattern = pattern.replace("\\", "/")
    return _match_parts(pattern.split("/"), path.split("/"))


def _match_parts(pattern_parts: List[str], path_parts: List[str]) -> bool:
    if not pattern_parts:
        return not path_parts
    if not path_parts:
        return all(p == "**" for p in pattern_parts)

    first = pattern_parts[0]
    if first == "**":
        if _match_parts(pattern_parts[1:], path_parts):
            return True
        return _match_parts(pattern_parts, path_parts[1:])

    if fnmatch.fnmatch(path_parts[0], first):
        return _match_parts(pattern_parts[1:], path_parts[1:])
    return False


def affected_sections(
    changes: Iterable[ProjectChange],
    triggers: Sequence[InvalidationTrigger],
) -> List[str]:
    """Sections touched by any change that matches an invalidation trigger."""
    hit = set()
    for change in changes:
        for trigger in triggers:
            if matches_pattern(trigger.pattern, change.path):
                hit.update(trigger.sections)
        if change.type in ("dependency_changed", "config_changed"):
            hit.add("architecture")
    return [s for s in SECTIONS if s in hit]


# ============================================================================
# Scanning
# ============================================================================

def scan_project_structure(project_path: str, exclude_patterns: Sequence[str]) -> ProjectStructure:
    """Walk the project, skipping hidden and excluded directories."""
    root = Path(project_path)
    files_per_dir: Counter = Counter()
    total_files = 0
    total_size = 0
    critical: List[FileInfo] = []

    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(
            d for d in dirs
            if not d.startswith(".") and not any(fnmatch.fnmatch(d, p) for p in exclude_patterns)
        )
        rel_dir = Path(current).relative_to(root)
        top = rel_dir.parts[0] if rel_dir.parts else "."

        for name in files:
            if name.startswith("."):
                continue
            path = Path(current) / name
            try:
                stat = path.stat()
            except OSError:
                continue
            total_files += 1
            total_size += stat.st_size
            files_per_dir[top] += 1

            if rel_dir == Path(".") and name in MANIFESTS:
                critical.append(FileInfo(
                    path=name,
                    purpose=MANIFESTS[name],
                    importance=Importance.CRITICAL,
                    last_modified=datetime.fromtimestamp(stat.st_mtime).astimezone(),
                    size=stat.st_size,
                ))

    key_dirs = [
        DirectoryInfo(path=name, file_count=count, importance=Importance.MAJOR if count >= 10 else Importance.MODERATE)
        for name, count in files_per_dir.most_common(10)
        if name != "."
    ]

    return ProjectStructure(
        summary=f"{total_files} files across {len(files_per_dir)} top-level locations",
        root_paths=[str(root)],
        key_directories=key_dirs,
        critical_files=critical,
        total_files=total_files,
        total_size=total_size,
    )


def detect_stack(project_path: str, exclude_patterns: Sequence[str]) -> TechnicalStack:
    counts: Counter = Counter()
    for current, dirs, files in os.walk(project_path):
        dirs[:] = [
            d for d in dirs
            if not d.startswith(".") and not any(fnmatch.fnmatch(d, p) for p in exclude_patterns)
        ]
        for name in files:
            language = LANGUAGES.get(Path(name).suffix)
            if language:
                counts[language] += 1

    if not counts:
        return TechnicalStack()
    language = counts.most_common(1)[0][0]
    tools = [m for m in MANIFESTS if m != "README.md" and (Path(project_path) / m).exists()]
    return TechnicalStack(language=language, tools=tools)


# ============================================================================
# Cache
# ============================================================================

class ProjectIntelligenceCache:
    """Create, load, validate, refresh and invalidate project snapshots."""

    def __init__(self, collaborators: CollaboratorSet, settings: Optional[Settings] = None):
        self.collaborators = collaborators
        self.settings = settings or default_settings
        self._local: Dict[str, ProjectIntelligence] = {}

    async def create(
        self,
        project_name: str,
        options: Optional[CacheCreationOptions] = None,
    ) -> ProjectIntelligence:
        """Build a snapshot and persist it as cache version 1."""
        opts = options or CacheCreationOptions()
        project_path = opts.project_path or self.settings.get_working_directory()

        structure = opts.structure or scan_project_structure(project_path, opts.exclude_patterns)
        architecture = opts.architecture or ArchitectureState(
            technical_stack=detect_stack(project_path, opts.exclude_patterns)
        )
        development = opts.development or DevelopmentState()
        if opts.include_vcs_info:
            development = await self._with_vcs_state(development)

        stack = architecture.technical_stack
        intelligence = ProjectIntelligence(
            project_name=project_name,
            project_path=project_path,
            structure=structure,
            architecture=architecture,
            development=development,
            context=opts.context or ProjectContext(),
            invalidation_triggers=opts.invalidation_triggers or list(DEFAULT_TRIGGERS),
            metadata=opts.metadata or ProjectMetadata(
                technologies=[t for t in [stack.language, *stack.frameworks] if t]
            ),
        )

        await self._save(intelligence)
        logger.info(f"Project intelligence created for {project_name} ({structure.total_files} files)")
        return intelligence

    async def load(self, project_name: str) -> Optional[ProjectIntelligence]:
        """Return the stored snapshot, or None if there is none."""
        knowledge = self.collaborators.knowledge
        if knowledge is None:
            return self._local.get(project_name)

        try:
            entities = await knowledge.search_nodes(entity_name(PROJECT_INTELLIGENCE, project_name))
        except Exception as e:
            logger.warning(f"Failed to load project intelligence for {project_name}: {e}")
            return self._local.get(project_name)

        entity = pick(entities, PROJECT_INTELLIGENCE, project_name)
        if entity is None:
            # A snapshot whose store write failed is still served from memory
            return self._local.get(project_name)
        try:
            return decode(entity, ProjectIntelligence)
        except MalformedEntityError as e:
            logger.warning(f"Stored project intelligence is unreadable: {e.reason}")
            return None

    async def validate(self, project_name: str) -> CacheValidationResult:
        """Confidence-scored freshness verdict with a recommended action."""
        intelligence = await self.load(project_name)
        if intelligence is None:
            return CacheValidationResult(
                valid=False,
                confidence=0.0,
                staleness_reasons=["no cached intelligence"],
                recommended_action=RecommendedAction.DISCARD,
            )

        age_hours = (utcnow() - intelligence.last_updated).total_seconds() / 3600
        max_age = self.settings.intelligence_max_age_hours
        confidence = self.decayed_confidence(intelligence, age_hours)
        reasons = list(intelligence.freshness.staleness_indicators)
        status = intelligence.freshness.status

        if status == FreshnessStatus.EXPIRED or age_hours >= 2 * max_age:
            if age_hours >= 2 * max_age:
                reasons.append(f"snapshot is {age_hours:.1f}h old")
            action = RecommendedAction.DISCARD
            confidence = 0.0
        elif status == FreshnessStatus.STALE or age_hours > max_age or confidence < MIN_USABLE_CONFIDENCE:
            if age_hours > max_age:
                reasons.append(f"snapshot is older than {max_age:g}h")
            action = RecommendedAction.REFRESH
        else:
            action = RecommendedAction.USE

        return CacheValidationResult(
            valid=action == RecommendedAction.USE,
            confidence=round(confidence, 4),
            staleness_reasons=reasons,
            recommended_action=action,
            partial_updates_available=sorted(REBUILDABLE) if action == RecommendedAction.REFRESH else [],
            cache_version=intelligence.cache_version,
        )

    async def refresh(
        self,
        project_name: str,
        changes: Optional[List[ProjectChange]] = None,
        updates: Optional[Dict[str, object]] = None,
    ) -> CacheUpdateResult:
        """
        Apply partial updates and bump the cache version.

        Args:
            changes: Observed project changes; matched against the snapshot's
                invalidation triggers to pick the sections to rebuild
            updates: Replacement values per section name, applied as given

        Returns:
            CacheUpdateResult; success is False if there is no snapshot
        """
        start = time.perf_counter()
        intelligence = await self.load(project_name)
        if intelligence is None:
            logger.warning(f"No project intelligence to refresh for {project_name}")
            return CacheUpdateResult(success=False)

        updates = dict(updates or {})
        if changes:
            targets = affected_sections(changes, intelligence.invalidation_triggers)
        else:
            targets = sorted(REBUILDABLE)
        targets = [s for s in SECTIONS if s in set(targets) | set(updates)]

        fields = {}
        updated: List[str] = []
        invalidated: List[str] = []
        exclude = CacheCreationOptions().exclude_patterns
        path = intelligence.project_path or self.settings.get_working_directory()

        for section in targets:
            if section in updates:
                fields[section] = updates[section]
            elif section == "structure":
                fields[section] = scan_project_structure(path, exclude)
            elif section == "architecture":
                fields[section] = intelligence.architecture.model_copy(
                    update={"technical_stack": detect_stack(path, exclude)}
                )
            elif section == "development":
                fields[section] = await self._with_vcs_state(intelligence.development)
            else:
                invalidated.append(section)
                continue
            updated.append(section)

        prior = intelligence.freshness
        needs_update = [f"{s} needs manual update" for s in invalidated]
        last_updated = utcnow()
        if not updated and not invalidated:
            # Nothing was rebuilt, so the snapshot is exactly as fresh as before
            freshness = prior
            last_updated = intelligence.last_updated
        elif prior.status != FreshnessStatus.FRESH and not REBUILDABLE <= set(updated):
            # A partial rebuild does not clear an earlier invalidation
            freshness = FreshnessAssessment(
                status=prior.status,
                confidence=prior.confidence,
                staleness_indicators=[*prior.staleness_indicators, *needs_update],
            )
        else:
            freshness = FreshnessAssessment(
                status=FreshnessStatus.STALE if invalidated else FreshnessStatus.FRESH,
                confidence=0.7 if invalidated else 1.0,
                staleness_indicators=needs_update,
            )

        data = intelligence.model_dump()
        data.update(fields)
        data.update(
            cache_version=intelligence.cache_version + 1,
            last_updated=last_updated,
            freshness=freshness,
        )
        refreshed = ProjectIntelligence.model_validate(data)
        await self._save(refreshed)

        logger.info(
            f"Project intelligence for {project_name} refreshed to v{refreshed.cache_version}: "
            f"updated {updated or 'nothing'}"
        )
        return CacheUpdateResult(
            success=True,
            updated_sections=updated,
            invalidated_sections=invalidated,
            new_cache_version=refreshed.cache_version,
            update_duration_ms=round((time.perf_counter() - start) * 1000, 3),
            confidence_improvement=max(0.0, freshness.confidence - prior.confidence),
        )

    async def invalidate(self, project_name: str, reason: str, expire: bool = False) -> bool:
        """
        Mark the snapshot stale (or expired) with a reason.

        Returns:
            False if there is no snapshot to invalidate
        """
        intelligence = await self.load(project_name)
        if intelligence is None:
            logger.warning(f"No project intelligence to invalidate for {project_name}")
            return False

        freshness = intelligence.freshness
        marked = intelligence.model_copy(update={
            "freshness": FreshnessAssessment(
                status=FreshnessStatus.EXPIRED if expire else FreshnessStatus.STALE,
                confidence=0.0 if expire else min(freshness.confidence, 0.4),
                staleness_indicators=[*freshness.staleness_indicators, reason],
            )
        })
        await self._save(marked)
        logger.info(f"Invalidated project intelligence for {project_name}: {reason}")
        return True

    def decayed_confidence(self, intelligence: ProjectIntelligence, age_hours: float) -> float:
        horizon = 2 * self.settings.intelligence_max_age_hours
        decay = max(0.0, 1.0 - age_hours / horizon)
        return intelligence.freshness.confidence * decay

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _with_vcs_state(self, development: DevelopmentState) -> DevelopmentState:
        vcs = self.collaborators.version_control
        if vcs is None:
            return development
        try:
            status = await vcs.status()
        except Exception as e:
            logger.warning(f"Version control status unavailable for project intelligence: {e}")
            return development
        return development.model_copy(update={
            "vcs_branch": status.branch,
            "uncommitted_changes": len(status.modified) + len(status.untracked),
        })

    async def _save(self, intelligence: ProjectIntelligence) -> None:
        """Replace the stored snapshot (delete then create)."""
        self._local[intelligence.project_name] = intelligence

        knowledge = self.collaborators.knowledge
        if knowledge is None:
            return
        try:
            await knowledge.delete_entities([entity_name(PROJECT_INTELLIGENCE, intelligence.project_name)])
            await knowledge.create_entities([encode(PROJECT_INTELLIGENCE, intelligence.project_name, intelligence)])
        except Exception as e:
            logger.warning(
                f"Project intelligence for {intelligence.project_name} kept in-process only: {e}"
            )
