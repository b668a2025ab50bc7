"""
Continuity Conductor Models - Schema for rules, collaborator state, handoffs
and project intelligence.

Sections:
- enums: closed vocabularies for rule types, enforcement levels, collaborators
- rules: session rules, enforcement results, violations, optimizations
- collaborators: shapes returned by the five backing services
- ecosystem: point-in-time health snapshot
- handoff / reconstruction / sync / events
- project intelligence

All models are pydantic so that persisted entities round-trip through
``model_dump_json`` / ``model_validate_json`` without losing fields.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a unique id such as ``rule_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ============================================================================
# Enums
# ============================================================================

class RuleType(str, Enum):
    WORKFLOW = "workflow"
    APPROVAL = "approval"
    ARCHITECTURE = "architecture"
    DOCUMENTATION = "documentation"


class RuleScope(str, Enum):
    USER = "user"
    PROJECT = "project"
    GLOBAL = "global"


class EnforcementLevel(str, Enum):
    """Strictness of a rule, from hard blocking down to silent logging."""
    HARD_BLOCK = "hard_block"
    SOFT_BLOCK = "soft_block"
    REMINDER = "reminder"
    SUGGESTION = "suggestion"
    LOG_ONLY = "log_only"


class EnforcementOutcome(str, Enum):
    ALLOWED = "allowed"
    WARNED = "warned"
    BLOCKED = "blocked"


class UserResponse(str, Enum):
    COMPLIED = "complied"
    OVERRODE = "overrode"
    MODIFIED_RULE = "modified_rule"
    DISABLED_RULE = "disabled_rule"


class ViolationType(str, Enum):
    IGNORED = "ignored"
    BYPASSED = "bypassed"
    FAILED_CONDITION = "failed_condition"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class ConflictType(str, Enum):
    CONTRADICTORY = "contradictory"
    REDUNDANT = "redundant"
    IMPOSSIBLE = "impossible"


class OptimizationType(str, Enum):
    MERGE_SIMILAR = "merge_similar"
    ADJUST_PRIORITY = "adjust_priority"
    REFINE_CONDITIONS = "refine_conditions"
    CHANGE_ENFORCEMENT = "change_enforcement"


class CollaboratorKind(str, Enum):
    """The five independently operated backing services."""
    KNOWLEDGE = "knowledge"
    CHECKPOINT = "checkpoint"
    FILESYSTEM = "filesystem"
    VERSION_CONTROL = "version_control"
    ANALYTICS = "analytics"


# Every collaborator the design accounts for, in handoff order
ALL_COLLABORATORS = (
    CollaboratorKind.KNOWLEDGE,
    CollaboratorKind.CHECKPOINT,
    CollaboratorKind.FILESYSTEM,
    CollaboratorKind.VERSION_CONTROL,
    CollaboratorKind.ANALYTICS,
)


class HealthStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"


class CoordinationStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class EventType(str, Enum):
    FILE_CHANGED = "file_changed"
    VCS_COMMIT = "vcs_commit"
    CONTEXT_THRESHOLD_REACHED = "context_threshold_reached"
    CHECKPOINT_CREATED = "checkpoint_created"
    RULE_VIOLATED = "rule_violated"
    HANDOFF_CREATED = "handoff_created"


class EventPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionType(str, Enum):
    SYNC_STATE = "sync_state"
    CREATE_CHECKPOINT = "create_checkpoint"
    UPDATE_MEMORY = "update_memory"
    ENFORCE_RULE = "enforce_rule"
    COMPRESS_CONTEXT = "compress_context"


class FreshnessStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class RecommendedAction(str, Enum):
    USE = "use"
    REFRESH = "refresh"
    DISCARD = "discard"


class Importance(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


# ============================================================================
# Rules
# ============================================================================

class RuleCondition(BaseModel):
    """A field predicate attached to a rule. Persisted, not evaluated."""
    field: str
    operator: ConditionOperator
    value: Any = None
    case_sensitive: bool = False


class SessionRule(BaseModel):
    """
    A persistent user preference enforced against proposed actions.

    Lower priority values take precedence. Usage and violation counters and
    the effectiveness score are mutated on every enforcement pass.
    """
    id: str = Field(default_factory=lambda: new_id("rule"))
    rule: str
    type: RuleType = RuleType.WORKFLOW
    priority: int = 100
    active: bool = True
    scope: RuleScope = RuleScope.USER
    enforcement: EnforcementLevel = EnforcementLevel.REMINDER
    triggers: List[str] = Field(default_factory=list)
    conditions: List[RuleCondition] = Field(default_factory=list)
    usage_count: int = 0
    violation_count: int = 0
    effectiveness: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProposedAction(BaseModel):
    type: str
    description: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    context: Dict[str, Any] = Field(default_factory=dict)
    collaborators_involved: List[CollaboratorKind] = Field(default_factory=list)
    reversible: bool = True


class RuleEnforcementResult(BaseModel):
    rule_id: str
    action: str
    result: EnforcementOutcome
    message: Optional[str] = None
    user_prompt: Optional[str] = None
    suggested_actions: List[str] = Field(default_factory=list)
    enforced_at: datetime = Field(default_factory=utcnow)


class RuleViolation(BaseModel):
    id: str = Field(default_factory=lambda: new_id("violation"))
    rule_id: str
    session_id: Optional[str] = None
    action: str
    violation_type: ViolationType = ViolationType.IGNORED
    user_response: UserResponse
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class EnforcementRecord(BaseModel):
    """One logged rule firing, persisted as a RuleEnforcement entity."""
    id: str = Field(default_factory=lambda: new_id("enforcement"))
    rule_id: str
    session_id: Optional[str] = None
    action: str
    result: EnforcementOutcome
    user_response: UserResponse = UserResponse.COMPLIED
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class RuleConflict(BaseModel):
    conflict_type: ConflictType
    description: str
    conflicting_rule_ids: List[str] = Field(default_factory=list)
    suggested_resolution: str = ""


class RuleOptimization(BaseModel):
    optimization_type: OptimizationType
    description: str
    expected_improvement: str = ""
    affected_rule_ids: List[str] = Field(default_factory=list)


class RuleValidationResult(BaseModel):
    valid: bool
    conflicts: List[RuleConflict] = Field(default_factory=list)
    suggestions: List[RuleOptimization] = Field(default_factory=list)
    estimated_effectiveness: float = 1.0
    enforcement: List[RuleEnforcementResult] = Field(default_factory=list)


class BehaviorPattern(BaseModel):
    pattern_type: str
    description: str
    frequency: int = 0
    contexts: List[str] = Field(default_factory=list)
    user_corrections: List[str] = Field(default_factory=list)


class RuleDraft(BaseModel):
    """A rule proposed from observed behavior, not yet persisted."""
    rule: str
    type: RuleType = RuleType.WORKFLOW
    priority: int = 50
    scope: RuleScope = RuleScope.USER
    enforcement: EnforcementLevel = EnforcementLevel.REMINDER
    triggers: List[str] = Field(default_factory=list)


class RuleSuggestion(BaseModel):
    suggested_rule: RuleDraft
    reason: str
    based_on_pattern: str
    confidence: float = Field(ge=0.0, le=1.0)
    example_violations: List[str] = Field(default_factory=list)


# ============================================================================
# Collaborator shapes
# ============================================================================

class KnowledgeEntity(BaseModel):
    name: str
    entity_type: str
    observations: List[str] = Field(default_factory=list)


class KnowledgeRelation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    relation_type: str


class KnowledgeGraph(BaseModel):
    entities: List[KnowledgeEntity] = Field(default_factory=list)
    relations: List[KnowledgeRelation] = Field(default_factory=list)


class Checkpoint(BaseModel):
    id: str
    name: Optional[str] = None
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    file_count: Optional[int] = None


class RestoreResult(BaseModel):
    success: bool
    message: Optional[str] = None
    files_restored: Optional[int] = None


class FileActivity(BaseModel):
    path: str
    action: str
    timestamp: datetime = Field(default_factory=utcnow)
    size: Optional[int] = None


class VcsStatusSummary(BaseModel):
    branch: str = "unknown"
    ahead: int = 0
    behind: int = 0
    staged: int = 0
    modified: int = 0
    untracked: int = 0
    conflicted: int = 0


class VcsStatus(BaseModel):
    branch: str = "unknown"
    ahead: int = 0
    behind: int = 0
    staged: List[str] = Field(default_factory=list)
    modified: List[str] = Field(default_factory=list)
    untracked: List[str] = Field(default_factory=list)
    conflicted: List[str] = Field(default_factory=list)
    head: Optional[str] = None

    def summary(self) -> VcsStatusSummary:
        return VcsStatusSummary(
            branch=self.branch,
            ahead=self.ahead,
            behind=self.behind,
            staged=len(self.staged),
            modified=len(self.modified),
            untracked=len(self.untracked),
            conflicted=len(self.conflicted),
        )


class QueryResult(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0


class DatabaseHealth(BaseModel):
    status: str  # healthy | unhealthy
    last_checked: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None


class DatabaseSessionInfo(BaseModel):
    database: str  # platform | analytics
    active_queries: int = 0
    last_activity: datetime = Field(default_factory=utcnow)
    connection_status: str = "connected"  # connected | disconnected | error


# ============================================================================
# Ecosystem state
# ============================================================================

class CollaboratorHealth(BaseModel):
    status: HealthStatus
    response_time_ms: Optional[float] = None
    last_checked: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None


class CoordinationHealth(BaseModel):
    status: CoordinationStatus
    collaborator_statuses: Dict[CollaboratorKind, CollaboratorHealth] = Field(default_factory=dict)
    last_full_sync: Optional[datetime] = None
    average_response_time_ms: float = 0.0
    error_count: int = 0


class EcosystemState(BaseModel):
    """Point-in-time snapshot, recomputed on demand and never persisted."""
    timestamp: datetime = Field(default_factory=utcnow)
    conversation_tokens: int = 0
    memory_entities: int = 0
    checkpoint_ids: List[str] = Field(default_factory=list)
    filesystem_activity: List[FileActivity] = Field(default_factory=list)
    vcs_status: VcsStatusSummary = Field(default_factory=VcsStatusSummary)
    database_sessions: List[DatabaseSessionInfo] = Field(default_factory=list)
    coordination_health: CoordinationHealth


# ============================================================================
# Handoff packages
# ============================================================================

class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class MemoryHandoffData(FrozenModel):
    available: bool = True
    compressed_context_entities: List[str] = Field(default_factory=list)
    session_rule_entities: List[str] = Field(default_factory=list)
    working_state_entity: Optional[str] = None
    context_relationships: List[KnowledgeRelation] = Field(default_factory=list)
    semantic_summary: str = ""


class CheckpointHandoffData(FrozenModel):
    available: bool = True
    placeholder: bool = False
    checkpoint_id: str
    description: str = ""
    working_directory: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    file_count: int = 0


class ProjectSnapshot(FrozenModel):
    root_path: str = "unknown"
    file_count: int = 0
    directory_count: int = 0
    total_size: int = 0
    last_modified: Optional[datetime] = None


class FilesystemHandoffData(FrozenModel):
    available: bool = True
    project_snapshot: ProjectSnapshot = Field(default_factory=ProjectSnapshot)
    allowed_roots: List[str] = Field(default_factory=list)
    active_files: List[str] = Field(default_factory=list)
    recent_changes: List[FileActivity] = Field(default_factory=list)
    project_structure_hash: Optional[str] = None


class VersionControlHandoffData(FrozenModel):
    available: bool = True
    current_branch: str = "unknown"
    commit_hash: str = "unknown"
    changes_summary: str = ""
    uncommitted_changes: int = 0
    ahead: int = 0
    behind: int = 0


class SessionAnalytics(FrozenModel):
    session_id: str
    start_time: datetime
    token_count: int = 0
    decisions_count: int = 0
    files_modified: int = 0
    rules_enforced: int = 0


class AnalyticsHandoffData(FrozenModel):
    available: bool = True
    session_analytics: Optional[SessionAnalytics] = None
    effectiveness_metrics: Dict[str, float] = Field(default_factory=dict)
    query_log: List[str] = Field(default_factory=list)


class CrossReference(FrozenModel):
    source_type: CollaboratorKind
    source_id: str
    target_type: CollaboratorKind
    target_id: str
    relationship_type: str  # synchronized_with | linked_to | derived_from | triggers


class CollaboratorDependency(FrozenModel):
    collaborator: CollaboratorKind
    depends_on: List[CollaboratorKind] = Field(default_factory=list)
    required: bool = False


class CoordinationMap(FrozenModel):
    primary_context: CollaboratorKind
    dependencies: List[CollaboratorDependency] = Field(default_factory=list)
    sync_priority: List[CollaboratorKind] = Field(default_factory=list)


class ReconstructionInstruction(FrozenModel):
    step: int
    description: str
    target: CollaboratorKind
    operation: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[int] = Field(default_factory=list)


class HandoffPackage(FrozenModel):
    """Portable snapshot of session + collaborator state. Immutable once created."""
    handoff_id: str
    created_at: datetime = Field(default_factory=utcnow)
    session_id: str
    current_task: Optional[str] = None
    active_files: List[str] = Field(default_factory=list)
    token_count: int = 0
    memory: MemoryHandoffData
    checkpoint: CheckpointHandoffData
    filesystem: FilesystemHandoffData
    version_control: VersionControlHandoffData
    analytics: AnalyticsHandoffData
    cross_references: List[CrossReference] = Field(default_factory=list)
    coordination_map: CoordinationMap
    reconstruction_instructions: List[ReconstructionInstruction] = Field(default_factory=list)


class ReconstructedContext(BaseModel):
    context_id: str
    reconstructed_at: datetime = Field(default_factory=utcnow)
    source_handoff_id: str
    package: Optional[HandoffPackage] = None
    memory_context: Optional[Any] = None
    checkpoint_state: Optional[Any] = None
    filesystem_state: Optional[Any] = None
    version_control_state: Optional[Any] = None
    analytics_state: Optional[Any] = None
    attempted: List[CollaboratorKind] = Field(default_factory=list)
    completeness: float = Field(ge=0.0, le=1.0)
    overall_completeness: float = Field(ge=0.0, le=1.0)
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    missing_elements: List[CollaboratorKind] = Field(default_factory=list)
    reconstruction_time_ms: float = 0.0


# ============================================================================
# Synchronization
# ============================================================================

class CollaboratorSyncResult(BaseModel):
    collaborator: CollaboratorKind
    success: bool
    operations_performed: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    response_time_ms: float = 0.0


class ConflictReport(BaseModel):
    conflict_type: str
    description: str
    affected: List[CollaboratorKind] = Field(default_factory=list)
    resolution: str = "manual_required"  # auto_resolved | manual_required


class SyncResult(BaseModel):
    success: bool
    results: Dict[CollaboratorKind, CollaboratorSyncResult] = Field(default_factory=dict)
    conflicts: List[ConflictReport] = Field(default_factory=list)
    duration_ms: float = 0.0
    next_sync_recommended: Optional[datetime] = None


class WorkingStateSnapshot(BaseModel):
    """Session state mirrored into the knowledge store on every sync."""
    session_id: str
    project_name: str
    current_task: Optional[str] = None
    active_files: List[str] = Field(default_factory=list)
    token_count: int = 0
    rules_enforced: int = 0
    captured_at: datetime = Field(default_factory=utcnow)


class VcsSnapshot(BaseModel):
    session_id: str
    status: VcsStatus
    captured_at: datetime = Field(default_factory=utcnow)


class CoordinatedCheckpoint(BaseModel):
    checkpoint_id: str
    coordinated_at: datetime = Field(default_factory=utcnow)
    collaborator_checkpoints: Dict[CollaboratorKind, str] = Field(default_factory=dict)
    cross_references: List[CrossReference] = Field(default_factory=list)
    description: str = ""


# ============================================================================
# Events
# ============================================================================

class OrchestrationEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: new_id("event"))
    timestamp: datetime = Field(default_factory=utcnow)
    source: CollaboratorKind
    event_type: EventType
    data: Dict[str, Any] = Field(default_factory=dict)
    affected: List[CollaboratorKind] = Field(default_factory=list)
    priority: EventPriority = EventPriority.MEDIUM


class OrchestrationAction(BaseModel):
    action_type: ActionType
    target: CollaboratorKind
    parameters: Dict[str, Any] = Field(default_factory=dict)


class OrchestrationResponse(BaseModel):
    actions: List[OrchestrationAction] = Field(default_factory=list)
    coordination_needed: bool = False
    collaborators_to_sync: List[CollaboratorKind] = Field(default_factory=list)
    next_check_interval_ms: int = 30_000


class ConversationCapacity(BaseModel):
    session_id: str
    token_count: int
    token_capacity: int
    usage_ratio: float
    threshold: float
    threshold_reached: bool


# ============================================================================
# Project intelligence
# ============================================================================

class DirectoryInfo(BaseModel):
    path: str
    purpose: str = ""
    importance: Importance = Importance.MODERATE
    file_count: int = 0
    key_contents: List[str] = Field(default_factory=list)


class FileInfo(BaseModel):
    path: str
    purpose: str = ""
    importance: Importance = Importance.MODERATE
    last_modified: Optional[datetime] = None
    size: int = 0
    dependencies: List[str] = Field(default_factory=list)


class ComponentInfo(BaseModel):
    name: str
    type: str = "module"
    file_path: str = ""
    purpose: str = ""
    dependencies: List[str] = Field(default_factory=list)


class DependencyNode(BaseModel):
    name: str
    version: Optional[str] = None
    type: str = "runtime"
    purpose: str = ""
    critical: bool = False


class ProjectStructure(BaseModel):
    summary: str = ""
    root_paths: List[str] = Field(default_factory=list)
    key_directories: List[DirectoryInfo] = Field(default_factory=list)
    critical_files: List[FileInfo] = Field(default_factory=list)
    component_map: List[ComponentInfo] = Field(default_factory=list)
    dependency_graph: List[DependencyNode] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0


class TechnicalStack(BaseModel):
    language: str = ""
    runtime: str = ""
    frameworks: List[str] = Field(default_factory=list)
    libraries: List[str] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list)
    protocols: List[str] = Field(default_factory=list)


class ImplementedComponent(BaseModel):
    name: str
    type: str = "service"
    status: str = "complete"  # complete | partial | refactoring
    file_paths: List[str] = Field(default_factory=list)


class PendingComponent(BaseModel):
    name: str
    priority: str = "medium"
    blocked_by: List[str] = Field(default_factory=list)
    design_notes: Optional[str] = None


class IntegrationPoint(BaseModel):
    name: str
    type: str = "external_service"
    status: str = "active"
    configuration: Dict[str, Any] = Field(default_factory=dict)


class ArchitectureState(BaseModel):
    current_phase: str = ""
    implemented_components: List[ImplementedComponent] = Field(default_factory=list)
    pending_components: List[PendingComponent] = Field(default_factory=list)
    technical_stack: TechnicalStack = Field(default_factory=TechnicalStack)
    design_patterns: List[str] = Field(default_factory=list)
    integration_points: List[IntegrationPoint] = Field(default_factory=list)


class LogicalStep(BaseModel):
    step: str
    priority: str = "medium"
    effort: str = "medium"
    dependencies: List[str] = Field(default_factory=list)
    rationale: str = ""


class Blocker(BaseModel):
    issue: str
    type: str = "technical"
    severity: str = "medium"
    blocked_since: datetime = Field(default_factory=utcnow)
    potential_solutions: List[str] = Field(default_factory=list)


class Decision(BaseModel):
    decision: str
    made_at: datetime = Field(default_factory=utcnow)
    rationale: str = ""
    alternatives: List[str] = Field(default_factory=list)


class DevelopmentMomentum(BaseModel):
    velocity: str = "steady"  # very_high | high | steady | slow | stagnant
    focus_areas: List[str] = Field(default_factory=list)
    recent_completions: List[str] = Field(default_factory=list)
    upcoming_milestones: List[str] = Field(default_factory=list)


class DevelopmentState(BaseModel):
    recent_focus: str = ""
    active_work_areas: List[str] = Field(default_factory=list)
    next_logical_steps: List[LogicalStep] = Field(default_factory=list)
    blockers: List[Blocker] = Field(default_factory=list)
    decisions: List[Decision] = Field(default_factory=list)
    momentum: DevelopmentMomentum = Field(default_factory=DevelopmentMomentum)
    vcs_branch: Optional[str] = None
    uncommitted_changes: int = 0


class Goal(BaseModel):
    description: str
    priority: str = "should_have"
    status: str = "planning"


class Constraint(BaseModel):
    constraint: str
    severity: str = "soft"  # hard | soft | preference


class ProjectContext(BaseModel):
    purpose: str = ""
    goals: List[Goal] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list)
    stakeholders: List[str] = Field(default_factory=list)
    current_phase: str = ""
    started: Optional[datetime] = None


class InvalidationTrigger(BaseModel):
    pattern: str
    importance: Importance = Importance.MODERATE
    type: str = "file_pattern"
    sections: List[str] = Field(default_factory=lambda: ["structure"])


class FreshnessAssessment(BaseModel):
    status: FreshnessStatus = FreshnessStatus.FRESH
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    last_validation: datetime = Field(default_factory=utcnow)
    staleness_indicators: List[str] = Field(default_factory=list)


class ProjectMetadata(BaseModel):
    contributors: List[str] = Field(default_factory=list)
    technologies: List[str] = Field(default_factory=list)
    maturity_level: str = "development"
    complexity_score: float = Field(default=0.5, ge=0.0, le=1.0)
    documentation_coverage: float = Field(default=0.0, ge=0.0, le=1.0)


class ProjectIntelligence(BaseModel):
    project_name: str
    project_path: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    cache_version: int = 1
    structure: ProjectStructure = Field(default_factory=ProjectStructure)
    architecture: ArchitectureState = Field(default_factory=ArchitectureState)
    development: DevelopmentState = Field(default_factory=DevelopmentState)
    context: ProjectContext = Field(default_factory=ProjectContext)
    invalidation_triggers: List[InvalidationTrigger] = Field(default_factory=list)
    freshness: FreshnessAssessment = Field(default_factory=FreshnessAssessment)
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)


class CacheCreationOptions(BaseModel):
    project_path: Optional[str] = None
    exclude_patterns: List[str] = Field(default_factory=lambda: ["node_modules", ".git", "dist"])
    include_vcs_info: bool = True
    structure: Optional[ProjectStructure] = None
    architecture: Optional[ArchitectureState] = None
    development: Optional[DevelopmentState] = None
    context: Optional[ProjectContext] = None
    metadata: Optional[ProjectMetadata] = None
    invalidation_triggers: Optional[List[InvalidationTrigger]] = None


class ProjectChange(BaseModel):
    type: str  # file_added | file_modified | file_deleted | config_changed | dependency_changed
    path: str
    magnitude: Importance = Importance.MINOR
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class CacheValidationResult(BaseModel):
    valid: bool
    confidence: float = Field(ge=0.0, le=1.0)
    staleness_reasons: List[str] = Field(default_factory=list)
    recommended_action: RecommendedAction
    partial_updates_available: List[str] = Field(default_factory=list)
    cache_version: Optional[int] = None


class CacheUpdateResult(BaseModel):
    success: bool
    updated_sections: List[str] = Field(default_factory=list)
    invalidated_sections: List[str] = Field(default_factory=list)
    new_cache_version: Optional[int] = None
    update_duration_ms: float = 0.0
    confidence_improvement: float = 0.0
