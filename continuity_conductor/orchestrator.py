"""
Conductor Orchestrator - the host-facing surface.

Owns the one ``SessionContext`` and wires it, by handle, into every
component. Each public coroutine is tagged with an operation id and timed
through ``with_operation_id``.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .collaborators import CollaboratorSet, settle
from .config import Settings, settings as default_settings
from .handoff import HandoffBuilder
from .intelligence import ProjectIntelligenceCache
from .logging_config import with_operation_id
from .models import (
    ActionType,
    BehaviorPattern,
    CacheCreationOptions,
    CacheUpdateResult,
    CacheValidationResult,
    CollaboratorKind,
    ConversationCapacity,
    CoordinatedCheckpoint,
    EcosystemState,
    EventType,
    HandoffPackage,
    OrchestrationAction,
    OrchestrationEvent,
    OrchestrationResponse,
    ProjectChange,
    ProjectIntelligence,
    ProposedAction,
    ReconstructedContext,
    RuleEnforcementResult,
    RuleOptimization,
    RuleScope,
    RuleSuggestion,
    RuleValidationResult,
    RuleViolation,
    SessionRule,
    SyncResult,
)
from .monitor import EcosystemMonitor
from .reconstruction import ContextReconstructor
from .rule_store import RuleStore
from .rules import RulesEngine
from .session import SessionContext
from .stores.relational import dumps_details, record_coordination
from .sync import StateSynchronizer

logger = logging.getLogger(__name__)


class ConductorOrchestrator:
    """
    Coordinates rules, handoffs, reconstruction and synchronization across
    the optional collaborators.

    Example:
        conductor = ConductorOrchestrator(CollaboratorSet(knowledge=store))
        result = await conductor.validate_action(ProposedAction(type="artifact_create"))
    """

    def __init__(
        self,
        collaborators: Optional[CollaboratorSet] = None,
        settings: Optional[Settings] = None,
        session: Optional[SessionContext] = None,
    ):
        self.collaborators = collaborators or CollaboratorSet()
        self.settings = settings or default_settings
        self.session = session or SessionContext.start(
            project_name=self.settings.project_name,
            user_id=self.settings.user_id,
        )

        self.rule_store = RuleStore(self.collaborators, self.settings)
        self.rules = RulesEngine(self.rule_store, self.session)
        self.monitor = EcosystemMonitor(self.collaborators, self.session, self.settings)
        self.handoffs = HandoffBuilder(self.collaborators, self.session, self.rule_store, self.settings)
        self.reconstructor = ContextReconstructor(self.collaborators, self.session)
        self.synchronizer = StateSynchronizer(self.collaborators, self.session, self.rule_store, self.settings)
        self.intelligence = ProjectIntelligenceCache(self.collaborators, self.settings)

        caps = self.collaborators.capabilities()
        logger.info(
            f"Conductor started for session {self.session.session_id} "
            f"with {len(caps.present)}/{caps.total} collaborators: "
            f"{', '.join(k.value for k in caps.present) or 'none'}"
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @with_operation_id
    async def create_rule(self, rule: Union[SessionRule, Dict[str, Any]]) -> SessionRule:
        if not isinstance(rule, SessionRule):
            rule = SessionRule.model_validate(rule)
        return await self.rule_store.create_rule(rule)

    @with_operation_id
    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> SessionRule:
        return await self.rule_store.update_rule(rule_id, updates)

    @with_operation_id
    async def delete_rule(self, rule_id: str) -> None:
        await self.rule_store.delete_rule(rule_id)

    @with_operation_id
    async def get_rules(self, scope: Optional[RuleScope] = None) -> List[SessionRule]:
        return await self.rule_store.get_rules(scope)

    @with_operation_id
    async def get_rule(self, rule_id: str) -> SessionRule:
        return await self.rule_store.get_rule(rule_id)

    @with_operation_id
    async def initialize_default_rules(self) -> List[SessionRule]:
        return await self.rules.initialize_default_rules()

    @with_operation_id
    async def enforce_rules(self, action: ProposedAction) -> List[RuleEnforcementResult]:
        return await self.rules.enforce_rules(action)

    @with_operation_id
    async def validate_action(self, action: ProposedAction) -> RuleValidationResult:
        return await self.rules.validate_action(action)

    @with_operation_id
    async def record_violation(self, violation: RuleViolation) -> Optional[SessionRule]:
        return await self.rules.record_violation(violation)

    @with_operation_id
    async def suggest_new_rules(self, patterns: List[BehaviorPattern]) -> List[RuleSuggestion]:
        return self.rules.suggest_new_rules(patterns)

    @with_operation_id
    async def optimize_rules(self) -> List[RuleOptimization]:
        return await self.rules.optimize_rules()

    # ------------------------------------------------------------------
    # Ecosystem coordination
    # ------------------------------------------------------------------

    @with_operation_id
    async def monitor_ecosystem_state(self) -> EcosystemState:
        return await self.monitor.monitor()

    @with_operation_id
    async def create_unified_handoff_package(self) -> HandoffPackage:
        return await self.handoffs.build()

    @with_operation_id
    async def reconstruct_unified_context(self, handoff_id: str) -> ReconstructedContext:
        return await self.reconstructor.reconstruct(handoff_id)

    @with_operation_id
    async def sync_state_across_collaborators(self) -> SyncResult:
        return await self.synchronizer.sync()

    @with_operation_id
    async def coordinate_conversation_checkpoint(self) -> CoordinatedCheckpoint:
        return await self.synchronizer.coordinate_checkpoint()

    @with_operation_id
    async def handle_event(self, event: OrchestrationEvent) -> OrchestrationResponse:
        """
        Translate a collaborator event into follow-up actions for the host.

        The actions are returned, not executed; unknown event types produce
        no actions.
        """
        self.session.record_event(event)

        actions: List[OrchestrationAction] = []
        to_sync: List[CollaboratorKind] = []

        if event.event_type == EventType.FILE_CHANGED:
            actions.append(OrchestrationAction(
                action_type=ActionType.UPDATE_MEMORY,
                target=CollaboratorKind.KNOWLEDGE,
                parameters={
                    "entity_name": "CurrentWorkingState",
                    "observation": f"File changed: {event.data.get('path')}",
                },
            ))
            to_sync = [CollaboratorKind.KNOWLEDGE]
        elif event.event_type == EventType.VCS_COMMIT:
            actions.append(OrchestrationAction(
                action_type=ActionType.UPDATE_MEMORY,
                target=CollaboratorKind.KNOWLEDGE,
                parameters={
                    "entity_name": "GitHistory",
                    "observation": f"Commit: {event.data.get('hash')} - {event.data.get('message')}",
                },
            ))
            to_sync = [CollaboratorKind.KNOWLEDGE, CollaboratorKind.ANALYTICS]
        elif event.event_type == EventType.CONTEXT_THRESHOLD_REACHED:
            actions.append(OrchestrationAction(
                action_type=ActionType.COMPRESS_CONTEXT,
                target=CollaboratorKind.KNOWLEDGE,
                parameters={"threshold": self.settings.context_threshold},
            ))
            to_sync = [CollaboratorKind.KNOWLEDGE, CollaboratorKind.CHECKPOINT, CollaboratorKind.ANALYTICS]

        await self._log_event(event)

        return OrchestrationResponse(
            actions=actions,
            coordination_needed=len(to_sync) > 1,
            collaborators_to_sync=to_sync,
            next_check_interval_ms=self.settings.next_check_interval_ms,
        )

    # ------------------------------------------------------------------
    # Session activity
    # ------------------------------------------------------------------

    def record_activity(
        self,
        tokens_used: int = 0,
        files: Optional[List[str]] = None,
        task: Optional[str] = None,
    ) -> None:
        self.session.record_activity(tokens_used, files, task)

    @with_operation_id
    async def monitor_conversation_length(self) -> ConversationCapacity:
        """Token usage against capacity, flagging the context threshold."""
        capacity = self.settings.token_capacity
        ratio = self.session.token_count / capacity
        reached = ratio >= self.settings.context_threshold
        if reached:
            logger.warning(
                f"Conversation at {ratio:.0%} of capacity, "
                f"threshold {self.settings.context_threshold:.0%} reached"
            )
        return ConversationCapacity(
            session_id=self.session.session_id,
            token_count=self.session.token_count,
            token_capacity=capacity,
            usage_ratio=ratio,
            threshold=self.settings.context_threshold,
            threshold_reached=reached,
        )

    # ------------------------------------------------------------------
    # Project intelligence
    # ------------------------------------------------------------------

    @with_operation_id
    async def create_project_intelligence(
        self,
        project_name: Optional[str] = None,
        options: Optional[CacheCreationOptions] = None,
    ) -> ProjectIntelligence:
        return await self.intelligence.create(project_name or self.settings.project_name, options)

    @with_operation_id
    async def load_project_intelligence(self, project_name: str) -> Optional[ProjectIntelligence]:
        return await self.intelligence.load(project_name)

    @with_operation_id
    async def validate_project_intelligence(self, project_name: str) -> CacheValidationResult:
        return await self.intelligence.validate(project_name)

    @with_operation_id
    async def refresh_project_intelligence(
        self,
        project_name: str,
        changes: Optional[List[ProjectChange]] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> CacheUpdateResult:
        return await self.intelligence.refresh(project_name, changes, updates)

    @with_operation_id
    async def invalidate_project_intelligence(
        self,
        project_name: str,
        reason: str,
        expire: bool = False,
    ) -> bool:
        return await self.intelligence.invalidate(project_name, reason, expire)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _log_event(self, event: OrchestrationEvent) -> None:
        platform_db = self.collaborators.platform_db
        if platform_db is None:
            return
        await settle([(
            "analytics",
            record_coordination(
                platform_db,
                session_id=self.session.session_id,
                collaborator=event.source.value,
                operation=event.event_type.value,
                status="received",
                details=dumps_details(**event.data),
            ),
            None,
        )])
