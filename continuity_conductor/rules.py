"""
Rule Engine - evaluates proposed actions against session rules.

This module handles:
- Matching actions against rules (explicit triggers, else type heuristics)
- Enforcing the matched rules in priority order, stopping at the first block
- Detecting conflicts and proposing optimizations for one validation
- Learning from violations (effectiveness scoring)
- Suggesting new rules from observed behavior patterns
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .collaborators import settle
from .entities import RULE_ENFORCEMENT, RULE_VIOLATION, encode
from .exceptions import RuleNotFoundError
from .models import (
    BehaviorPattern,
    ConflictType,
    EnforcementLevel,
    EnforcementOutcome,
    EnforcementRecord,
    OptimizationType,
    ProposedAction,
    RiskLevel,
    RuleConflict,
    RuleDraft,
    RuleEnforcementResult,
    RuleOptimization,
    RuleScope,
    RuleSuggestion,
    RuleType,
    RuleValidationResult,
    RuleViolation,
    SessionRule,
    UserResponse,
)
from .rule_store import RuleStore
from .session import SessionContext
from .stores.relational import record_rule_outcome

logger = logging.getLogger(__name__)

# Starting score for rules that have never been scored
DEFAULT_EFFECTIVENESS = 0.5

# Minimum number of user corrections before a pattern becomes a suggestion
SUGGESTION_MIN_CORRECTIONS = 3

SIMILARITY_MERGE_THRESHOLD = 0.8

# Rules seeded into an empty store
DEFAULT_SESSION_RULES: List[RuleDraft] = [
    RuleDraft(
        rule="Ask for approval before creating new files or artifacts",
        type=RuleType.APPROVAL,
        priority=1,
        enforcement=EnforcementLevel.SOFT_BLOCK,
        triggers=["artifact_create", "file_create"],
    ),
    RuleDraft(
        rule="Confirm the design before implementing or refactoring components",
        type=RuleType.ARCHITECTURE,
        priority=2,
        enforcement=EnforcementLevel.REMINDER,
        triggers=["implement", "refactor"],
    ),
    RuleDraft(
        rule="Keep documentation in the project docs directory",
        type=RuleType.DOCUMENTATION,
        priority=3,
        enforcement=EnforcementLevel.SUGGESTION,
        triggers=["document"],
    ),
    RuleDraft(
        rule="Create a checkpoint before large multi-file changes",
        type=RuleType.WORKFLOW,
        priority=4,
        enforcement=EnforcementLevel.REMINDER,
        triggers=["bulk_edit", "multi_file"],
    ),
]


# ============================================================================
# Matching and enforcement (pure)
# ============================================================================

def _approval_applies(action: ProposedAction) -> bool:
    kind = action.type.lower()
    return action.risk_level == RiskLevel.HIGH or "create" in kind or "modify" in kind


def _architecture_applies(action: ProposedAction) -> bool:
    kind = action.type.lower()
    return any(word in kind for word in ("design", "implement", "refactor"))


def _documentation_applies(action: ProposedAction) -> bool:
    kind = action.type.lower()
    return "artifact" in kind or "document" in kind


def _workflow_applies(action: ProposedAction) -> bool:
    # Workflow rules only fire through explicit triggers
    return False


TYPE_HEURISTICS: Dict[RuleType, Callable[[ProposedAction], bool]] = {
    RuleType.APPROVAL: _approval_applies,
    RuleType.ARCHITECTURE: _architecture_applies,
    RuleType.DOCUMENTATION: _documentation_applies,
    RuleType.WORKFLOW: _workflow_applies,
}


def action_matches_rule(action: ProposedAction, rule: SessionRule) -> bool:
    """
    Decide whether a rule applies to an action.

    Explicit triggers win: any trigger that is a case-insensitive substring
    of the action type or description matches. Without triggers the rule
    type's heuristic decides. Conditions are stored but not evaluated.
    """
    if rule.triggers:
        haystacks = (action.type.lower(), action.description.lower())
        return any(t.lower() in h for t in rule.triggers for h in haystacks)
    return TYPE_HEURISTICS[rule.type](action)


def _hard_block(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    return RuleEnforcementResult(
        rule_id=rule.id,
        action=action.type,
        result=EnforcementOutcome.BLOCKED,
        message=f"Action blocked by rule: {rule.rule}",
        user_prompt="This action violates a mandatory rule. Please modify your approach.",
    )


def _soft_block(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    return RuleEnforcementResult(
        rule_id=rule.id,
        action=action.type,
        result=EnforcementOutcome.WARNED,
        message=f"Rule check: {rule.rule}",
        user_prompt="This action may violate a session rule. Do you want to proceed?",
        suggested_actions=["Modify approach", "Confirm and proceed", "Review rule"],
    )


def _reminder(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    return RuleEnforcementResult(
        rule_id=rule.id,
        action=action.type,
        result=EnforcementOutcome.ALLOWED,
        message=f"Reminder: {rule.rule}",
    )


def _suggestion(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    return RuleEnforcementResult(
        rule_id=rule.id,
        action=action.type,
        result=EnforcementOutcome.ALLOWED,
        message=f"Suggestion: Consider {rule.rule}",
    )


def _log_only(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    return RuleEnforcementResult(
        rule_id=rule.id,
        action=action.type,
        result=EnforcementOutcome.ALLOWED,
    )


ENFORCERS: Dict[EnforcementLevel, Callable[[SessionRule, ProposedAction], RuleEnforcementResult]] = {
    EnforcementLevel.HARD_BLOCK: _hard_block,
    EnforcementLevel.SOFT_BLOCK: _soft_block,
    EnforcementLevel.REMINDER: _reminder,
    EnforcementLevel.SUGGESTION: _suggestion,
    EnforcementLevel.LOG_ONLY: _log_only,
}


def enforce_rule(rule: SessionRule, action: ProposedAction) -> RuleEnforcementResult:
    """Map a matched rule's enforcement level to an outcome."""
    return ENFORCERS[rule.enforcement](rule, action)


def next_effectiveness(current: Optional[float], response: UserResponse) -> float:
    """
    Score a rule after the user reacted to it.

    Complying raises the score, overriding or editing the rule lowers it,
    disabling the rule zeroes it. Always within [0, 1].
    """
    score = DEFAULT_EFFECTIVENESS if current is None else current
    if response == UserResponse.COMPLIED:
        return min(score + 0.1, 1.0)
    if response == UserResponse.OVERRODE:
        return max(score - 0.2, 0.0)
    if response == UserResponse.MODIFIED_RULE:
        return max(score - 0.1, 0.0)
    if response == UserResponse.DISABLED_RULE:
        return 0.0
    return score


def estimate_effectiveness(enforcement: List[RuleEnforcementResult]) -> float:
    """1.0 when nothing fired, otherwise penalized per block and warning."""
    if not enforcement:
        return 1.0
    blocked = sum(1 for r in enforcement if r.result == EnforcementOutcome.BLOCKED)
    warned = sum(1 for r in enforcement if r.result == EnforcementOutcome.WARNED)
    return max(0.0, 1.0 - 0.5 * blocked - 0.2 * warned)


def _overlap(a: List[str], b: List[str]) -> float:
    common = [item for item in a if item in b]
    return len(common) / max(len(a), len(b))


def rule_similarity(rule1: SessionRule, rule2: SessionRule) -> float:
    """Mean of word overlap between rule texts and trigger overlap."""
    words1 = rule1.rule.lower().split()
    words2 = rule2.rule.lower().split()
    text_similarity = _overlap(words1, words2) if words1 or words2 else 1.0

    if not rule1.triggers and not rule2.triggers:
        trigger_similarity = 1.0
    elif not rule1.triggers or not rule2.triggers:
        trigger_similarity = 0.0
    else:
        trigger_similarity = _overlap(rule1.triggers, rule2.triggers)

    return (text_similarity + trigger_similarity) / 2


def infer_rule_type(description: str) -> RuleType:
    desc = description.lower()
    if "approval" in desc or "check" in desc:
        return RuleType.APPROVAL
    if "document" in desc or "path" in desc:
        return RuleType.DOCUMENTATION
    if "design" in desc or "architecture" in desc:
        return RuleType.ARCHITECTURE
    return RuleType.WORKFLOW


# ============================================================================
# Engine
# ============================================================================

class RulesEngine:
    """
    Enforces session rules for proposed actions.

    Enforcement side effects (usage counts, enforcement log entities,
    coordination log rows) degrade to warnings; the enforcement outcome is
    returned either way.
    """

    def __init__(self, store: RuleStore, session: Optional[SessionContext] = None):
        self.store = store
        self.session = session

    @property
    def collaborators(self):
        return self.store.collaborators

    @property
    def _session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None

    async def enforce_rules(self, action: ProposedAction) -> List[RuleEnforcementResult]:
        """
        Evaluate every active rule against an action, lowest priority first.

        Stops at the first blocked outcome.
        """
        rules = await self.store.get_rules()
        results: List[RuleEnforcementResult] = []

        for rule in rules:
            if not rule.active or not action_matches_rule(action, rule):
                continue

            result = enforce_rule(rule, action)
            results.append(result)

            await self._record_usage(rule)
            await self._log_enforcement(rule, action, result)

            if result.result == EnforcementOutcome.BLOCKED:
                break

        if self.session is not None:
            self.session.rules_enforced += len(results)
        return results

    async def validate_action(self, action: ProposedAction) -> RuleValidationResult:
        """Enforce, then report conflicts, suggestions and an effectiveness estimate."""
        enforcement = await self.enforce_rules(action)
        conflicts = await self.detect_conflicts(enforcement)
        suggestions = await self.generate_optimization_suggestions(enforcement, action)

        valid = not any(r.result == EnforcementOutcome.BLOCKED for r in enforcement)
        return RuleValidationResult(
            valid=valid,
            conflicts=conflicts,
            suggestions=suggestions,
            estimated_effectiveness=estimate_effectiveness(enforcement),
            enforcement=enforcement,
        )

    async def detect_conflicts(self, enforcement: List[RuleEnforcementResult]) -> List[RuleConflict]:
        conflicts: List[RuleConflict] = []
        ids = [r.rule_id for r in enforcement]

        outcomes = {r.result for r in enforcement}
        blocked = EnforcementOutcome.BLOCKED in outcomes
        if blocked and EnforcementOutcome.ALLOWED in outcomes:
            conflicts.append(RuleConflict(
                conflict_type=ConflictType.CONTRADICTORY,
                description="Some rules block this action while others allow it",
                conflicting_rule_ids=ids,
                suggested_resolution="Review rule priorities and enforcement levels",
            ))
        if blocked and EnforcementOutcome.WARNED in outcomes:
            conflicts.append(RuleConflict(
                conflict_type=ConflictType.CONTRADICTORY,
                description="Some rules block this action while others only warn",
                conflicting_rule_ids=ids,
                suggested_resolution="Align the enforcement levels of the firing rules",
            ))

        if len(enforcement) > 1:
            priorities = []
            for result in enforcement:
                try:
                    priorities.append((await self.store.get_rule(result.rule_id)).priority)
                except RuleNotFoundError:
                    priorities.append(100)
            if len(set(priorities)) == len(priorities):
                conflicts.append(RuleConflict(
                    conflict_type=ConflictType.REDUNDANT,
                    description="Multiple rules with different priorities apply to the same action",
                    conflicting_rule_ids=ids,
                    suggested_resolution="Consider consolidating similar rules",
                ))

        return conflicts

    async def generate_optimization_suggestions(
        self,
        enforcement: List[RuleEnforcementResult],
        action: ProposedAction,
    ) -> List[RuleOptimization]:
        suggestions: List[RuleOptimization] = []
        ids = [r.rule_id for r in enforcement]
        blocked = [r for r in enforcement if r.result == EnforcementOutcome.BLOCKED]
        warned = [r for r in enforcement if r.result == EnforcementOutcome.WARNED]

        if len(enforcement) > 2:
            suggestions.append(RuleOptimization(
                optimization_type=OptimizationType.MERGE_SIMILAR,
                description="Several rules fired for one action, consider merging them",
                expected_improvement="Fewer interruptions for the same action",
                affected_rule_ids=ids,
            ))

        if blocked:
            blocked_ids = [r.rule_id for r in blocked]
            suggestions.append(RuleOptimization(
                optimization_type=OptimizationType.CHANGE_ENFORCEMENT,
                description="Consider breaking the action down into smaller, compliant steps",
                expected_improvement="Incremental compliance instead of a hard stop",
                affected_rule_ids=blocked_ids,
            ))
            suggestions.append(RuleOptimization(
                optimization_type=OptimizationType.CHANGE_ENFORCEMENT,
                description="Review enforcement levels, some rules may be too strict",
                expected_improvement="Less friction while keeping the safeguard",
                affected_rule_ids=blocked_ids,
            ))
        elif warned:
            suggestions.append(RuleOptimization(
                optimization_type=OptimizationType.CHANGE_ENFORCEMENT,
                description="Consider promoting warning rules to soft blocks",
                expected_improvement="Consistent enforcement of important rules",
                affected_rule_ids=[r.rule_id for r in warned],
            ))

        if not enforcement and action.risk_level == RiskLevel.HIGH:
            suggestions.append(RuleOptimization(
                optimization_type=OptimizationType.REFINE_CONDITIONS,
                description=f"Consider creating a rule for high-risk actions like '{action.type}'",
                expected_improvement="High-risk actions get explicit guidance",
                affected_rule_ids=[],
            ))

        for result in enforcement:
            try:
                rule = await self.store.get_rule(result.rule_id)
            except RuleNotFoundError:
                continue
            if rule.effectiveness is not None and rule.effectiveness < 0.5:
                suggestions.append(RuleOptimization(
                    optimization_type=OptimizationType.CHANGE_ENFORCEMENT,
                    description=f"Rule '{rule.rule[:50]}' has low effectiveness, consider changing its enforcement",
                    expected_improvement="Rules users actually follow",
                    affected_rule_ids=[rule.id],
                ))

        return suggestions

    async def record_violation(self, violation: RuleViolation) -> Optional[SessionRule]:
        """
        Persist a violation and rescore the rule it refers to.

        Returns:
            The updated rule, or None if the rule is unknown
        """
        if violation.session_id is None and self._session_id is not None:
            violation = violation.model_copy(update={"session_id": self._session_id})

        knowledge = self.collaborators.knowledge
        if knowledge is not None:
            try:
                await knowledge.create_entities([encode(RULE_VIOLATION, violation.id, violation)])
            except Exception as e:
                logger.warning(f"Failed to persist violation {violation.id}: {e}")

        try:
            rule = await self.store.get_rule(violation.rule_id)
        except RuleNotFoundError:
            logger.warning(f"Violation {violation.id} refers to unknown rule {violation.rule_id}")
            return None

        updated = await self.store.update_rule(rule.id, {
            "violation_count": rule.violation_count + 1,
            "effectiveness": next_effectiveness(rule.effectiveness, violation.user_response),
        })
        logger.info(
            f"Recorded {violation.violation_type.value} violation of {rule.id}, "
            f"effectiveness now {updated.effectiveness:.2f}"
        )
        return updated

    async def optimize_rules(self) -> List[RuleOptimization]:
        """Suggestions from the whole rule set: ineffective and near-duplicate rules."""
        rules = await self.store.get_rules()
        optimizations: List[RuleOptimization] = []

        for rule in rules:
            if rule.effectiveness is not None and rule.effectiveness < 0.3 and rule.usage_count > 5:
                optimizations.append(RuleOptimization(
                    optimization_type=OptimizationType.CHANGE_ENFORCEMENT,
                    description=f"Rule '{rule.rule[:50]}' is rarely followed",
                    expected_improvement="Rules users actually follow",
                    affected_rule_ids=[rule.id],
                ))

        for i, first in enumerate(rules):
            for second in rules[i + 1:]:
                if rule_similarity(first, second) > SIMILARITY_MERGE_THRESHOLD:
                    optimizations.append(RuleOptimization(
                        optimization_type=OptimizationType.MERGE_SIMILAR,
                        description=f"Rules '{first.rule[:30]}' and '{second.rule[:30]}' are very similar",
                        expected_improvement="Less duplication in the rule set",
                        affected_rule_ids=[first.id, second.id],
                    ))

        return optimizations

    def suggest_new_rules(self, patterns: List[BehaviorPattern]) -> List[RuleSuggestion]:
        """Turn repeatedly corrected behavior patterns into rule drafts."""
        suggestions: List[RuleSuggestion] = []
        for pattern in patterns:
            if len(pattern.user_corrections) < SUGGESTION_MIN_CORRECTIONS:
                continue
            draft = RuleDraft(
                rule=f"Consider {pattern.description.lower()} (suggested based on user patterns)",
                type=infer_rule_type(pattern.description),
                priority=50,
                scope=RuleScope.USER,
                enforcement=EnforcementLevel.REMINDER,
                triggers=pattern.contexts[:3],
            )
            suggestions.append(RuleSuggestion(
                suggested_rule=draft,
                reason=f"User corrected this behavior {len(pattern.user_corrections)} times",
                based_on_pattern=pattern.pattern_type,
                confidence=min(pattern.frequency / 10, 0.9),
                example_violations=pattern.user_corrections[:3],
            ))
        return suggestions

    async def initialize_default_rules(self) -> List[SessionRule]:
        """Seed the default rules that are not already present (matched by text)."""
        created: List[SessionRule] = []
        for draft in DEFAULT_SESSION_RULES:
            if await self.store.find_rule_by_text(draft.rule) is not None:
                continue
            rule = SessionRule(scope=RuleScope.GLOBAL, **draft.model_dump(exclude={"scope"}))
            created.append(await self.store.create_rule(rule))
        if created:
            logger.info(f"Initialized {len(created)} default session rules")
        return created

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _record_usage(self, rule: SessionRule) -> None:
        try:
            await self.store.update_rule(rule.id, {"usage_count": rule.usage_count + 1})
        except Exception as e:
            logger.warning(f"Could not record usage of rule {rule.id}: {e}")

    async def _log_enforcement(
        self,
        rule: SessionRule,
        action: ProposedAction,
        result: RuleEnforcementResult,
    ) -> None:
        record = EnforcementRecord(
            rule_id=rule.id,
            session_id=self._session_id,
            action=action.type,
            result=result.result,
            context=action.context,
        )

        calls: List[Any] = []
        knowledge = self.collaborators.knowledge
        if knowledge is not None:
            calls.append((
                "knowledge",
                knowledge.create_entities([encode(RULE_ENFORCEMENT, record.id, record)]),
                None,
            ))
        platform_db = self.collaborators.platform_db
        if platform_db is not None:
            calls.append((
                "analytics",
                record_rule_outcome(
                    platform_db,
                    session_id=self._session_id,
                    rule_id=rule.id,
                    action=action.type,
                    result=result.result.value,
                ),
                None,
            ))
        await settle(calls)
