"""
Entity encoding for the knowledge store.

Every persisted object becomes one entity named ``<Kind>_<id>`` whose
observation list is::

    ["format: json/v1", "<json document>"]

The JSON document is produced by pydantic, so a store -> reload cycle gives
back an equal object. Entities written by older releases used a fixed
positional list of plain-text fields; those are still readable for rules
(missing fields fall back to defaults) so existing stores keep loading.
"""

import logging
import re
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import MalformedEntityError
from .models import (
    EnforcementLevel,
    KnowledgeEntity,
    RuleScope,
    RuleType,
    SessionRule,
)

logger = logging.getLogger(__name__)

FORMAT_MARKER = "format: json/v1"

# Entity kinds (name prefix) and their entity types
SESSION_RULE = ("SessionRule", "session_rule")
RULE_ENFORCEMENT = ("RuleEnforcement", "rule_enforcement")
RULE_VIOLATION = ("RuleViolation", "rule_violation")
RULE_CATEGORY = ("RuleCategory", "rule_category")
HANDOFF_PACKAGE = ("HandoffPackage", "handoff_package")
WORKING_STATE = ("WorkingState", "working_state")
COORDINATED_CHECKPOINT = ("CoordinatedCheckpoint", "coordinated_checkpoint")
PROJECT_INTELLIGENCE = ("ProjectIntelligence", "project_intelligence")
VCS_SNAPSHOT = ("VcsSnapshot", "vcs_snapshot")

M = TypeVar("M", bound=BaseModel)

_LEGACY_RULE_FIELDS = 9
_USAGE_RE = re.compile(r"usage:(\d+),violations:(\d+)")
_EFFECTIVENESS_RE = re.compile(r"effectiveness:(.+)")


def entity_name(kind: tuple, object_id: str) -> str:
    """Deterministic entity name, e.g. ``SessionRule_rule_ab12``."""
    return f"{kind[0]}_{object_id}"


def object_id(kind: tuple, name: str) -> str:
    """Inverse of entity_name."""
    prefix = f"{kind[0]}_"
    if not name.startswith(prefix):
        raise MalformedEntityError(name, f"expected prefix {prefix}")
    return name[len(prefix):]


def encode(kind: tuple, object_id_: str, model: BaseModel) -> KnowledgeEntity:
    """Encode a model as a single structured entity."""
    return KnowledgeEntity(
        name=entity_name(kind, object_id_),
        entity_type=kind[1],
        observations=[FORMAT_MARKER, model.model_dump_json(by_alias=True)],
    )


def decode(entity: KnowledgeEntity, model_cls: Type[M]) -> M:
    """
    Decode a structured entity.

    Raises:
        MalformedEntityError: if the entity is not in the structured format
            or its document fails validation
    """
    obs = entity.observations
    if len(obs) < 2 or obs[0] != FORMAT_MARKER:
        raise MalformedEntityError(entity.name, "missing structured payload")
    try:
        return model_cls.model_validate_json(obs[1])
    except ValidationError as e:
        raise MalformedEntityError(entity.name, f"invalid document: {e.error_count()} error(s)")


def is_kind(entity: KnowledgeEntity, kind: tuple) -> bool:
    return entity.entity_type == kind[1] and entity.name.startswith(f"{kind[0]}_")


def pick(entities: List[KnowledgeEntity], kind: tuple, object_id_: str) -> Optional[KnowledgeEntity]:
    """Return the entity with the exact deterministic name, if the search found it."""
    wanted = entity_name(kind, object_id_)
    for entity in entities:
        if entity.name == wanted:
            return entity
    return None


# ============================================================================
# Rules
# ============================================================================

def encode_rule(rule: SessionRule) -> KnowledgeEntity:
    return encode(SESSION_RULE, rule.id, rule)


def decode_rule(entity: KnowledgeEntity) -> SessionRule:
    """Decode a rule entity, accepting the legacy positional layout."""
    obs = entity.observations
    if obs and obs[0] == FORMAT_MARKER:
        rule = decode(entity, SessionRule)
        expected = object_id(SESSION_RULE, entity.name)
        if rule.id != expected:
            raise MalformedEntityError(entity.name, f"id mismatch ({rule.id})")
        return rule
    return _decode_legacy_rule(entity)


def _decode_legacy_rule(entity: KnowledgeEntity) -> SessionRule:
    """
    Positional layout: text, type, priority, enforcement, active, scope,
    comma-separated triggers, "usage:N,violations:M", "effectiveness:X".
    Conditions and timestamps were never stored in this layout.
    """
    obs = entity.observations
    if len(obs) < _LEGACY_RULE_FIELDS:
        raise MalformedEntityError(entity.name, "invalid rule entity format")

    usage_match = _USAGE_RE.match(obs[7])
    eff_match = _EFFECTIVENESS_RE.match(obs[8])
    effectiveness = None
    if eff_match and eff_match.group(1) != "unknown":
        effectiveness = float(eff_match.group(1))

    try:
        return SessionRule(
            id=object_id(SESSION_RULE, entity.name),
            rule=obs[0],
            type=RuleType(obs[1]),
            priority=int(obs[2]),
            enforcement=EnforcementLevel(obs[3]),
            active=obs[4] == "true",
            scope=RuleScope(obs[5]),
            triggers=[t for t in obs[6].split(",") if t] if obs[6] else [],
            usage_count=int(usage_match.group(1)) if usage_match else 0,
            violation_count=int(usage_match.group(2)) if usage_match else 0,
            effectiveness=effectiveness,
        )
    except (ValueError, ValidationError) as e:
        raise MalformedEntityError(entity.name, str(e))
