"""
Continuity Conductor - Exception Hierarchy

All conductor-specific exceptions inherit from ConductorError.

Only a few call sites raise: mutating or fetching an unknown rule, and
reconstructing a handoff nobody can find. Everything else degrades into
results carrying explicit placeholder/missing markers.
"""

from typing import Any, Dict, Optional


class ConductorError(Exception):
    """Base exception for all conductor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Lookup errors
class NotFoundError(ConductorError):
    """Raised when a rule or handoff is absent."""

    pass


class RuleNotFoundError(NotFoundError):
    """Raised when a rule id is unknown to the rule store."""

    def __init__(self, rule_id: str):
        super().__init__(f"Rule {rule_id} not found", {"rule_id": rule_id})
        self.rule_id = rule_id


class HandoffNotFoundError(NotFoundError):
    """Raised when a handoff cannot be located and no collaborator can recover it."""

    def __init__(self, handoff_id: str):
        super().__init__(f"Handoff package {handoff_id} not found", {"handoff_id": handoff_id})
        self.handoff_id = handoff_id


# Collaborator errors
class CollaboratorUnavailableError(ConductorError):
    """Raised when a collaborator is absent or a call to it failed."""

    def __init__(self, collaborator: str, reason: str = "not configured"):
        super().__init__(
            f"Collaborator {collaborator} unavailable: {reason}",
            {"collaborator": collaborator, "reason": reason}
        )
        self.collaborator = collaborator
        self.reason = reason


# Persistence errors
class MalformedEntityError(ConductorError):
    """Raised when a persisted entity fails to parse."""

    def __init__(self, entity_name: str, reason: str):
        super().__init__(
            f"Malformed entity {entity_name}: {reason}",
            {"entity_name": entity_name, "reason": reason}
        )
        self.entity_name = entity_name
        self.reason = reason
