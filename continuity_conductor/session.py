"""
Session context for the conductor.

One ``SessionContext`` is owned by the orchestrator and handed to every
sub-component that needs the current session record, event history or
last-sync time. Nothing here is global.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .models import HandoffPackage, OrchestrationEvent, utcnow

logger = logging.getLogger(__name__)

# Keep the event history bounded
MAX_EVENT_HISTORY = 500


def generate_session_id(project_name: str) -> str:
    """
    Generate a session ID from the project name plus a random suffix.

    Sessions for the same project share the hash prefix so they group
    together in the analytics store.
    """
    project_hash = hashlib.md5(project_name.encode()).hexdigest()[:8]
    return f"session_{project_hash}_{uuid.uuid4().hex[:12]}"


@dataclass
class SessionContext:
    """Mutable state of the current working session."""

    session_id: str
    project_name: str = "default"
    user_id: str = "default"
    start_time: datetime = field(default_factory=utcnow)
    token_count: int = 0
    active_files: List[str] = field(default_factory=list)
    current_task: Optional[str] = None
    event_history: List[OrchestrationEvent] = field(default_factory=list)
    last_sync: Optional[datetime] = None
    rules_enforced: int = 0
    restored_from: Optional[str] = None

    @classmethod
    def start(cls, project_name: str = "default", user_id: str = "default") -> "SessionContext":
        return cls(
            session_id=generate_session_id(project_name),
            project_name=project_name,
            user_id=user_id,
        )

    def record_event(self, event: OrchestrationEvent) -> None:
        self.event_history.append(event)
        if len(self.event_history) > MAX_EVENT_HISTORY:
            del self.event_history[:-MAX_EVENT_HISTORY]

    def record_activity(
        self,
        tokens_used: int = 0,
        files: Optional[List[str]] = None,
        task: Optional[str] = None,
    ) -> None:
        """Accumulate token usage and remember touched files / current task."""
        self.token_count += max(tokens_used, 0)
        for path in files or []:
            if path not in self.active_files:
                self.active_files.append(path)
        if task is not None:
            self.current_task = task

    def mark_synced(self, when: Optional[datetime] = None) -> None:
        self.last_sync = when or utcnow()

    def apply_reconstruction(self, package: HandoffPackage) -> None:
        """Carry task, files and token count over from a recovered handoff."""
        if self.current_task is None:
            self.current_task = package.current_task
        for path in package.active_files:
            if path not in self.active_files:
                self.active_files.append(path)
        self.token_count = max(self.token_count, package.token_count)
        self.restored_from = package.handoff_id
        logger.info(
            f"Session {self.session_id} restored from handoff {package.handoff_id} "
            f"({len(package.active_files)} active files)"
        )
