"""Job domain model and its state machine.

Learn: A job moves strictly forward:

  pending → running → completed | failed

No step may be skipped and terminal states are final — the only thing
that happens to a completed/failed job afterwards is deletion by the
retention sweep.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),  # terminal
    JobStatus.FAILED: set(),     # terminal
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class InvalidTransitionError(Exception):
    """Raised when a status transition is not allowed."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


def empty_progress() -> dict[str, int]:
    return {"processed": 0, "total": 0, "failed": 0}


@dataclass
class Job:
    id: str
    kind: str
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    progress: dict[str, int] = field(default_factory=empty_progress)
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: JobStatus, now: Optional[datetime] = None) -> None:
        """Move to new_status or raise InvalidTransitionError."""
        allowed = VALID_TRANSITIONS[self.status]
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition job {self.id} from '{self.status.value}' "
                f"to '{new_status.value}'. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        self.status = new_status
        self.updated_at = now or utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Client-facing representation (camelCase, like the rest of the wire)."""
        data: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "progress": dict(self.progress),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data
