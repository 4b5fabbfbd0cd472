from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED, JobStatus.TIMEOUT}
)

# Terminal statuses have no outgoing transitions
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.ERROR, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED, JobStatus.TIMEOUT}
    ),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RenderJob:
    """Immutable snapshot of a render job.

    The store replaces snapshots wholesale, so a reader never observes a
    status from one update paired with progress from another.
    """

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    format: str = "mp4"
    current_stage: str | None = None
    output_url: str | None = None
    output_path: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_view(self) -> dict[str, Any]:
        """Client-facing status: id, status, progress, plus url/error when set."""
        view: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
        }
        if self.output_url is not None:
            view["url"] = self.output_url
        if self.error_message is not None:
            view["error"] = self.error_message
        return view

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} ({self.status.value} {self.progress}%)>"
