"""Import task and statistics models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import TaskStateError
from .record import ProcessedSample, RecordAction, ResourceType


class TaskStatus(str, Enum):
    """Lifecycle states of an import task."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.COMPLETED_WITH_ERRORS,
    TaskStatus.FAILED,
})

ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: set(TERMINAL_STATUSES),
    TaskStatus.COMPLETED: set(),
    TaskStatus.COMPLETED_WITH_ERRORS: set(),
    TaskStatus.FAILED: set(),
}


def check_transition(current: TaskStatus, new: TaskStatus) -> None:
    """
    Ensure ``current -> new`` is a legal task transition.

    Raises:
        TaskStateError: If the transition is not allowed
    """
    if new not in ALLOWED_TRANSITIONS[current]:
        raise TaskStateError(f"Illegal task transition: {current.value} -> {new.value}")


class TaskType(str, Enum):
    """Which resource passes an import task covers."""
    USERS = "users"
    GROUPS = "groups"
    ALL = "all"

    @classmethod
    def for_passes(cls, import_users: bool, import_groups: bool) -> "TaskType":
        if import_users and import_groups:
            return cls.ALL
        return cls.GROUPS if import_groups else cls.USERS


@dataclass
class ImportStats:
    """
    Statistics of one executor run.

    Counts reflect what would happen for dry runs and what did happen for
    live runs.
    """
    connection_id: str
    dry_run: bool = False
    users_processed: int = 0
    users_created: int = 0
    users_updated: int = 0
    users_skipped: int = 0
    groups_processed: int = 0
    groups_created: int = 0
    groups_updated: int = 0
    groups_skipped: int = 0
    total_records: int = 0
    errors: List[str] = field(default_factory=list)
    validation_issues: Dict[str, int] = field(default_factory=dict)
    samples: List[ProcessedSample] = field(default_factory=list)
    status: Optional[TaskStatus] = None
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[int]:
        """Get duration in milliseconds."""
        if self.end_time:
            return int((self.end_time - self.start_time).total_seconds() * 1000)
        return None

    @property
    def records_processed(self) -> int:
        return self.users_processed + self.groups_processed

    def record(self, resource: ResourceType, action: RecordAction) -> None:
        """Count one processed record under ``resource`` and ``action``."""
        prefix = resource.value
        setattr(self, f"{prefix}_processed", getattr(self, f"{prefix}_processed") + 1)
        suffix = {
            RecordAction.CREATE: "created",
            RecordAction.UPDATE: "updated",
            RecordAction.SKIP: "skipped",
        }[action]
        name = f"{prefix}_{suffix}"
        setattr(self, name, getattr(self, name) + 1)

    def counts_for(self, resource: ResourceType) -> Dict[str, int]:
        prefix = resource.value
        return {
            "processed": getattr(self, f"{prefix}_processed"),
            "created": getattr(self, f"{prefix}_created"),
            "updated": getattr(self, f"{prefix}_updated"),
            "skipped": getattr(self, f"{prefix}_skipped"),
        }

    def add_validation_issue(self, message: str) -> None:
        self.validation_issues[message] = self.validation_issues.get(message, 0) + 1

    def finish(self) -> TaskStatus:
        """Stamp the end time and derive the overall status."""
        self.end_time = datetime.utcnow()
        if self.errors and self.records_processed == 0:
            self.status = TaskStatus.FAILED
        elif self.errors:
            self.status = TaskStatus.COMPLETED_WITH_ERRORS
        else:
            self.status = TaskStatus.COMPLETED
        return self.status

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase form stored on connections and tasks."""
        return {
            "connectionId": self.connection_id,
            "dryRun": self.dry_run,
            "usersProcessed": self.users_processed,
            "usersCreated": self.users_created,
            "usersUpdated": self.users_updated,
            "usersSkipped": self.users_skipped,
            "groupsProcessed": self.groups_processed,
            "groupsCreated": self.groups_created,
            "groupsUpdated": self.groups_updated,
            "groupsSkipped": self.groups_skipped,
            "totalRecords": self.total_records,
            "errors": list(self.errors),
            "status": self.status.value if self.status else None,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration_ms,
        }


@dataclass
class ImportTask:
    """A persisted, pollable record of one import invocation."""
    connection_id: str
    task_type: TaskType = TaskType.USERS
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.PENDING
    import_config: Dict[str, Any] = field(default_factory=dict)
    total_records: int = 0
    progress: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    preview_data: Optional[Dict[str, Any]] = None
    import_stats: Optional[Dict[str, Any]] = None

    @property
    def dry_run(self) -> bool:
        return bool(self.import_config.get("dryRun", False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "connectionId": self.connection_id,
            "taskType": self.task_type.value,
            "status": self.status.value,
            "importConfig": self.import_config,
            "totalRecords": self.total_records,
            "progress": self.progress,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "errorMessage": self.error_message,
            "previewData": self.preview_data,
            "importStats": self.import_stats,
        }
