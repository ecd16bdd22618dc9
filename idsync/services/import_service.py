"""Entry point for starting imports from the API and the CLI."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings
from ..exceptions import ConnectionBusyError, NotFoundError
from ..models.connection import ConnectionConfig, SyncStatus
from ..models.task import ImportStats, ImportTask, TaskStatus, TaskType
from ..orchestrator import ImportExecutor
from ..storage.base import ConnectionRepository, TaskRepository
from ..task_queue import ImportTaskQueue, summarize_errors

logger = logging.getLogger(__name__)


@dataclass
class ImportRequest:
    """Caller options for one import."""
    dry_run: bool = False
    field_mapping: Dict[str, str] = field(default_factory=dict)
    import_users: Optional[bool] = None  # None: use the connection's setting
    import_groups: Optional[bool] = None


@dataclass
class ImportOutcome:
    """The task created for an import, plus the stats when it ran inline."""
    task: ImportTask
    stats: Optional[ImportStats] = None

    @property
    def dry_run(self) -> bool:
        return self.task.dry_run


def format_validation_issues(issues: Dict[str, int]) -> List[str]:
    """Render aggregated validation messages, e.g. ``"Email is required (2 records)"``."""
    return [
        f"{message} ({count} record{'s' if count != 1 else ''})"
        for message, count in issues.items()
    ]


def dry_run_results(stats: ImportStats) -> Dict[str, Any]:
    """Build the dry-run summary returned to the console."""
    return {
        "totalRecords": stats.total_records,
        "wouldCreate": stats.users_created + stats.groups_created,
        "wouldUpdate": stats.users_updated + stats.groups_updated,
        "wouldSkip": stats.users_skipped + stats.groups_skipped,
        "errors": list(stats.errors),
        "validationIssues": format_validation_issues(stats.validation_issues),
        "sampleProcessedUsers": [s.to_dict() for s in stats.samples],
    }


class ImportService:
    """
    Creates import tasks and runs them.

    Dry runs execute inline and return their results. Live runs take the
    connection lease, then execute on the task queue; the caller polls the
    task for the outcome.
    """

    def __init__(
        self,
        connection_repo: ConnectionRepository,
        task_repo: TaskRepository,
        executor: ImportExecutor,
        task_queue: ImportTaskQueue,
        settings: Settings
    ):
        self.connection_repo = connection_repo
        self.task_repo = task_repo
        self.executor = executor
        self.task_queue = task_queue
        self.settings = settings

    def get_connection(self, connection_id: str) -> ConnectionConfig:
        connection = self.connection_repo.get(connection_id)
        if connection is None:
            raise NotFoundError(f"Connection {connection_id} not found")
        return connection

    @staticmethod
    def resolve_passes(connection: ConnectionConfig, request: ImportRequest) -> Tuple[bool, bool]:
        """Decide which passes run; users alone when nothing is enabled."""
        import_users = (
            request.import_users if request.import_users is not None
            else connection.enable_user_import
        )
        import_groups = (
            request.import_groups if request.import_groups is not None
            else connection.enable_group_import
        )
        if not import_users and not import_groups:
            import_users = True
        return import_users, import_groups

    def start_import(self, connection_id: str, request: ImportRequest) -> ImportOutcome:
        """
        Start an import for a connection.

        Raises:
            NotFoundError: If the connection does not exist
            ConnectionBusyError: If a live import already runs for it
        """
        connection = self.get_connection(connection_id)
        import_users, import_groups = self.resolve_passes(connection, request)

        task = ImportTask(
            connection_id=connection.id,
            task_type=TaskType.for_passes(import_users, import_groups),
            import_config={
                "dryRun": request.dry_run,
                "fieldMapping": dict(request.field_mapping),
                "importUsers": import_users,
                "importGroups": import_groups,
                "mappings": [m.to_dict() for m in connection.attribute_mappings],
            },
        )

        if request.dry_run:
            return self._run_dry(connection, task, request, import_users, import_groups)
        return self._submit_live(connection, task, request, import_users, import_groups)

    def _run_dry(
        self,
        connection: ConnectionConfig,
        task: ImportTask,
        request: ImportRequest,
        import_users: bool,
        import_groups: bool
    ) -> ImportOutcome:
        task = self.task_repo.create(task)
        self.task_repo.transition(task.id, TaskStatus.RUNNING)

        stats = self.executor.run(
            connection,
            field_mapping=request.field_mapping,
            dry_run=True,
            import_users=import_users,
            import_groups=import_groups,
            progress_callback=self._progress_updater(task.id),
        )

        task = self.task_repo.transition(
            task.id,
            stats.status,
            total_records=stats.total_records,
            import_stats=stats.to_dict(),
            preview_data=dry_run_results(stats),
            error_message=summarize_errors(stats.errors),
        )
        return ImportOutcome(task=task, stats=stats)

    def _submit_live(
        self,
        connection: ConnectionConfig,
        task: ImportTask,
        request: ImportRequest,
        import_users: bool,
        import_groups: bool
    ) -> ImportOutcome:
        acquired = self.connection_repo.try_acquire_lease(
            connection.id, timedelta(seconds=self.settings.lease_timeout_seconds)
        )
        if not acquired:
            raise ConnectionBusyError(
                f"An import is already running for connection {connection.id}"
            )

        try:
            task = self.task_repo.create(task)
        except Exception as e:
            self._release(connection.id, f"Failed to create import task: {e}")
            raise

        def job(running_task: ImportTask) -> ImportStats:
            return self.executor.run(
                connection,
                field_mapping=request.field_mapping,
                dry_run=False,
                import_users=import_users,
                import_groups=import_groups,
                progress_callback=self._progress_updater(running_task.id),
                lease_held=True,
            )

        def abort(message: str) -> None:
            # Only a finished run releases the lease itself
            self._release(connection.id, message)

        try:
            self.task_queue.submit(task.id, job, on_abort=abort)
        except Exception as e:
            message = f"Failed to dispatch import: {e}"
            self.task_repo.transition(task.id, TaskStatus.FAILED, error_message=message)
            self._release(connection.id, message)
            raise

        logger.info(f"Submitted live import task {task.id} for connection {connection.id}")
        return ImportOutcome(task=task)

    def _release(self, connection_id: str, message: str) -> None:
        logger.error(message)
        self.connection_repo.save_sync_result(
            connection_id, SyncStatus.FAILED, {"errors": [message], "status": SyncStatus.FAILED.value}
        )

    def _progress_updater(self, task_id: str):
        def update(processed: int, total: int) -> None:
            progress = min(99, processed * 100 // total) if total else 0
            self.task_repo.update(task_id, progress=progress, total_records=total)
        return update
