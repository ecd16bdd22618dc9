"""Background worker queue for live import tasks."""

import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple

from .models.task import ImportStats, ImportTask, TaskStatus
from .storage.base import TaskRepository

logger = logging.getLogger(__name__)

ImportJob = Callable[[ImportTask], ImportStats]
AbortCallback = Callable[[str], None]

# Errors kept in a task's error message
MAX_ERRORS_IN_MESSAGE = 5

_STOP = None


def summarize_errors(errors: List[str]) -> Optional[str]:
    """Condense run errors into a task error message."""
    if not errors:
        return None
    message = "; ".join(errors[:MAX_ERRORS_IN_MESSAGE])
    if len(errors) > MAX_ERRORS_IN_MESSAGE:
        message += f" (and {len(errors) - MAX_ERRORS_IN_MESSAGE} more)"
    return message


class ImportTaskQueue:
    """
    Runs submitted import jobs on worker threads.

    Each task moves ``pending -> running`` when a worker picks it up and to
    a terminal status derived from the job's ImportStats when it returns.
    A task that cannot be started, or whose job raises, is marked failed
    and its ``on_abort`` callback is called.
    """

    def __init__(self, task_repo: TaskRepository, workers: int = 1):
        self.task_repo = task_repo
        self.workers = workers
        self._queue: "queue.Queue[Optional[Tuple[str, ImportJob, Optional[AbortCallback]]]]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker threads. Calling it again is a no-op."""
        with self._lock:
            if self.running:
                return
            self._threads = [
                threading.Thread(
                    target=self._worker_loop,
                    name=f"import-worker-{i + 1}",
                    daemon=True,
                )
                for i in range(self.workers)
            ]
            for thread in self._threads:
                thread.start()
        logger.info(f"Started {self.workers} import worker(s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Finish queued tasks, then stop the workers."""
        with self._lock:
            threads, self._threads = self._threads, []
            for _ in threads:
                self._queue.put(_STOP)
        for thread in threads:
            thread.join(timeout)
        logger.info("Import workers stopped")

    def submit(self, task_id: str, job: ImportJob, on_abort: Optional[AbortCallback] = None) -> str:
        """
        Queue a job for a pending task and return immediately.

        Args:
            task_id: Pending task to run
            job: Callable executing the import for the task
            on_abort: Called with the failure message when the job cannot
                start or raises, so the caller can release what it holds

        Raises:
            RuntimeError: If the workers are not running
        """
        if not self.running:
            raise RuntimeError("Import task queue is not running")
        self._queue.put((task_id, job, on_abort))
        logger.info(f"Queued import task {task_id}")
        return task_id

    def join(self) -> None:
        """Block until every submitted task has been processed."""
        self._queue.join()

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._run_task(*item)
            except Exception as e:
                logger.error(f"Import worker error: {e}")
            finally:
                self._queue.task_done()

    def _run_task(self, task_id: str, job: ImportJob, on_abort: Optional[AbortCallback]) -> None:
        try:
            task = self.task_repo.transition(task_id, TaskStatus.RUNNING)
        except Exception as e:
            self._abort(task_id, f"Could not start import task: {e}", on_abort)
            return

        logger.info(f"Running import task {task_id} for connection {task.connection_id}")

        try:
            stats = job(task)
        except Exception as e:
            self._abort(task_id, str(e), on_abort)
            return

        status = stats.status or stats.finish()
        self.task_repo.transition(
            task_id,
            status,
            total_records=stats.total_records,
            import_stats=stats.to_dict(),
            error_message=summarize_errors(stats.errors),
        )
        logger.info(f"Import task {task_id} finished with status {status.value}")

    def _abort(self, task_id: str, message: str, on_abort: Optional[AbortCallback]) -> None:
        logger.error(f"Import task {task_id} failed: {message}")
        try:
            self.task_repo.transition(task_id, TaskStatus.FAILED, error_message=message)
        except Exception as e:
            logger.error(f"Could not mark import task {task_id} failed: {e}")
        if on_abort:
            on_abort(message)
