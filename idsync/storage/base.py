"""Repository interfaces the import pipeline depends on."""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..models.connection import ConnectionConfig, SyncStatus
from ..models.task import ImportTask, TaskStatus


class IdentityRepository(ABC):
    """Persisted users. Rows are returned as plain dictionaries."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a user and return the stored row (with its id)."""
        pass

    @abstractmethod
    def get(self, user_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update a user in place. Raises NotFoundError if missing."""
        pass

    @abstractmethod
    def delete(self, user_id: int) -> bool:
        pass

    @abstractmethod
    def list(self, limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        pass


class GroupRepository(ABC):
    """Persisted groups. Rows are returned as plain dictionaries."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def get(self, group_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, group_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete(self, group_id: int) -> bool:
        pass

    @abstractmethod
    def list(self, limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_by_external_id(
        self,
        external_id: str,
        connection_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        pass


class ConnectionRepository(ABC):
    """
    Connection configuration store.

    The import pipeline only reads configuration and writes back the sync
    result through ``try_acquire_lease`` and ``save_sync_result``.
    """

    @abstractmethod
    def create(self, config: ConnectionConfig) -> ConnectionConfig:
        pass

    @abstractmethod
    def get(self, connection_id: str) -> Optional[ConnectionConfig]:
        pass

    @abstractmethod
    def update(self, connection_id: str, changes: Dict[str, Any]) -> ConnectionConfig:
        """Apply camelCase ``changes``; masked or empty secrets keep the stored value."""
        pass

    @abstractmethod
    def delete(self, connection_id: str) -> bool:
        pass

    @abstractmethod
    def list(self) -> List[ConnectionConfig]:
        pass

    @abstractmethod
    def try_acquire_lease(self, connection_id: str, stale_after: timedelta) -> bool:
        """
        Atomically mark the connection as running.

        Returns:
            False if another live import already holds a fresh lease
        """
        pass

    @abstractmethod
    def save_sync_result(
        self,
        connection_id: str,
        status: SyncStatus,
        stats: Dict[str, Any]
    ) -> None:
        """Persist the final status and stats, releasing the lease."""
        pass

    @abstractmethod
    def get_status(self, connection_id: str) -> Dict[str, Any]:
        pass


class TaskRepository(ABC):
    """Import task store."""

    @abstractmethod
    def create(self, task: ImportTask) -> ImportTask:
        pass

    @abstractmethod
    def get(self, task_id: str) -> Optional[ImportTask]:
        pass

    @abstractmethod
    def list_for_connection(self, connection_id: str, limit: int = 50) -> List[ImportTask]:
        pass

    @abstractmethod
    def transition(self, task_id: str, status: TaskStatus, **fields: Any) -> ImportTask:
        """
        Move a task to ``status`` and apply ``fields``.

        Raises:
            TaskStateError: If the transition is not allowed
            NotFoundError: If the task does not exist
        """
        pass

    @abstractmethod
    def update(self, task_id: str, **fields: Any) -> ImportTask:
        """Update non-status fields such as progress or total_records."""
        pass
