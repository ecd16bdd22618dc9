"""SQLAlchemy implementations of the repository interfaces."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Type

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..exceptions import NotFoundError, PersistenceError
from ..models.connection import (
    SECRET_PLACEHOLDER,
    ConnectionConfig,
    SyncStatus,
)
from ..models.task import ImportTask, TaskStatus, TaskType, check_transition
from .base import ConnectionRepository, GroupRepository, IdentityRepository, TaskRepository
from .database import session_scope
from .tables import Base, ConnectionRow, GroupRow, ImportTaskRow, UserRow

logger = logging.getLogger(__name__)

SECRET_KEYS = ("clientSecret", "userImportApiKey", "groupImportApiKey")

# Keys owned by the import pipeline; connection updates cannot set them.
PIPELINE_KEYS = ("syncStatus", "lastSyncAt", "importStats", "createdAt", "updatedAt")


class _SqlRowRepository:
    """Shared CRUD for the users and groups tables."""

    row_class: Type[Base]
    columns: Tuple[str, ...]
    entity = "record"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _to_dict(self, row: Any) -> Dict[str, Any]:
        data = {"id": row.id}
        for column in self.columns:
            data[column] = getattr(row, column)
        data["created_at"] = row.created_at
        data["updated_at"] = row.updated_at
        return data

    def _payload(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in data.items() if k in self.columns}

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with session_scope(self._session_factory) as session:
                row = self.row_class(**self._payload(data))
                session.add(row)
                session.flush()
                return self._to_dict(row)
        except IntegrityError as e:
            raise PersistenceError(f"Could not create {self.entity}: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error creating {self.entity}: {e}") from e

    def get(self, record_id: int) -> Optional[Dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            row = session.get(self.row_class, record_id)
            return self._to_dict(row) if row else None

    def update(self, record_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with session_scope(self._session_factory) as session:
                row = session.get(self.row_class, record_id)
                if row is None:
                    raise NotFoundError(f"{self.entity.capitalize()} {record_id} not found")
                for key, value in self._payload(data).items():
                    setattr(row, key, value)
                session.flush()
                return self._to_dict(row)
        except IntegrityError as e:
            raise PersistenceError(f"Could not update {self.entity} {record_id}: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error updating {self.entity}: {e}") from e

    def delete(self, record_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            row = session.get(self.row_class, record_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list(self, limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            stmt = select(self.row_class).order_by(self.row_class.id).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_dict(row) for row in session.scalars(stmt)]

    def _find_one(self, *criteria: Any) -> Optional[Dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            row = session.scalars(select(self.row_class).where(*criteria).limit(1)).first()
            return self._to_dict(row) if row else None


class SqlIdentityRepository(_SqlRowRepository, IdentityRepository):
    """Users stored in the ``users`` table."""

    row_class = UserRow
    entity = "user"
    columns = (
        "username",
        "email",
        "first_name",
        "last_name",
        "display_name",
        "title",
        "department",
        "phone_number",
        "mobile_number",
        "is_enabled",
        "external_id",
        "source_connection_id",
        "attributes",
    )

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._find_one(UserRow.email == email)

    def find_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return self._find_one(UserRow.username == username)


class SqlGroupRepository(_SqlRowRepository, GroupRepository):
    """Groups stored in the ``groups`` table."""

    row_class = GroupRow
    entity = "group"
    columns = (
        "name",
        "display_name",
        "description",
        "type",
        "scope",
        "is_enabled",
        "external_id",
        "source_connection_id",
        "attributes",
    )

    def find_by_external_id(
        self,
        external_id: str,
        connection_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        criteria = [GroupRow.external_id == external_id]
        if connection_id is not None:
            criteria.append(GroupRow.source_connection_id == connection_id)
        return self._find_one(*criteria)

    def find_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self._find_one(GroupRow.name == name)


class SqlConnectionRepository(ConnectionRepository):
    """Connections stored in the ``connections`` table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _to_config(self, row: ConnectionRow) -> ConnectionConfig:
        config = ConnectionConfig.from_dict({**row.config, "id": row.id})
        config.status = row.status
        config.sync_status = SyncStatus(row.sync_status) if row.sync_status else None
        config.last_sync_at = row.last_sync_at
        config.import_stats = dict(row.import_stats or {})
        config.created_at = row.created_at
        config.updated_at = row.updated_at
        return config

    @staticmethod
    def _stored_config(config: ConnectionConfig) -> Dict[str, Any]:
        data = config.to_dict(mask_secrets=False)
        for key in PIPELINE_KEYS + ("id", "status", "hasClientSecret"):
            data.pop(key, None)
        return data

    def create(self, config: ConnectionConfig) -> ConnectionConfig:
        if not config.id:
            config.id = f"conn-{uuid.uuid4().hex[:12]}"
        try:
            with session_scope(self._session_factory) as session:
                row = ConnectionRow(
                    id=config.id,
                    name=config.name,
                    type=config.type.value,
                    config=self._stored_config(config),
                    status=config.status,
                )
                session.add(row)
                session.flush()
                logger.info(f"Created connection {config.id} ({config.type.value})")
                return self._to_config(row)
        except IntegrityError as e:
            raise PersistenceError(f"Connection {config.id} already exists") from e

    def get(self, connection_id: str) -> Optional[ConnectionConfig]:
        with session_scope(self._session_factory) as session:
            row = session.get(ConnectionRow, connection_id)
            return self._to_config(row) if row else None

    def update(self, connection_id: str, changes: Dict[str, Any]) -> ConnectionConfig:
        with session_scope(self._session_factory) as session:
            row = session.get(ConnectionRow, connection_id)
            if row is None:
                raise NotFoundError(f"Connection {connection_id} not found")

            existing = self._to_config(row)
            merged = existing.to_dict(mask_secrets=False)
            updates = {k: v for k, v in changes.items() if k not in PIPELINE_KEYS + ("id",)}

            for key in SECRET_KEYS:
                if updates.get(key) in (SECRET_PLACEHOLDER, ""):
                    updates.pop(key)
            if updates.get("attributeMappings") is None:
                updates.pop("attributeMappings", None)

            merged.update(updates)
            config = ConnectionConfig.from_dict(merged)

            row.name = config.name
            row.type = config.type.value
            row.config = self._stored_config(config)
            if "status" in updates:
                row.status = config.status
            session.flush()
            return self._to_config(row)

    def delete(self, connection_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            row = session.get(ConnectionRow, connection_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list(self) -> List[ConnectionConfig]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(select(ConnectionRow).order_by(ConnectionRow.created_at))
            return [self._to_config(row) for row in rows]

    def try_acquire_lease(self, connection_id: str, stale_after: timedelta) -> bool:
        now = datetime.utcnow()
        cutoff = now - stale_after

        with session_scope(self._session_factory) as session:
            if session.get(ConnectionRow, connection_id) is None:
                raise NotFoundError(f"Connection {connection_id} not found")

            acquired = self._claim(session, connection_id, now, or_(
                ConnectionRow.sync_status.is_(None),
                ConnectionRow.sync_status != SyncStatus.RUNNING.value,
            ))
            if acquired:
                return True

            reclaimed = self._claim(session, connection_id, now, or_(
                ConnectionRow.lease_acquired_at.is_(None),
                ConnectionRow.lease_acquired_at < cutoff,
            ))
            if reclaimed:
                logger.warning(f"Reclaimed stale import lease on connection {connection_id}")
            return reclaimed

    @staticmethod
    def _claim(session: Any, connection_id: str, now: datetime, condition: Any) -> bool:
        stmt = (
            update(ConnectionRow)
            .where(ConnectionRow.id == connection_id, condition)
            .values(sync_status=SyncStatus.RUNNING.value, lease_acquired_at=now)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    def save_sync_result(
        self,
        connection_id: str,
        status: SyncStatus,
        stats: Dict[str, Any]
    ) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(ConnectionRow, connection_id)
            if row is None:
                raise NotFoundError(f"Connection {connection_id} not found")
            row.sync_status = status.value
            row.import_stats = stats
            row.last_sync_at = datetime.utcnow()
            row.lease_acquired_at = None

    def get_status(self, connection_id: str) -> Dict[str, Any]:
        with session_scope(self._session_factory) as session:
            row = session.get(ConnectionRow, connection_id)
            if row is None:
                raise NotFoundError(f"Connection {connection_id} not found")
            return {
                "id": row.id,
                "sync_status": row.sync_status,
                "import_stats": row.import_stats or {},
                "last_sync_at": row.last_sync_at.isoformat() if row.last_sync_at else None,
            }


class SqlTaskRepository(TaskRepository):
    """Import tasks stored in the ``import_tasks`` table."""

    FIELDS = (
        "import_config",
        "total_records",
        "progress",
        "error_message",
        "preview_data",
        "import_stats",
    )

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _to_task(row: ImportTaskRow) -> ImportTask:
        return ImportTask(
            id=row.id,
            connection_id=row.connection_id,
            task_type=TaskType(row.task_type),
            status=TaskStatus(row.status),
            import_config=dict(row.import_config or {}),
            total_records=row.total_records,
            progress=row.progress,
            created_at=row.created_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            error_message=row.error_message,
            preview_data=row.preview_data,
            import_stats=row.import_stats,
        )

    def _apply(self, row: ImportTaskRow, fields: Dict[str, Any]) -> None:
        for key, value in fields.items():
            if key not in self.FIELDS:
                raise ValueError(f"Unknown task field: {key}")
            setattr(row, key, value)

    def create(self, task: ImportTask) -> ImportTask:
        with session_scope(self._session_factory) as session:
            row = ImportTaskRow(
                id=task.id,
                connection_id=task.connection_id,
                task_type=task.task_type.value,
                status=task.status.value,
                import_config=task.import_config,
                total_records=task.total_records,
                progress=task.progress,
                created_at=task.created_at,
            )
            session.add(row)
            session.flush()
            return self._to_task(row)

    def get(self, task_id: str) -> Optional[ImportTask]:
        with session_scope(self._session_factory) as session:
            row = session.get(ImportTaskRow, task_id)
            return self._to_task(row) if row else None

    def list_for_connection(self, connection_id: str, limit: int = 50) -> List[ImportTask]:
        with session_scope(self._session_factory) as session:
            stmt = (
                select(ImportTaskRow)
                .where(ImportTaskRow.connection_id == connection_id)
                .order_by(ImportTaskRow.created_at.desc())
                .limit(limit)
            )
            return [self._to_task(row) for row in session.scalars(stmt)]

    def transition(self, task_id: str, status: TaskStatus, **fields: Any) -> ImportTask:
        with session_scope(self._session_factory) as session:
            row = session.get(ImportTaskRow, task_id)
            if row is None:
                raise NotFoundError(f"Import task {task_id} not found")

            check_transition(TaskStatus(row.status), status)
            now = datetime.utcnow()
            row.status = status.value
            if status == TaskStatus.RUNNING:
                row.started_at = now
            if status.is_terminal:
                row.completed_at = now
                if status != TaskStatus.FAILED:
                    row.progress = 100

            self._apply(row, fields)
            session.flush()
            logger.debug(f"Task {task_id} -> {status.value}")
            return self._to_task(row)

    def update(self, task_id: str, **fields: Any) -> ImportTask:
        with session_scope(self._session_factory) as session:
            row = session.get(ImportTaskRow, task_id)
            if row is None:
                raise NotFoundError(f"Import task {task_id} not found")
            self._apply(row, fields)
            session.flush()
            return self._to_task(row)
