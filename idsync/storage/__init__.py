"""Persistence for identities, connections and import tasks."""

from .base import ConnectionRepository, GroupRepository, IdentityRepository, TaskRepository
from .database import create_database_engine, create_session_factory, init_database
from .repositories import (
    SqlConnectionRepository,
    SqlGroupRepository,
    SqlIdentityRepository,
    SqlTaskRepository,
)

__all__ = [
    "ConnectionRepository",
    "GroupRepository",
    "IdentityRepository",
    "TaskRepository",
    "create_database_engine",
    "create_session_factory",
    "init_database",
    "SqlConnectionRepository",
    "SqlGroupRepository",
    "SqlIdentityRepository",
    "SqlTaskRepository",
]
