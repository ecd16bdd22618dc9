"""Dependency providers reading the collaborators wired by the app factory."""

from fastapi import Request

from ..config import Settings
from ..services.import_service import ImportService
from ..services.preview import PreviewService
from ..storage.base import ConnectionRepository, TaskRepository


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_connection_repo(request: Request) -> ConnectionRepository:
    return request.app.state.connection_repo


def get_task_repo(request: Request) -> TaskRepository:
    return request.app.state.task_repo


def get_import_service(request: Request) -> ImportService:
    return request.app.state.import_service


def get_preview_service(request: Request) -> PreviewService:
    return request.app.state.preview_service
