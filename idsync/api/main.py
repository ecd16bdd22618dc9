"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, configure_logging, get_settings
from ..exceptions import (
    ConfigurationError,
    ConnectionBusyError,
    NotFoundError,
    TransformSyntaxError,
)
from ..extractors import create_session
from ..orchestrator import ImportExecutor
from ..services.import_service import ImportService
from ..services.preview import PreviewService
from ..storage import (
    SqlConnectionRepository,
    SqlGroupRepository,
    SqlIdentityRepository,
    SqlTaskRepository,
    create_database_engine,
    create_session_factory,
    init_database,
)
from ..task_queue import ImportTaskQueue
from .models import HealthResponse
from .routes import connections, imports, tasks

logger = logging.getLogger(__name__)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use instead of the environment-derived ones

    Returns:
        Configured FastAPI application; the import workers run for the
        lifetime of the app
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = create_database_engine(settings.database_url, echo=settings.database_echo)
    init_database(engine)
    session_factory = create_session_factory(engine)

    connection_repo = SqlConnectionRepository(session_factory)
    user_repo = SqlIdentityRepository(session_factory)
    group_repo = SqlGroupRepository(session_factory)
    task_repo = SqlTaskRepository(session_factory)

    http_session = create_session(settings.http_max_retries, settings.http_backoff_factor)
    executor = ImportExecutor(connection_repo, user_repo, group_repo, settings, session=http_session)
    task_queue = ImportTaskQueue(task_repo, workers=settings.task_workers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task_queue.start()
        yield
        task_queue.stop()
        engine.dispose()

    app = FastAPI(
        title="Identity Sync API",
        description="Import and synchronize identities from external identity sources",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.http_session = http_session
    app.state.connection_repo = connection_repo
    app.state.user_repo = user_repo
    app.state.group_repo = group_repo
    app.state.task_repo = task_repo
    app.state.task_queue = task_queue
    app.state.executor = executor
    app.state.import_service = ImportService(
        connection_repo, task_repo, executor, task_queue, settings
    )
    app.state.preview_service = PreviewService(settings, session=http_session)

    # CORS middleware for the console frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(ConnectionBusyError)
    async def busy_handler(request: Request, exc: ConnectionBusyError):
        return _error(409, exc)

    @app.exception_handler(TransformSyntaxError)
    @app.exception_handler(ConfigurationError)
    async def bad_request_handler(request: Request, exc: Exception):
        return _error(400, exc)

    # Include routers
    app.include_router(connections.router, prefix="/api/connections", tags=["connections"])
    app.include_router(imports.router, prefix="/api/connections", tags=["imports"])
    app.include_router(tasks.router, prefix="/api", tags=["tasks"])

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(version=__version__)

    logger.info(f"API ready (database backend {engine.url.get_backend_name()})")
    return app
