"""Pytest fixtures shared across the test suite."""

import pytest

from idsync.config import Settings
from idsync.models.connection import ConnectionConfig, Region, SourceType
from idsync.storage import (
    SqlConnectionRepository,
    SqlGroupRepository,
    SqlIdentityRepository,
    SqlTaskRepository,
    create_database_engine,
    create_session_factory,
    init_database,
)

from helpers import CLIENT_ID, ENV_ID, HR_GROUPS_URL, HR_USERS_URL, FakeSession


@pytest.fixture
def settings(tmp_path):
    """Settings backed by a throwaway SQLite file, without retries."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'idsync.db'}",
        http_max_retries=0,
        http_backoff_factor=0,
        dry_run_sample_size=5,
        progress_update_interval=2,
    )


@pytest.fixture
def engine(settings):
    engine = create_database_engine(settings.database_url)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def connection_repo(session_factory):
    return SqlConnectionRepository(session_factory)


@pytest.fixture
def user_repo(session_factory):
    return SqlIdentityRepository(session_factory)


@pytest.fixture
def group_repo(session_factory):
    return SqlGroupRepository(session_factory)


@pytest.fixture
def task_repo(session_factory):
    return SqlTaskRepository(session_factory)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def custom_connection(connection_repo):
    """A stored custom URL connection with the default attribute mappings."""
    return connection_repo.create(ConnectionConfig(
        id="conn-hr",
        name="HR feed",
        type=SourceType.CUSTOM_URL,
        enable_user_import=True,
        user_import_url=HR_USERS_URL,
        group_import_url=HR_GROUPS_URL,
        user_import_api_key="hr-api-key",
    ))


@pytest.fixture
def cloud_connection(connection_repo):
    """A stored cloud IdP connection in the EU region."""
    return connection_repo.create(ConnectionConfig(
        id="conn-cloud",
        name="Corporate IdP",
        type=SourceType.CLOUD_IDP,
        environment_id=ENV_ID,
        client_id=CLIENT_ID,
        client_secret="s3cret",
        region=Region.EU,
        enable_user_import=True,
    ))
