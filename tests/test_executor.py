"""Tests for the import executor."""

from datetime import timedelta

import pytest

from idsync.exceptions import PersistenceError
from idsync.models.connection import ConnectionConfig
from idsync.models.record import ResourceType
from idsync.models.task import TaskStatus
from idsync.orchestrator import ImportExecutor

from helpers import (
    EU_GROUPS_URL,
    EU_TOKEN_URL,
    EU_USERS_URL,
    HR_GROUPS_URL,
    HR_USERS_URL,
    cloud_page,
    cloud_user,
    json_response,
    token_body,
)

JANE = {"username": "jdoe", "email": "jane@example.com", "first_name": "Jane", "last_name": "Doe"}
BOB = {"username": "bsmith", "email": "bob@example.com", "first_name": "Bob", "last_name": "Smith"}
NO_EMAIL = {"username": "nomail", "first_name": "No", "last_name": "Mail"}

LEASE_TIMEOUT = timedelta(hours=1)


@pytest.fixture
def executor(connection_repo, user_repo, group_repo, settings, fake_session):
    return ImportExecutor(connection_repo, user_repo, group_repo, settings, session=fake_session)


def test_dry_run_reports_without_writing(executor, custom_connection, fake_session, user_repo, connection_repo):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB]))

    stats = executor.run(custom_connection, dry_run=True)

    assert stats.status == TaskStatus.COMPLETED
    assert stats.dry_run is True
    assert stats.counts_for(ResourceType.USERS) == {"processed": 2, "created": 2, "updated": 0, "skipped": 0}
    assert stats.total_records == 2
    assert user_repo.list() == []
    assert connection_repo.get_status(custom_connection.id)["sync_status"] is None


def test_live_run_creates_then_updates(executor, custom_connection, fake_session, user_repo, connection_repo):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB]))

    first = executor.run(custom_connection)
    second = executor.run(custom_connection)

    assert (first.users_created, first.users_updated) == (2, 0)
    assert (second.users_created, second.users_updated) == (0, 2)
    assert len(user_repo.list()) == 2

    stored = user_repo.find_by_email("jane@example.com")
    assert stored["first_name"] == "Jane"
    assert stored["display_name"] == "Jane Doe"
    assert stored["source_connection_id"] == custom_connection.id

    status = connection_repo.get_status(custom_connection.id)
    assert status["sync_status"] == "completed"
    assert status["import_stats"]["usersUpdated"] == 2


def test_dry_run_counts_match_live_run(executor, custom_connection, fake_session, user_repo):
    user_repo.create({"username": "jdoe", "email": "jane@example.com"})
    same_email = dict(BOB, username="bob2")
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB, same_email, NO_EMAIL]))

    dry = executor.run(custom_connection, dry_run=True)
    live = executor.run(custom_connection)

    expected = {"processed": 4, "created": 1, "updated": 2, "skipped": 1}
    assert dry.counts_for(ResourceType.USERS) == expected
    assert live.counts_for(ResourceType.USERS) == expected


def test_validation_failures_are_skipped_and_reported(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, NO_EMAIL, dict(NO_EMAIL, username="nomail2")]))

    stats = executor.run(custom_connection, dry_run=True)

    assert stats.status == TaskStatus.COMPLETED_WITH_ERRORS
    assert stats.users_created == 1
    assert stats.users_skipped == 2
    assert stats.errors == [
        "User 2 [username=nomail]: Email is required",
        "User 3 [username=nomail2]: Email is required",
    ]
    assert stats.validation_issues == {"Email is required": 2}


def test_non_object_record_is_skipped(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, "not a record"]))

    stats = executor.run(custom_connection, dry_run=True)

    assert stats.users_skipped == 1
    assert stats.errors == ["User 2: Record is not a JSON object"]


def test_dry_run_counts_match_live_run_when_keys_move_within_batch(executor, custom_connection, fake_session):
    names = {"first_name": "A", "last_name": "B"}
    fake_session.add("GET", HR_USERS_URL, json_response([
        dict(names, username="u1", email="e1@example.com"),
        dict(names, username="u1", email="e2@example.com"),
        dict(names, username="u3", email="e1@example.com"),
    ]))

    dry = executor.run(custom_connection, dry_run=True)
    live = executor.run(custom_connection)

    expected = {"processed": 3, "created": 2, "updated": 1, "skipped": 0}
    assert dry.counts_for(ResourceType.USERS) == expected
    assert live.counts_for(ResourceType.USERS) == expected


def test_email_and_username_of_different_users_is_skipped(executor, custom_connection, fake_session, user_repo):
    user_repo.create({"username": "alice", "email": "alice@example.com"})
    user_repo.create({"username": "bob", "email": "bob@example.com"})
    crossed = {"username": "bob", "email": "alice@example.com", "first_name": "A", "last_name": "B"}
    fake_session.add("GET", HR_USERS_URL, json_response([crossed, JANE]))

    dry = executor.run(custom_connection, dry_run=True)
    live = executor.run(custom_connection)

    expected = {"processed": 2, "created": 1, "updated": 0, "skipped": 1}
    assert dry.counts_for(ResourceType.USERS) == expected
    assert live.counts_for(ResourceType.USERS) == expected
    assert live.errors == [
        "User 1 [username=bob, email=alice@example.com]: Username bob already belongs to another user"
    ]
    assert user_repo.find_by_email("alice@example.com")["username"] == "alice"


def test_dry_run_counts_match_live_run_for_groups(executor, custom_connection, fake_session, group_repo):
    group_repo.create({"name": "Engineering", "external_id": "g1", "source_connection_id": custom_connection.id})
    group_repo.create({"name": "Sales", "external_id": "g2", "source_connection_id": custom_connection.id})
    fake_session.add("GET", HR_USERS_URL, json_response([JANE]))
    fake_session.add("GET", HR_GROUPS_URL, json_response([
        {"id": "g1", "name": "Sales"},
        {"id": "g3", "name": "Support"},
        {"id": "g4", "name": "Support"},
    ]))

    dry = executor.run(custom_connection, dry_run=True, import_groups=True)
    live = executor.run(custom_connection, import_groups=True)

    expected = {"processed": 3, "created": 1, "updated": 1, "skipped": 1}
    assert dry.counts_for(ResourceType.GROUPS) == expected
    assert live.counts_for(ResourceType.GROUPS) == expected


def test_store_error_is_isolated_to_the_record(executor, custom_connection, fake_session, user_repo, monkeypatch):
    user_repo.create({"username": "jdoe", "email": "jane@example.com"})
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB]))

    def failing_update(user_id, data):
        raise PersistenceError(f"Could not update user {user_id}: database is locked")

    monkeypatch.setattr(user_repo, "update", failing_update)

    stats = executor.run(custom_connection)

    assert stats.status == TaskStatus.COMPLETED_WITH_ERRORS
    assert stats.users_skipped == 1
    assert stats.users_created == 1
    assert stats.errors[0].startswith("User 1 [username=jdoe, email=jane@example.com]: Could not update user")
    assert user_repo.find_by_email("bob@example.com") is not None


def test_transforms_are_applied_to_stored_values(executor, custom_connection, fake_session, user_repo):
    fake_session.add("GET", HR_USERS_URL, json_response([dict(JANE, phone="(555) 123-4567", department="R&D")]))

    executor.run(custom_connection)

    stored = user_repo.find_by_username("jdoe")
    assert stored["phone_number"] == "5551234567"
    assert stored["department"] == "R&D"
    assert stored["attributes"]["phoneNumbers"] == [{"value": "5551234567"}]


def test_caller_field_mapping(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([{"mail": "x@example.com", "login": "xy", "fax": "1"}]))

    stats = executor.run(
        custom_connection,
        field_mapping={"mail": "email", "login": "username", "fax": ""},
        dry_run=True,
    )

    assert stats.status == TaskStatus.COMPLETED
    assert stats.samples[0].mapped == {"email": "x@example.com", "username": "xy"}


def test_samples_are_capped(connection_repo, user_repo, group_repo, settings, fake_session, custom_connection):
    settings = settings.model_copy(update={"dry_run_sample_size": 2})
    executor = ImportExecutor(connection_repo, user_repo, group_repo, settings, session=fake_session)
    users = [dict(JANE, username=f"user{i}", email=f"user{i}@example.com") for i in range(4)]
    fake_session.add("GET", HR_USERS_URL, json_response(users))

    stats = executor.run(custom_connection, dry_run=True)

    assert len(stats.samples) == 2
    sample = stats.samples[0].to_dict()
    assert sample["action"] == "create"
    assert sample["original"] == users[0]
    assert sample["mapped"]["name"] == {"given": "Jane", "family": "Doe"}
    assert sample["existingUser"] is None


def test_live_run_collects_no_samples(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE]))

    assert executor.run(custom_connection).samples == []


def test_progress_callback(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB, dict(JANE, username="j2", email="j2@example.com")]))
    calls = []

    executor.run(custom_connection, dry_run=True, progress_callback=lambda done, total: calls.append((done, total)))

    assert calls == [(2, 3), (3, 3)]


def test_failing_progress_callback_does_not_abort(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB]))

    def callback(done, total):
        raise RuntimeError("progress store down")

    stats = executor.run(custom_connection, dry_run=True, progress_callback=callback)

    assert stats.status == TaskStatus.COMPLETED
    assert stats.users_created == 2


# Passes and fetch failures

def test_groups_pass(executor, custom_connection, fake_session, group_repo):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE]))
    fake_session.add("GET", HR_GROUPS_URL, json_response({"groups": [
        {"id": "g1", "name": "Engineering", "description": "Builds things"},
        {"id": "g2"},
    ]}))

    stats = executor.run(custom_connection, import_groups=True)

    assert stats.total_records == 3
    assert stats.counts_for(ResourceType.GROUPS) == {"processed": 2, "created": 1, "updated": 0, "skipped": 1}
    assert stats.errors == ["Group 2 [id=g2]: Group name is required"]
    stored = group_repo.find_by_external_id("g1", custom_connection.id)
    assert stored["name"] == "Engineering"
    assert stored["display_name"] == "Engineering"


def test_groups_fetch_failure_does_not_affect_users(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([JANE, BOB]))
    fake_session.add("GET", HR_GROUPS_URL, json_response({"error": "boom"}, status_code=500))

    stats = executor.run(custom_connection, import_groups=True)

    assert stats.status == TaskStatus.COMPLETED_WITH_ERRORS
    assert stats.users_created == 2
    assert stats.groups_processed == 0
    assert len(stats.errors) == 1
    assert stats.errors[0].startswith("Failed to fetch groups: HTTP 500")


def test_users_fetch_failure_does_not_affect_groups(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response({"error": "unavailable"}, status_code=503))
    fake_session.add("GET", HR_GROUPS_URL, json_response([{"id": "g1", "name": "Engineering"}]))

    stats = executor.run(custom_connection, import_groups=True)

    assert stats.status == TaskStatus.COMPLETED_WITH_ERRORS
    assert stats.groups_created == 1
    assert stats.errors[0].startswith("Failed to fetch users")


def test_all_passes_failing_marks_run_failed(executor, custom_connection, fake_session, connection_repo):
    fake_session.add("GET", HR_USERS_URL, json_response({}, status_code=500))

    stats = executor.run(custom_connection)

    assert stats.status == TaskStatus.FAILED
    assert connection_repo.get_status(custom_connection.id)["sync_status"] == "failed"


def test_missing_import_url_is_a_pass_failure(executor, connection_repo, fake_session):
    connection = connection_repo.create(ConnectionConfig(id="conn-empty"))

    stats = executor.run(connection, dry_run=True)

    assert stats.status == TaskStatus.FAILED
    assert "User import URL is not configured" in stats.errors[0]
    assert fake_session.calls == []


# Cloud IdP

def test_cloud_import_uses_one_token_for_all_pages(executor, cloud_connection, fake_session, user_repo):
    next_url = f"{EU_USERS_URL}?cursor=2"
    fake_session.add("POST", EU_TOKEN_URL, json_response(token_body()))
    fake_session.add("GET", EU_USERS_URL, json_response(cloud_page(
        "users", [cloud_user("u1", "jdoe", "jane@example.com")], next_url=next_url
    )))
    fake_session.add("GET", next_url, json_response(cloud_page(
        "users", [cloud_user("u2", "bsmith", "bob@example.com", "Bob", "Smith")]
    )))
    fake_session.add("GET", EU_GROUPS_URL, json_response(cloud_page("groups", [{"id": "g1", "name": "Admins"}])))

    stats = executor.run(cloud_connection, import_groups=True)

    assert stats.status == TaskStatus.COMPLETED
    assert stats.users_created == 2
    assert stats.groups_created == 1
    assert len(fake_session.calls_to("POST", EU_TOKEN_URL)) == 1
    stored = user_repo.find_by_username("bsmith")
    assert stored["display_name"] == "Bob Smith"
    assert stored["is_enabled"] is True


def test_cloud_authentication_failure_aborts_run(executor, cloud_connection, fake_session, connection_repo):
    fake_session.add("POST", EU_TOKEN_URL, json_response({"error": "invalid_client"}, status_code=401))

    stats = executor.run(cloud_connection, import_groups=True)

    assert stats.status == TaskStatus.FAILED
    assert stats.records_processed == 0
    assert stats.total_records == 0
    assert len(stats.errors) == 1
    assert stats.errors[0].startswith("Authentication failed")
    assert fake_session.calls_to("GET", EU_USERS_URL) == []
    assert connection_repo.get_status(cloud_connection.id)["sync_status"] == "failed"


# Lease

def test_live_run_refused_while_another_holds_the_lease(executor, custom_connection, fake_session, connection_repo):
    connection_repo.try_acquire_lease(custom_connection.id, LEASE_TIMEOUT)

    stats = executor.run(custom_connection)

    assert stats.status == TaskStatus.FAILED
    assert stats.errors == [f"Another import is already running for connection {custom_connection.id}"]
    assert fake_session.calls == []
    assert connection_repo.get_status(custom_connection.id)["sync_status"] == "running"


def test_dry_run_ignores_the_lease(executor, custom_connection, fake_session, connection_repo):
    connection_repo.try_acquire_lease(custom_connection.id, LEASE_TIMEOUT)
    fake_session.add("GET", HR_USERS_URL, json_response([JANE]))

    stats = executor.run(custom_connection, dry_run=True)

    assert stats.status == TaskStatus.COMPLETED


def test_run_with_lease_already_held_releases_it(executor, custom_connection, fake_session, connection_repo):
    connection_repo.try_acquire_lease(custom_connection.id, LEASE_TIMEOUT)
    fake_session.add("GET", HR_USERS_URL, json_response([JANE]))

    stats = executor.run(custom_connection, lease_held=True)

    assert stats.status == TaskStatus.COMPLETED
    assert connection_repo.try_acquire_lease(custom_connection.id, LEASE_TIMEOUT) is True


def test_skip_action_counts_as_processed(executor, custom_connection, fake_session):
    fake_session.add("GET", HR_USERS_URL, json_response([NO_EMAIL]))

    stats = executor.run(custom_connection, dry_run=True)

    assert stats.counts_for(ResourceType.USERS)["processed"] == 1
    assert stats.status == TaskStatus.COMPLETED_WITH_ERRORS
