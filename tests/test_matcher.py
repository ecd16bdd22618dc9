"""Tests for matching mapped records against the identity store."""

from unittest.mock import Mock

import pytest

from idsync.exceptions import MatchConflictError
from idsync.models.record import MatchResult, RecordAction
from idsync.services.matcher import GroupMatcher, PlannedGroupStore, PlannedUserStore, RecordMatcher
from idsync.storage.base import GroupRepository, IdentityRepository


def test_email_match_wins_over_username():
    store = Mock(spec=IdentityRepository)
    store.find_by_email.return_value = {"id": 7, "username": "jdoe", "email": "jane@example.com"}
    store.find_by_username.return_value = None

    result = RecordMatcher().match({"email": "jane@example.com", "username": "other"}, store)

    assert result.matched
    assert result.matched_on == "email"
    assert result.existing.id == 7
    store.find_by_username.assert_called_once_with("other")


def test_email_and_username_of_same_user_match_on_email():
    row = {"id": 7, "username": "jdoe", "email": "jane@example.com"}
    store = Mock(spec=IdentityRepository)
    store.find_by_email.return_value = row
    store.find_by_username.return_value = row

    result = RecordMatcher().match({"email": "jane@example.com", "username": "jdoe"}, store)

    assert result.matched_on == "email"


def test_email_and_username_of_different_users_conflict():
    store = Mock(spec=IdentityRepository)
    store.find_by_email.return_value = {"id": 1, "username": "alice", "email": "alice@example.com"}
    store.find_by_username.return_value = {"id": 2, "username": "bob", "email": "bob@example.com"}

    with pytest.raises(MatchConflictError, match="Username bob already belongs to another user"):
        RecordMatcher().match({"email": "alice@example.com", "username": "bob"}, store)


def test_falls_back_to_username():
    store = Mock(spec=IdentityRepository)
    store.find_by_email.return_value = None
    store.find_by_username.return_value = {"id": 3, "username": "jdoe", "email": "old@example.com"}

    result = RecordMatcher().match({"email": "jane@example.com", "username": "jdoe"}, store)

    assert result.matched_on == "username"
    assert result.existing.email == "old@example.com"


def test_no_match():
    store = Mock(spec=IdentityRepository)
    store.find_by_email.return_value = None
    store.find_by_username.return_value = None

    result = RecordMatcher().match({"email": "jane@example.com", "username": "jdoe"}, store)

    assert not result.matched
    assert result.existing is None


def test_blank_keys_are_not_looked_up():
    store = Mock(spec=IdentityRepository)
    store.find_by_username.return_value = None

    result = RecordMatcher().match({"email": "  ", "username": "jdoe"}, store)

    assert not result.matched
    store.find_by_email.assert_not_called()
    store.find_by_username.assert_called_once_with("jdoe")


def test_matching_is_case_sensitive(user_repo):
    user_repo.create({"username": "jdoe", "email": "jane@example.com"})

    result = RecordMatcher().match({"email": "Jane@Example.com", "username": "JDOE"}, user_repo)

    assert not result.matched


def test_group_matches_external_id_within_connection(group_repo):
    group_repo.create({"name": "Engineering", "external_id": "g-1", "source_connection_id": "conn-a"})
    group_repo.create({"name": "Eng (B)", "external_id": "g-1", "source_connection_id": "conn-b"})

    result = GroupMatcher("conn-b").match({"external_id": "g-1", "name": "Renamed"}, group_repo)

    assert result.matched_on == "external_id"
    assert result.existing.name == "Eng (B)"


def test_group_falls_back_to_name():
    store = Mock(spec=GroupRepository)
    store.find_by_external_id.return_value = None
    store.find_by_name.return_value = {"id": 4, "name": "Engineering"}

    result = GroupMatcher("conn-a").match({"external_id": "g-9", "name": "Engineering"}, store)

    store.find_by_external_id.assert_called_once_with("g-9", "conn-a")
    assert result.matched_on == "name"
    assert result.existing.to_dict() == {"id": 4, "name": "Engineering"}


def test_group_external_id_and_name_of_different_groups_conflict(group_repo):
    group_repo.create({"name": "Engineering", "external_id": "g-1", "source_connection_id": "conn-a"})
    group_repo.create({"name": "Sales", "external_id": "g-2", "source_connection_id": "conn-a"})

    with pytest.raises(MatchConflictError, match="Group name Sales already belongs to another group"):
        GroupMatcher("conn-a").match({"external_id": "g-1", "name": "Sales"}, group_repo)


# Dry-run store

def test_planned_store_sees_planned_creates(user_repo):
    store = PlannedUserStore(user_repo)

    store.plan(RecordAction.CREATE, MatchResult.no_match(), {"email": "a@example.com", "username": "a"})

    result = RecordMatcher().match({"email": "a@example.com", "username": "a"}, store)
    assert result.matched
    assert result.existing.id == "planned-1"
    assert user_repo.list() == []


def test_planned_update_rekeys_stored_row(user_repo):
    user_repo.create({"username": "jdoe", "email": "old@example.com"})
    store = PlannedUserStore(user_repo)
    match = RecordMatcher().match({"email": "old@example.com", "username": "jdoe"}, store)

    store.plan(RecordAction.UPDATE, match, {"email": "new@example.com", "username": "jdoe"})

    assert store.find_by_email("old@example.com") is None
    assert store.find_by_email("new@example.com")["id"] == match.existing.id
    assert store.find_by_username("jdoe")["email"] == "new@example.com"
    assert user_repo.find_by_email("old@example.com") is not None


def test_planned_update_ignores_missing_keys(user_repo):
    user_repo.create({"username": "jdoe", "email": "jane@example.com"})
    store = PlannedUserStore(user_repo)
    match = RecordMatcher().match({"email": "jane@example.com", "username": "jdoe"}, store)

    store.plan(RecordAction.UPDATE, match, {"email": "jane@example.com", "username": None})

    assert store.find_by_username("jdoe")["id"] == match.existing.id


def test_planned_group_store_renames(group_repo):
    group_repo.create({"name": "Eng", "external_id": "g-1", "source_connection_id": "conn-a"})
    store = PlannedGroupStore(group_repo)
    match = GroupMatcher("conn-a").match({"external_id": "g-1", "name": "Engineering"}, store)

    store.plan(RecordAction.UPDATE, match, {"external_id": "g-1", "name": "Engineering"})

    assert store.find_by_name("Eng") is None
    assert store.find_by_name("Engineering")["id"] == match.existing.id
    assert store.find_by_external_id("g-1", "conn-a")["name"] == "Engineering"
