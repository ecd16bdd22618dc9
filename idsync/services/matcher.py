"""Matching of mapped records against the identity store."""

import logging
from typing import Any, Dict, Optional, Tuple

from ..exceptions import MatchConflictError
from ..models.record import ExistingRecord, MappedRecord, MatchResult, RecordAction
from ..storage.base import GroupRepository, IdentityRepository

logger = logging.getLogger(__name__)

StoredRow = Dict[str, Any]


def _key(record: MappedRecord, name: str) -> Optional[str]:
    value = record.get(name)
    if isinstance(value, str) and value.strip():
        return value
    return None


class RecordMatcher:
    """
    Finds the stored user a mapped record refers to.

    Email is tried first, then username; the first hit wins. Lookups are
    exact, so case differences do not match. A record whose email and
    username belong to two different stored users cannot be applied and
    raises MatchConflictError.
    """

    def match(self, record: MappedRecord, store: IdentityRepository) -> MatchResult:
        email = _key(record, "email")
        username = _key(record, "username")
        by_email = store.find_by_email(email) if email is not None else None
        by_username = store.find_by_username(username) if username is not None else None

        if by_email and by_username and by_email["id"] != by_username["id"]:
            raise MatchConflictError(
                f"Username {username} already belongs to another user"
            )

        if by_email:
            return MatchResult(existing=_existing_user(by_email), matched_on="email")
        if by_username:
            return MatchResult(existing=_existing_user(by_username), matched_on="username")
        return MatchResult.no_match()


class GroupMatcher:
    """Finds the stored group a mapped record refers to: external id, then name."""

    def __init__(self, connection_id: Optional[str] = None):
        self.connection_id = connection_id

    def match(self, record: MappedRecord, store: GroupRepository) -> MatchResult:
        external_id = _key(record, "external_id") or _key(record, "id")
        name = _key(record, "name")
        by_external_id = (
            store.find_by_external_id(external_id, self.connection_id)
            if external_id is not None else None
        )
        by_name = store.find_by_name(name) if name is not None else None

        if by_external_id and by_name and by_external_id["id"] != by_name["id"]:
            raise MatchConflictError(
                f"Group name {name} already belongs to another group"
            )

        if by_external_id:
            return MatchResult(existing=_existing_group(by_external_id), matched_on="external_id")
        if by_name:
            return MatchResult(existing=_existing_group(by_name), matched_on="name")
        return MatchResult.no_match()


class PlannedStore:
    """
    Dry-run view of a store: the stored rows overlaid with the writes the
    run would have made so far.

    Rows the run created or updated are kept in memory under their match
    keys; a stored row whose keys were changed by a planned update no
    longer answers to its old values.
    """

    KEYS: Tuple[str, ...] = ()

    def __init__(self, store: Any):
        self.store = store
        self._rows: Dict[Any, StoredRow] = {}
        self._seen: Dict[Any, StoredRow] = {}
        self._created = 0

    def _find(self, key: str, value: str, stored: Optional[StoredRow]) -> Optional[StoredRow]:
        for row in self._rows.values():
            if row.get(key) == value:
                return row
        if stored and stored["id"] not in self._rows:
            self._seen[stored["id"]] = stored
            return stored
        return None

    def plan(self, action: RecordAction, match: MatchResult, payload: Dict[str, Any]) -> None:
        """Record the write a live run would make for one record."""
        if action == RecordAction.CREATE:
            self._created += 1
            row_id: Any = f"planned-{self._created}"
            row: StoredRow = {"id": row_id}
        else:
            row_id = match.existing.id
            row = dict(self._rows.get(row_id) or self._seen.get(row_id) or {"id": row_id})

        for key in self.KEYS:
            if payload.get(key) is not None:
                row[key] = payload[key]
        self._rows[row_id] = row


class PlannedUserStore(PlannedStore):
    KEYS = ("email", "username")

    def find_by_email(self, email: str) -> Optional[StoredRow]:
        return self._find("email", email, self.store.find_by_email(email))

    def find_by_username(self, username: str) -> Optional[StoredRow]:
        return self._find("username", username, self.store.find_by_username(username))


class PlannedGroupStore(PlannedStore):
    KEYS = ("external_id", "name")

    def find_by_external_id(
        self,
        external_id: str,
        connection_id: Optional[str] = None
    ) -> Optional[StoredRow]:
        return self._find(
            "external_id", external_id, self.store.find_by_external_id(external_id, connection_id)
        )

    def find_by_name(self, name: str) -> Optional[StoredRow]:
        return self._find("name", name, self.store.find_by_name(name))


def _existing_user(row: StoredRow) -> ExistingRecord:
    return ExistingRecord(id=row["id"], username=row.get("username"), email=row.get("email"))


def _existing_group(row: StoredRow) -> ExistingRecord:
    return ExistingRecord(id=row["id"], name=row.get("name"))
