"""Loaders writing users and groups into the identity store."""

import logging
from typing import Any, Dict, Optional

from ..models.record import MappedRecord
from ..services.mapper import get_path
from .base import BaseLoader

logger = logging.getLogger(__name__)

ENTERPRISE_USER_URN = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"


def _first(record: MappedRecord, *paths: str) -> Optional[str]:
    """Get the first non-empty value among ``paths``, as a string."""
    for path in paths:
        value = get_path(record, path)
        if value is None or value == "":
            continue
        if isinstance(value, (dict, list)):
            continue
        return value if isinstance(value, str) else str(value)
    return None


class UserLoader(BaseLoader):
    """Loads mapped user records into the users table."""

    def build_payload(self, record: MappedRecord) -> Dict[str, Any]:
        first_name = _first(record, "first_name", "name.given")
        last_name = _first(record, "last_name", "name.family")
        display_name = _first(record, "display_name", "displayName", "name.formatted")
        if display_name is None and (first_name or last_name):
            display_name = " ".join(p for p in (first_name, last_name) if p)

        payload = {
            "username": record.get("username"),
            "email": record.get("email"),
            "first_name": first_name,
            "last_name": last_name,
            "display_name": display_name,
            "title": _first(record, "title"),
            "department": _first(record, "department", f"{ENTERPRISE_USER_URN}:department"),
            "phone_number": _first(record, "phone_number", "phoneNumbers[0].value", "primary_phone"),
            "mobile_number": _first(record, "mobile_number", "mobile_phone"),
            "external_id": _first(record, "external_id", "id"),
            "source_connection_id": self.connection_id,
            "attributes": record,
        }

        enabled = record.get("enabled")
        if isinstance(enabled, bool):
            payload["is_enabled"] = enabled
        return payload


class GroupLoader(BaseLoader):
    """Loads mapped group records into the groups table."""

    def build_payload(self, record: MappedRecord) -> Dict[str, Any]:
        name = record.get("name")
        return {
            "name": name,
            "display_name": _first(record, "display_name") or name,
            "description": _first(record, "description"),
            "external_id": _first(record, "external_id", "id"),
            "source_connection_id": self.connection_id,
            "attributes": record,
        }
