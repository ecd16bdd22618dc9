"""Validation of mapped records and attribute mapping configuration."""

import logging
import re
from typing import Any, Iterable, List, Sequence

from ..exceptions import TransformSyntaxError
from ..models.connection import AttributeMapping
from ..models.record import MappedRecord, ValidationResult
from .mapper import get_path
from .transforms import parse_transform

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


class RecordValidator:
    """
    Validator for mapped user records before matching and loading.

    Rules:
    - username and email are mandatory non-blank strings
    - email must look like ``local@domain.tld``
    - username may only contain letters, digits, ``.``, ``_`` and ``-``
    - every destination marked required must resolve to a non-empty value
    """

    def __init__(self, required_fields: Iterable[str] = ()):
        """
        Initialize the validator.

        Args:
            required_fields: Destination paths from mappings marked required
        """
        self.required_fields = [f for f in dict.fromkeys(required_fields) if f]

    def validate(self, record: MappedRecord) -> ValidationResult:
        """
        Validate one mapped record.

        Returns:
            ValidationResult with every failed rule, in rule order
        """
        errors: List[str] = []

        username = record.get("username")
        email = record.get("email")

        has_username = isinstance(username, str) and not _is_blank(username)
        has_email = isinstance(email, str) and not _is_blank(email)

        if not has_username:
            errors.append("Username is required")
        if not has_email:
            errors.append("Email is required")
        elif not EMAIL_PATTERN.match(email):
            errors.append("Invalid email format")
        if has_username and not USERNAME_PATTERN.match(username):
            errors.append("Username contains invalid characters")

        for path in self.required_fields:
            if path in ("username", "email"):
                continue
            if _is_blank(get_path(record, path)):
                errors.append(f"{path} is required")

        return ValidationResult(is_valid=not errors, errors=errors)


class GroupValidator:
    """Validator for mapped group records."""

    def __init__(self, required_fields: Iterable[str] = ()):
        self.required_fields = [f for f in dict.fromkeys(required_fields) if f]

    def validate(self, record: MappedRecord) -> ValidationResult:
        errors: List[str] = []

        name = record.get("name")
        if not isinstance(name, str) or _is_blank(name):
            errors.append("Group name is required")

        for path in self.required_fields:
            if path != "name" and _is_blank(get_path(record, path)):
                errors.append(f"{path} is required")

        return ValidationResult(is_valid=not errors, errors=errors)


def validate_attribute_mappings(mappings: Sequence[AttributeMapping]) -> List[str]:
    """
    Check a connection's attribute mappings before they are saved.

    Transforms are parsed strictly here so a malformed rule is rejected when
    the operator saves it rather than silently ignored during an import.

    Returns:
        Error messages of the form ``"Attribute mapping N: ..."`` (1-based)
    """
    errors = []

    for index, mapping in enumerate(mappings, start=1):
        if not mapping.source:
            errors.append(f"Attribute mapping {index}: source is required")
        if not mapping.destination:
            errors.append(f"Attribute mapping {index}: destination is required")
        if mapping.transform:
            try:
                parse_transform(mapping.transform, strict=True)
            except TransformSyntaxError as e:
                errors.append(f"Attribute mapping {index}: {e}")

    return errors
