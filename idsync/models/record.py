"""Record models for the import pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# A raw record as returned by the identity source. Shape is not fixed.
SourceRecord = Dict[str, Any]

# A canonical record keyed by mapping destination paths.
MappedRecord = Dict[str, Any]


class ResourceType(str, Enum):
    """Resource kinds imported from an identity source."""
    USERS = "users"
    GROUPS = "groups"

    @property
    def label(self) -> str:
        """Singular label used in per-record error messages."""
        return "User" if self == ResourceType.USERS else "Group"


class RecordAction(str, Enum):
    """What happened (or would happen) to a record."""
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass
class ValidationResult:
    """Outcome of validating one mapped record."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": self.errors}


@dataclass
class ExistingRecord:
    """Reference to a record already in the identity store."""
    id: Any  # str for rows a dry run plans to create
    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None  # Groups only

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id}
        if self.name is not None:
            result["name"] = self.name
        else:
            result["username"] = self.username
            result["email"] = self.email
        return result


@dataclass
class MatchResult:
    """Either a reference to an existing stored record or "no match"."""
    existing: Optional[ExistingRecord] = None
    matched_on: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.existing is not None

    @classmethod
    def no_match(cls) -> "MatchResult":
        return cls()


@dataclass
class ProcessedSample:
    """A representative record kept by dry runs for operator feedback."""
    original: SourceRecord
    mapped: MappedRecord
    action: RecordAction
    existing: Optional[ExistingRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "mapped": self.mapped,
            "action": self.action.value,
            "existingUser": self.existing.to_dict() if self.existing else None,
        }
