"""Base loader interface for the identity store."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from ..models.record import MappedRecord, MatchResult, RecordAction

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for identity store loaders.

    A loader turns the matcher's decision into a write: update the matched
    record in place, or insert a new one. In dry-run mode it only reports
    what it would do.
    """

    def __init__(
        self,
        repository: Any,
        connection_id: Optional[str] = None,
        dry_run: bool = False
    ):
        """
        Initialize the loader.

        Args:
            repository: Identity or group repository to write to
            connection_id: Connection the records come from
            dry_run: If True, simulate without making changes
        """
        self.repository = repository
        self.connection_id = connection_id
        self.dry_run = dry_run

    @abstractmethod
    def build_payload(self, record: MappedRecord) -> Dict[str, Any]:
        """
        Build the repository column payload for a mapped record.

        Args:
            record: Validated mapped record

        Returns:
            Column values keyed by column name
        """
        pass

    def load_record(self, record: MappedRecord, match: MatchResult) -> RecordAction:
        """
        Create or update one record.

        Args:
            record: Validated mapped record
            match: Matcher result for the record

        Returns:
            The action taken (or that would be taken for dry runs)

        Raises:
            PersistenceError: If the repository rejects the write
        """
        action = RecordAction.UPDATE if match.matched else RecordAction.CREATE
        if self.dry_run:
            return action

        payload = self.build_payload(record)
        if match.matched:
            # Attributes absent from this import keep their stored values
            changes = {k: v for k, v in payload.items() if v is not None}
            self.repository.update(match.existing.id, changes)
        else:
            self.repository.create(payload)

        return action
