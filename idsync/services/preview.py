"""Preview of an identity source before importing."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config import Settings
from ..extractors import AuthTokenProvider, create_fetcher, create_session
from ..models.connection import ConnectionConfig
from ..models.record import ResourceType, SourceRecord
from .mapper import detected_fields, suggest_destination

logger = logging.getLogger(__name__)


@dataclass
class PreviewAnalysis:
    """Summary of a source sample shown to the operator before an import."""
    total_records: int
    preview_records: int
    detected_fields: List[str] = field(default_factory=list)
    sample_record: Optional[SourceRecord] = None
    suggested_mapping: Dict[str, str] = field(default_factory=dict)
    source: str = ""
    records: List[SourceRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "previewRecords": self.preview_records,
            "detectedFields": self.detected_fields,
            "sampleRecord": self.sample_record,
            "suggestedMapping": self.suggested_mapping,
            "source": self.source,
        }


class PreviewService:
    """
    Fetches a bounded sample from a connection and analyzes its fields.

    The analysis is advisory: it never changes the connection's mappings.
    """

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        token_provider_factory: Optional[Callable[[ConnectionConfig], AuthTokenProvider]] = None
    ):
        self.settings = settings
        self._session = session or create_session(
            settings.http_max_retries, settings.http_backoff_factor
        )
        self._token_provider_factory = token_provider_factory

    def preview(
        self,
        connection: ConnectionConfig,
        resource: ResourceType = ResourceType.USERS
    ) -> PreviewAnalysis:
        """
        Sample a connection's records.

        Raises:
            AuthenticationError: If the cloud IdP rejects the credentials
            FetchError: If the source cannot be read
            ConfigurationError: If the connection has no import URL
        """
        token_provider = None
        if connection.is_cloud_idp and self._token_provider_factory:
            token_provider = self._token_provider_factory(connection)

        fetcher = create_fetcher(
            connection,
            resource,
            self.settings,
            session=self._session,
            token_provider=token_provider,
            page_size=self.settings.preview_page_size,
        )
        sample = fetcher.sample(self.settings.preview_sample_size)

        records = [r for r in sample.records if isinstance(r, dict)]
        fields = detected_fields(records)
        analysis = PreviewAnalysis(
            total_records=sample.total,
            preview_records=len(records),
            detected_fields=fields,
            sample_record=records[0] if records else None,
            suggested_mapping={f: suggest_destination(f) for f in fields},
            source="PingOne API" if connection.is_cloud_idp else connection.import_url_for(resource.value),
            records=records,
        )

        logger.info(
            f"Previewed connection {connection.id}: {analysis.preview_records} of "
            f"{analysis.total_records} {resource.value}, {len(fields)} fields"
        )
        return analysis
