"""Base fetcher interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import FetchError
from ..models.record import ResourceType, SourceRecord

logger = logging.getLogger(__name__)

# Keys some APIs use to report the full result size next to a page
TOTAL_COUNT_KEYS = ("count", "total", "totalCount", "totalResults")


def create_session(max_retries: int = 3, backoff_factor: float = 1.0) -> requests.Session:
    """Create a requests session with retry logic for idempotent requests."""
    session = requests.Session()

    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


def reported_total(data: Any) -> Optional[int]:
    """Get the server-reported record count from a response body, if any."""
    if not isinstance(data, dict):
        return None
    for key in TOTAL_COUNT_KEYS:
        value = data.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


@dataclass
class SampleResult:
    """A bounded sample of source records plus the total the source reports."""
    records: List[SourceRecord] = field(default_factory=list)
    total: int = 0


class BaseFetcher(ABC):
    """
    Base class for identity source fetchers.

    A fetcher yields raw records for one resource (users or groups). Each
    fetcher instance serves a single ``fetch()``: the sequence is finite
    and cannot be restarted.
    """

    def __init__(
        self,
        resource: ResourceType,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_records: int = 10_000
    ):
        """
        Initialize the fetcher.

        Args:
            resource: Resource to fetch
            session: HTTP session (a retrying session is created if omitted)
            timeout: Per-request timeout in seconds
            max_records: Safety cap on the number of records yielded
        """
        self.resource = resource
        self.timeout = timeout
        self.max_records = max_records
        self._session = session or create_session()
        self._consumed = False

    def fetch(self) -> Iterator[SourceRecord]:
        """
        Fetch every record of the resource.

        Raises:
            FetchError: On network errors, non-2xx responses or malformed
                bodies (raised while iterating)
        """
        if self._consumed:
            raise FetchError(f"{self.resource.value} fetcher has already been consumed")
        self._consumed = True
        return self._iter_records()

    @abstractmethod
    def _iter_records(self) -> Iterator[SourceRecord]:
        pass

    @abstractmethod
    def sample(self, limit: int) -> SampleResult:
        """
        Fetch a bounded sample for preview.

        Args:
            limit: Maximum number of records to return

        Returns:
            SampleResult with at most ``limit`` records
        """
        pass

    def _get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """GET ``url`` and decode the JSON body, raising FetchError on failure."""
        try:
            response = self._session.get(
                url, headers=headers, params=params, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise FetchError(
                f"HTTP {response.status_code} from {url}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Response from {url} is not valid JSON") from e

    def _warn_cap(self) -> None:
        logger.warning(
            f"Reached the {self.max_records} record limit for {self.resource.value}; "
            f"remaining records were not fetched"
        )
