"""Fetcher for the cloud identity provider's paginated Users and Groups API."""

import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from ..exceptions import FetchError
from ..models.connection import ConnectionConfig
from ..models.record import ResourceType, SourceRecord
from .auth import AuthTokenProvider
from .base import BaseFetcher, SampleResult, reported_total

logger = logging.getLogger(__name__)

# Scalar attributes copied as-is
USER_SCALAR_FIELDS = (
    "id", "username", "email", "nickname", "title", "type",
    "enabled", "locale", "timezone",
)

USER_RENAMED_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "mobilePhone": "mobile_phone",
    "primaryPhone": "primary_phone",
}

USER_NAME_FIELDS = {
    "given": "first_name",
    "family": "last_name",
    "formatted": "display_name",
}

GROUP_SCALAR_FIELDS = ("id", "name", "description")

GROUP_RENAMED_FIELDS = {
    "displayName": "display_name",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def _put(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


def flatten_user(user: Dict[str, Any]) -> SourceRecord:
    """Flatten a provider user object into a flat source record."""
    record: SourceRecord = {}

    for key in USER_SCALAR_FIELDS:
        _put(record, key, user.get(key))

    name = user.get("name") or {}
    if isinstance(name, dict):
        for key, target in USER_NAME_FIELDS.items():
            _put(record, target, name.get(key))

    for key, target in USER_RENAMED_FIELDS.items():
        _put(record, target, user.get(key))

    population = user.get("population")
    if isinstance(population, dict):
        _put(record, "population_id", population.get("id"))

    return record


def flatten_group(group: Dict[str, Any]) -> SourceRecord:
    """Flatten a provider group object into a flat source record."""
    record: SourceRecord = {}

    for key in GROUP_SCALAR_FIELDS:
        _put(record, key, group.get(key))

    for key, target in GROUP_RENAMED_FIELDS.items():
        _put(record, target, group.get(key))

    population = group.get("population")
    if isinstance(population, dict):
        _put(record, "population_id", population.get("id"))

    return record


class CloudIdPFetcher(BaseFetcher):
    """
    Fetches users or groups from the provider's management API.

    Pages are requested sequentially following ``_links.next.href`` until
    there is no next link or the record cap is reached.
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        resource: ResourceType,
        token_provider: AuthTokenProvider,
        session: Optional[requests.Session] = None,
        page_size: int = 100,
        timeout: float = 10.0,
        max_records: int = 10_000
    ):
        super().__init__(resource, session=session, timeout=timeout, max_records=max_records)
        self.connection = connection
        self.token_provider = token_provider
        self.page_size = page_size
        self._flatten = flatten_user if resource == ResourceType.USERS else flatten_group

    @property
    def base_url(self) -> str:
        if self.connection.api_base_url:
            return self.connection.api_base_url.rstrip("/")
        return f"https://api.pingone.{self.connection.region.tld}/v1"

    @property
    def collection_url(self) -> str:
        return f"{self.base_url}/environments/{self.connection.environment_id}/{self.resource.value}"

    def _headers(self) -> Dict[str, str]:
        token = self.token_provider.get_token()
        return {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }

    def _get_page(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        data = self._get_json(url, headers=self._headers(), params=params)
        if not isinstance(data, dict):
            raise FetchError(f"Unexpected response from {url}: expected a JSON object")
        return data

    def _page_items(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        embedded = data.get("_embedded") or {}
        items = embedded.get(self.resource.value) or []
        if not isinstance(items, list):
            raise FetchError(f"Unexpected _embedded.{self.resource.value} in provider response")
        return items

    @staticmethod
    def _next_url(data: Dict[str, Any]) -> Optional[str]:
        next_link = (data.get("_links") or {}).get("next") or {}
        return next_link.get("href") if isinstance(next_link, dict) else None

    def _iter_records(self) -> Iterator[SourceRecord]:
        url: Optional[str] = self.collection_url
        params: Optional[Dict[str, Any]] = {"limit": self.page_size}
        yielded = 0
        page = 0

        while url:
            data = self._get_page(url, params)
            page += 1
            items = self._page_items(data)
            logger.debug(f"Fetched page {page} of {self.resource.value}: {len(items)} records")

            for item in items:
                if yielded >= self.max_records:
                    self._warn_cap()
                    return
                yield self._flatten(item)
                yielded += 1

            # The next link already carries the paging parameters
            url = self._next_url(data)
            params = None
            if url and yielded >= self.max_records:
                self._warn_cap()
                return

        logger.info(f"Fetched {yielded} {self.resource.value} from connection {self.connection.id}")

    def sample(self, limit: int) -> SampleResult:
        data = self._get_page(self.collection_url, {"limit": max(limit, self.page_size)})
        items = self._page_items(data)
        total = reported_total(data)
        return SampleResult(
            records=[self._flatten(item) for item in items[:limit]],
            total=total if total is not None else len(items),
        )
