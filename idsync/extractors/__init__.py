"""Fetchers that pull raw identity records from external sources."""

from typing import Optional

import requests

from ..config import Settings
from ..exceptions import ConfigurationError
from ..models.connection import ConnectionConfig
from ..models.record import ResourceType
from .auth import AccessToken, AuthTokenProvider
from .base import BaseFetcher, SampleResult, create_session
from .cloud_idp import CloudIdPFetcher, flatten_group, flatten_user
from .custom_url import CustomURLFetcher


def create_fetcher(
    connection: ConnectionConfig,
    resource: ResourceType,
    settings: Settings,
    session: Optional[requests.Session] = None,
    token_provider: Optional[AuthTokenProvider] = None,
    page_size: Optional[int] = None
) -> BaseFetcher:
    """
    Create the fetcher for a connection and resource.

    Cloud IdP connections use the provider API; every other connection type
    imports through the resource's configured import URL.

    Raises:
        ConfigurationError: If the connection has no import URL for the
            resource (non cloud types)
    """
    session = session or create_session(settings.http_max_retries, settings.http_backoff_factor)

    if connection.is_cloud_idp:
        if token_provider is None:
            token_provider = AuthTokenProvider(
                connection,
                session=session,
                timeout=settings.http_timeout,
                scope=settings.idp_token_scope,
            )
        return CloudIdPFetcher(
            connection,
            resource,
            token_provider,
            session=session,
            page_size=page_size or settings.page_size,
            timeout=settings.http_timeout,
            max_records=settings.max_import_records,
        )

    url = connection.import_url_for(resource.value)
    if not url:
        raise ConfigurationError(
            f"{resource.label} import URL is not configured for connection {connection.id}"
        )

    return CustomURLFetcher(
        url,
        resource,
        api_key=connection.import_api_key_for(resource.value),
        session=session,
        timeout=settings.http_timeout,
        max_records=settings.max_import_records,
    )


__all__ = [
    "AccessToken",
    "AuthTokenProvider",
    "BaseFetcher",
    "CloudIdPFetcher",
    "CustomURLFetcher",
    "SampleResult",
    "create_fetcher",
    "create_session",
    "flatten_group",
    "flatten_user",
]
