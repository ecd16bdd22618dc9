"""OAuth2 client-credentials token exchange for cloud identity providers."""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import requests

from ..config import DEFAULT_TOKEN_SCOPE, mask_identifier
from ..exceptions import AuthenticationError, ConfigurationError
from ..models.connection import ConnectionConfig

logger = logging.getLogger(__name__)

# Refresh a little before the server-side expiry
EXPIRY_MARGIN_SECONDS = 30


@dataclass
class AccessToken:
    """A bearer token returned by the token endpoint."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    scope: str = ""
    obtained_at: float = field(default_factory=time.monotonic)

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.obtained_at + self.expires_in - EXPIRY_MARGIN_SECONDS


class AuthTokenProvider:
    """
    Exchanges a connection's client credentials for an access token.

    One provider serves one import run; the token is cached until it
    expires, so all pages of a run share it.
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        scope: str = DEFAULT_TOKEN_SCOPE
    ):
        self.connection = connection
        self.timeout = timeout
        self.scope = scope
        self._session = session or requests.Session()
        self._token: Optional[AccessToken] = None

    @property
    def token_url(self) -> str:
        if self.connection.auth_base_url:
            base = self.connection.auth_base_url.rstrip("/")
        else:
            base = f"https://auth.pingone.{self.connection.region.tld}"
        return f"{base}/{self.connection.environment_id}/as/token"

    def get_token(self) -> AccessToken:
        """
        Return a valid access token, requesting one if needed.

        Raises:
            AuthenticationError: On missing credentials, network failure,
                a non-2xx response or a body without ``access_token``
        """
        if self._token and not self._token.is_expired:
            return self._token

        self._token = self._request_token()
        return self._token

    def _request_token(self) -> AccessToken:
        connection = self.connection
        if not connection.environment_id or not connection.client_id:
            raise AuthenticationError("Environment ID and client ID are required")

        try:
            client_secret = connection.resolve_client_secret()
        except ConfigurationError as e:
            raise AuthenticationError(str(e)) from e

        logger.info(
            f"Requesting access token for connection {connection.id} "
            f"(client {mask_identifier(connection.client_id)})"
        )

        try:
            response = self._session.post(
                self.token_url,
                data={"grant_type": "client_credentials", "scope": self.scope},
                auth=(connection.client_id, client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"Token request failed: {e}") from e

        if not response.ok:
            raise AuthenticationError(
                f"Token request rejected with HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AuthenticationError("Token response is not valid JSON") from e

        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthenticationError("Token response did not contain an access_token")

        try:
            expires_in = int(body.get("expires_in") or 3600)
        except (TypeError, ValueError) as e:
            raise AuthenticationError(
                f"Token response has an invalid expires_in: {body.get('expires_in')!r}"
            ) from e

        return AccessToken(
            access_token=body["access_token"],
            token_type=body.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=body.get("scope") or "",
        )
