"""Connection configuration endpoints."""

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request

from ...config import Settings
from ...exceptions import AuthenticationError, ConfigurationError, FetchError
from ...extractors import AuthTokenProvider, create_fetcher
from ...models.connection import AttributeMapping, ConnectionConfig, Region, SourceType
from ...models.record import ResourceType
from ...services.validator import validate_attribute_mappings
from ...storage.base import ConnectionRepository
from ..dependencies import get_connection_repo, get_settings
from ..models import ConnectionCreate, ConnectionUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
MIN_SYNC_INTERVAL = 5
MAX_SYNC_INTERVAL = 1440


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_connection_changes(changes: Dict[str, Any], current_type: Optional[str] = None) -> None:
    """
    Validate connection fields before saving.

    Raises:
        HTTPException: 400 with the first problem found
    """
    def reject(message: str) -> None:
        raise HTTPException(status_code=400, detail=message)

    connection_type = changes.get("type") or current_type
    if connection_type is not None and connection_type not in {t.value for t in SourceType}:
        reject(f"Invalid connection type: {connection_type}")

    if connection_type == SourceType.CLOUD_IDP.value or changes.get("environmentId"):
        for key, label in (("environmentId", "Environment ID"), ("clientId", "Client ID")):
            value = changes.get(key)
            if value and not UUID_PATTERN.match(value):
                reject(f"Invalid {label} format. Must be a valid UUID.")

    region = changes.get("region")
    if region and region not in {r.value for r in Region}:
        reject("Invalid region. Must be NA, EU, or APAC.")

    for key, label in (("userImportUrl", "user"), ("groupImportUrl", "group")):
        value = changes.get(key)
        if value and not _is_url(value):
            reject(f"Invalid {label} import URL format.")

    mappings = changes.get("attributeMappings")
    if mappings is not None:
        errors = validate_attribute_mappings([AttributeMapping.from_dict(m) for m in mappings])
        if errors:
            reject(errors[0])

    interval = changes.get("syncInterval")
    if interval is not None and not MIN_SYNC_INTERVAL <= interval <= MAX_SYNC_INTERVAL:
        reject(f"Sync interval must be between {MIN_SYNC_INTERVAL} and {MAX_SYNC_INTERVAL} minutes.")


def _require(repo: ConnectionRepository, connection_id: str) -> ConnectionConfig:
    connection = repo.get(connection_id)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


@router.get("")
def list_connections(repo: ConnectionRepository = Depends(get_connection_repo)):
    """List all connections with secrets masked."""
    connections = repo.list()
    return {"connections": [c.to_dict() for c in connections], "total": len(connections)}


@router.post("", status_code=201)
def create_connection(
    data: ConnectionCreate,
    repo: ConnectionRepository = Depends(get_connection_repo),
):
    """Create a connection."""
    changes = data.changes()
    validate_connection_changes(changes)
    config = repo.create(ConnectionConfig.from_dict(changes))
    return config.to_dict()


@router.get("/{connection_id}")
def get_connection(connection_id: str, repo: ConnectionRepository = Depends(get_connection_repo)):
    """Get a connection with secrets masked."""
    return _require(repo, connection_id).to_dict()


@router.put("/{connection_id}")
def update_connection(
    connection_id: str,
    data: ConnectionUpdate,
    repo: ConnectionRepository = Depends(get_connection_repo),
):
    """Update a connection; masked or empty secrets keep their stored value."""
    existing = _require(repo, connection_id)
    changes = data.changes()
    validate_connection_changes(changes, existing.type.value)
    config = repo.update(connection_id, changes)
    logger.info(f"Updated connection {connection_id}")
    return config.to_dict()


@router.delete("/{connection_id}")
def delete_connection(connection_id: str, repo: ConnectionRepository = Depends(get_connection_repo)):
    """Delete a connection."""
    if not repo.delete(connection_id):
        raise HTTPException(status_code=404, detail="Connection not found")
    return {"message": "Connection deleted successfully"}


@router.post("/{connection_id}/test")
def test_connection(
    connection_id: str,
    request: Request,
    repo: ConnectionRepository = Depends(get_connection_repo),
    settings: Settings = Depends(get_settings),
):
    """Check that the connection's credentials or import URL work."""
    connection = _require(repo, connection_id)
    session = request.app.state.http_session

    try:
        if connection.is_cloud_idp:
            token = AuthTokenProvider(
                connection,
                session=session,
                timeout=settings.http_timeout,
                scope=settings.idp_token_scope,
            ).get_token()
            return {
                "success": True,
                "message": "Successfully obtained an access token",
                "tokenType": token.token_type,
                "expiresIn": token.expires_in,
            }

        sample = create_fetcher(connection, ResourceType.USERS, settings, session=session).sample(1)
        return {
            "success": True,
            "message": f"Import URL reachable, {sample.total} records available",
        }
    except (AuthenticationError, FetchError, ConfigurationError) as e:
        logger.warning(f"Connection test failed for {connection_id}: {e}")
        return {"success": False, "message": str(e)}
