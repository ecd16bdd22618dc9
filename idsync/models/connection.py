"""Connection configuration models."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError

SECRET_PLACEHOLDER = "[SAVED]"
ENV_REFERENCE_PREFIX = "env:"


class SourceType(str, Enum):
    """Kinds of identity sources a connection can point at."""
    CLOUD_IDP = "PINGONE"  # Cloud IdP with a paginated Users/Groups API
    CUSTOM_URL = "CUSTOM_URL"  # Arbitrary HTTP/JSON endpoint
    AD = "AD"  # Directory connectors: import through their import URL only
    LDAP = "LDAP"
    DATABASE = "DATABASE"


class Region(str, Enum):
    """Cloud IdP deployment regions."""
    NA = "NA"
    EU = "EU"
    APAC = "APAC"

    @property
    def tld(self) -> str:
        return {"NA": "com", "EU": "eu", "APAC": "asia"}[self.value]


class SyncStatus(str, Enum):
    """Synchronization status stored on a connection."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


@dataclass
class AttributeMapping:
    """One entry of a connection's ordered attribute mapping list."""
    source: str
    destination: str
    transform: str = ""
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "transform": self.transform,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttributeMapping":
        return cls(
            source=data.get("source") or "",
            destination=data.get("destination") or "",
            transform=data.get("transform") or "",
            required=bool(data.get("required", False)),
        )


def default_attribute_mappings() -> List[AttributeMapping]:
    """Mappings assigned to a new connection when none are supplied."""
    return [
        AttributeMapping("email", "email", required=True),
        AttributeMapping("first_name", "name.given", required=True),
        AttributeMapping("last_name", "name.family", required=True),
        AttributeMapping("username", "username", required=True),
        AttributeMapping("phone", "phoneNumbers[0].value", transform="s/[^0-9]//g"),
        AttributeMapping(
            "department",
            "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department",
        ),
    ]


def default_group_mappings() -> List[AttributeMapping]:
    """Mappings applied to group records; groups are not operator-mapped."""
    return [
        AttributeMapping("id", "external_id"),
        AttributeMapping("name", "name", required=True),
        AttributeMapping("displayName", "display_name"),
        AttributeMapping("display_name", "display_name"),
        AttributeMapping("description", "description"),
    ]


@dataclass
class ConnectionConfig:
    """
    Settings describing how to reach and map one external identity source.

    The pipeline reads these at the start of a run and only ever writes back
    ``sync_status``, ``last_sync_at`` and ``import_stats``.
    """
    id: str
    name: str = ""
    type: SourceType = SourceType.CUSTOM_URL
    description: str = ""

    # Cloud IdP credentials
    environment_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None  # Literal or "env:VAR_NAME" reference
    region: Region = Region.NA
    api_base_url: Optional[str] = None  # Overrides the regional API host
    auth_base_url: Optional[str] = None  # Overrides the regional auth host

    # Import configuration
    enable_user_import: bool = False
    enable_group_import: bool = False
    user_import_url: str = ""
    group_import_url: str = ""
    user_import_api_key: Optional[str] = None
    group_import_api_key: Optional[str] = None
    sync_interval: int = 60  # Minutes
    attribute_mappings: List[AttributeMapping] = field(default_factory=default_attribute_mappings)

    # Written by the import pipeline
    status: str = "created"
    sync_status: Optional[SyncStatus] = None
    last_sync_at: Optional[datetime] = None
    import_stats: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_cloud_idp(self) -> bool:
        return self.type == SourceType.CLOUD_IDP

    def import_url_for(self, resource: str) -> str:
        """Get the custom import URL for ``users`` or ``groups``."""
        return self.group_import_url if resource == "groups" else self.user_import_url

    def import_api_key_for(self, resource: str) -> Optional[str]:
        """Get the bearer API key for the custom import URL of a resource."""
        key = self.group_import_api_key if resource == "groups" else self.user_import_api_key
        return resolve_secret(key) if key else None

    def resolve_client_secret(self) -> str:
        """
        Resolve the client secret for one run.

        Raises:
            ConfigurationError: If the secret is missing or references an
                unset environment variable.
        """
        if not self.client_secret or self.client_secret == SECRET_PLACEHOLDER:
            raise ConfigurationError("Client secret is not configured")
        return resolve_secret(self.client_secret)

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert to the console's camelCase representation."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "environmentId": self.environment_id,
            "clientId": self.client_id,
            "clientSecret": _mask(self.client_secret) if mask_secrets else self.client_secret,
            "hasClientSecret": bool(self.client_secret),
            "region": self.region.value,
            "apiBaseUrl": self.api_base_url,
            "authBaseUrl": self.auth_base_url,
            "enableUserImport": self.enable_user_import,
            "enableGroupImport": self.enable_group_import,
            "userImportUrl": self.user_import_url,
            "groupImportUrl": self.group_import_url,
            "userImportApiKey": (
                _mask(self.user_import_api_key) if mask_secrets else self.user_import_api_key
            ),
            "groupImportApiKey": (
                _mask(self.group_import_api_key) if mask_secrets else self.group_import_api_key
            ),
            "syncInterval": self.sync_interval,
            "attributeMappings": [m.to_dict() for m in self.attribute_mappings],
            "status": self.status,
            "syncStatus": self.sync_status.value if self.sync_status else None,
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "importStats": self.import_stats,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        """Create from the console's camelCase representation."""
        mappings = data.get("attributeMappings")
        try:
            source_type = SourceType(data.get("type", SourceType.CUSTOM_URL.value))
            region = Region(data.get("region") or Region.NA.value)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        sync_status = data.get("syncStatus")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            type=source_type,
            description=data.get("description", ""),
            environment_id=data.get("environmentId"),
            client_id=data.get("clientId"),
            client_secret=data.get("clientSecret"),
            region=region,
            api_base_url=data.get("apiBaseUrl"),
            auth_base_url=data.get("authBaseUrl"),
            enable_user_import=bool(data.get("enableUserImport", False)),
            enable_group_import=bool(data.get("enableGroupImport", False)),
            user_import_url=data.get("userImportUrl") or "",
            group_import_url=data.get("groupImportUrl") or "",
            user_import_api_key=data.get("userImportApiKey"),
            group_import_api_key=data.get("groupImportApiKey"),
            sync_interval=int(data.get("syncInterval", 60)),
            attribute_mappings=(
                [AttributeMapping.from_dict(m) for m in mappings]
                if mappings is not None
                else default_attribute_mappings()
            ),
            status=data.get("status", "created"),
            sync_status=SyncStatus(sync_status) if sync_status else None,
            import_stats=data.get("importStats") or {},
        )


def resolve_secret(value: str) -> str:
    """Resolve an ``env:VAR`` credential reference, or return a literal secret."""
    if value.startswith(ENV_REFERENCE_PREFIX):
        var_name = value[len(ENV_REFERENCE_PREFIX):]
        resolved = os.environ.get(var_name)
        if not resolved:
            raise ConfigurationError(f"Credential reference {var_name} is not set")
        return resolved
    return value


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    # References are not secret themselves
    if value.startswith(ENV_REFERENCE_PREFIX):
        return value
    return SECRET_PLACEHOLDER
