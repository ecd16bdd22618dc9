"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts the console's camelCase keys as well as field names."""
    model_config = ConfigDict(populate_by_name=True)


# Request Models
class ImportUsersRequest(CamelModel):
    dry_run: bool = Field(default=False, alias="dryRun")
    field_mapping: Dict[str, Optional[str]] = Field(default_factory=dict, alias="fieldMapping")

    def mapping(self) -> Dict[str, str]:
        """Field mapping with null destinations treated as skipped."""
        return {source: destination or "" for source, destination in self.field_mapping.items()}


class ImportRequestBody(ImportUsersRequest):
    import_users: Optional[bool] = Field(default=None, alias="importUsers")
    import_groups: Optional[bool] = Field(default=None, alias="importGroups")


class AttributeMappingModel(BaseModel):
    source: str = ""
    destination: str = ""
    transform: Optional[str] = ""
    required: bool = False


class ConnectionUpdate(CamelModel):
    """Connection fields an operator may set. Omitted fields keep their value."""
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    environment_id: Optional[str] = Field(default=None, alias="environmentId")
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    region: Optional[str] = None
    api_base_url: Optional[str] = Field(default=None, alias="apiBaseUrl")
    auth_base_url: Optional[str] = Field(default=None, alias="authBaseUrl")
    enable_user_import: Optional[bool] = Field(default=None, alias="enableUserImport")
    enable_group_import: Optional[bool] = Field(default=None, alias="enableGroupImport")
    user_import_url: Optional[str] = Field(default=None, alias="userImportUrl")
    group_import_url: Optional[str] = Field(default=None, alias="groupImportUrl")
    user_import_api_key: Optional[str] = Field(default=None, alias="userImportApiKey")
    group_import_api_key: Optional[str] = Field(default=None, alias="groupImportApiKey")
    sync_interval: Optional[int] = Field(default=None, alias="syncInterval")
    attribute_mappings: Optional[List[AttributeMappingModel]] = Field(
        default=None, alias="attributeMappings"
    )
    status: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """The fields present in the request, keyed the console's way."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class ConnectionCreate(ConnectionUpdate):
    id: Optional[str] = None
    name: str = ""
    type: str = "CUSTOM_URL"


# Response Models
class ConnectionStatusResponse(BaseModel):
    id: str
    sync_status: Optional[str] = None
    import_stats: Dict[str, Any] = Field(default_factory=dict)
    last_sync_at: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
