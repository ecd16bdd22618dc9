"""Import executor - coordinates one import run for a connection."""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import Settings
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    FetchError,
    RecordValidationError,
    SyncError,
)
from .extractors import AuthTokenProvider, create_fetcher, create_session
from .loaders import BaseLoader, GroupLoader, UserLoader
from .models.connection import (
    AttributeMapping,
    ConnectionConfig,
    SyncStatus,
    default_group_mappings,
)
from .models.record import (
    ProcessedSample,
    RecordAction,
    ResourceType,
    SourceRecord,
)
from .models.task import ImportStats
from .services.mapper import (
    AttributeMapper,
    CompiledMapping,
    build_mapping,
    compile_mappings,
    detected_fields,
)
from .services.matcher import (
    GroupMatcher,
    PlannedGroupStore,
    PlannedUserStore,
    RecordMatcher,
)
from .services.validator import GroupValidator, RecordValidator
from .storage.base import ConnectionRepository, GroupRepository, IdentityRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
TokenProviderFactory = Callable[[ConnectionConfig], AuthTokenProvider]


class _Pass:
    """Collaborators for one resource pass."""

    def __init__(
        self,
        resource: ResourceType,
        mappings: List[CompiledMapping],
        validator: Any,
        matcher: Any,
        loader: BaseLoader,
        store: Any
    ):
        self.resource = resource
        self.mappings = mappings
        self.validator = validator
        self.matcher = matcher
        self.loader = loader
        self.store = store


class ImportExecutor:
    """
    Runs an import for one connection.

    Handles:
    - Lease acquisition and release for live runs
    - Single token exchange per run for cloud sources
    - Users pass and groups pass, isolated from each other
    - Per-record map, validate, match and load with error isolation
    - Dry-run simulation with sample collection
    - Final status and stats persistence
    """

    def __init__(
        self,
        connection_repo: ConnectionRepository,
        user_repo: IdentityRepository,
        group_repo: GroupRepository,
        settings: Settings,
        session: Optional[requests.Session] = None,
        token_provider_factory: Optional[TokenProviderFactory] = None
    ):
        """
        Initialize the executor.

        Args:
            connection_repo: Connection store (lease and sync result)
            user_repo: Identity store for users
            group_repo: Identity store for groups
            settings: Application settings
            session: HTTP session shared by fetchers and token requests
            token_provider_factory: Builds the token provider for a run
        """
        self.connection_repo = connection_repo
        self.user_repo = user_repo
        self.group_repo = group_repo
        self.settings = settings
        self._session = session or create_session(
            settings.http_max_retries, settings.http_backoff_factor
        )
        self._token_provider_factory = token_provider_factory or self._default_token_provider
        self.mapper = AttributeMapper()

    def _default_token_provider(self, connection: ConnectionConfig) -> AuthTokenProvider:
        return AuthTokenProvider(
            connection,
            session=self._session,
            timeout=self.settings.http_timeout,
            scope=self.settings.idp_token_scope,
        )

    def run(
        self,
        connection: ConnectionConfig,
        field_mapping: Optional[Dict[str, str]] = None,
        dry_run: bool = False,
        import_users: bool = True,
        import_groups: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
        lease_held: bool = False
    ) -> ImportStats:
        """
        Execute an import. Never raises; problems are reported in the stats.

        Args:
            connection: Connection to import from
            field_mapping: Caller supplied ``{source: destination}`` overrides
            dry_run: Simulate without writing to the identity store
            import_users: Run the users pass
            import_groups: Run the groups pass
            progress_callback: Called with ``(processed, total)``
            lease_held: The caller already acquired the connection lease

        Returns:
            ImportStats for the run
        """
        stats = ImportStats(connection_id=connection.id, dry_run=dry_run)
        mode = "dry run" if dry_run else "live"
        logger.info(
            f"Starting {mode} import for connection {connection.id} "
            f"(users={import_users}, groups={import_groups})"
        )

        if not dry_run and not lease_held:
            try:
                acquired = self.connection_repo.try_acquire_lease(
                    connection.id, timedelta(seconds=self.settings.lease_timeout_seconds)
                )
            except SyncError as e:
                stats.errors.append(f"Failed to start import: {e}")
                stats.finish()
                return stats
            if not acquired:
                message = f"Another import is already running for connection {connection.id}"
                logger.warning(message)
                stats.errors.append(message)
                stats.finish()
                return stats

        try:
            self._execute(connection, field_mapping, stats, import_users, import_groups, progress_callback)
        except Exception as e:
            logger.error(f"Import failed for connection {connection.id}: {e}")
            stats.errors.append(f"Import failed: {e}")

        status = stats.finish()
        logger.info(
            f"Import {status.value} for connection {connection.id}: "
            f"users {stats.counts_for(ResourceType.USERS)}, "
            f"groups {stats.counts_for(ResourceType.GROUPS)}, "
            f"{len(stats.errors)} errors in {stats.duration_ms} ms"
        )

        if not dry_run:
            self._save_result(connection, stats)

        return stats

    def _execute(
        self,
        connection: ConnectionConfig,
        field_mapping: Optional[Dict[str, str]],
        stats: ImportStats,
        import_users: bool,
        import_groups: bool,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        token_provider = None
        if connection.is_cloud_idp:
            token_provider = self._token_provider_factory(connection)
            try:
                token_provider.get_token()
            except AuthenticationError as e:
                message = f"Authentication failed: {e}"
                logger.error(message)
                stats.errors.append(message)
                return

        if import_users:
            self._run_pass(
                ResourceType.USERS, connection, field_mapping, stats, token_provider, progress_callback
            )

        if import_groups:
            self._run_pass(
                ResourceType.GROUPS, connection, field_mapping, stats, token_provider, progress_callback
            )
            if not stats.dry_run:
                logger.warning(
                    f"Group memberships are not imported for connection {connection.id}"
                )

    def _fetch(
        self,
        resource: ResourceType,
        connection: ConnectionConfig,
        token_provider: Optional[AuthTokenProvider]
    ) -> List[SourceRecord]:
        fetcher = create_fetcher(
            connection,
            resource,
            self.settings,
            session=self._session,
            token_provider=token_provider,
        )
        return list(fetcher.fetch())

    def _resolve_mappings(
        self,
        resource: ResourceType,
        connection: ConnectionConfig,
        field_mapping: Optional[Dict[str, str]],
        records: List[SourceRecord]
    ) -> List[AttributeMapping]:
        if resource == ResourceType.GROUPS:
            return default_group_mappings()
        return build_mapping(field_mapping, connection.attribute_mappings, detected_fields(records))

    def _build_pass(
        self,
        resource: ResourceType,
        connection: ConnectionConfig,
        mappings: List[AttributeMapping],
        dry_run: bool
    ) -> _Pass:
        compiled = compile_mappings(mappings)
        required = [m.destination for m in compiled if m.required]

        if resource == ResourceType.USERS:
            return _Pass(
                resource,
                compiled,
                RecordValidator(required),
                RecordMatcher(),
                UserLoader(self.user_repo, connection.id, dry_run=dry_run),
                PlannedUserStore(self.user_repo) if dry_run else self.user_repo,
            )
        return _Pass(
            resource,
            compiled,
            GroupValidator(required),
            GroupMatcher(connection.id),
            GroupLoader(self.group_repo, connection.id, dry_run=dry_run),
            PlannedGroupStore(self.group_repo) if dry_run else self.group_repo,
        )

    def _run_pass(
        self,
        resource: ResourceType,
        connection: ConnectionConfig,
        field_mapping: Optional[Dict[str, str]],
        stats: ImportStats,
        token_provider: Optional[AuthTokenProvider],
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        """Fetch all records of one resource and process them one by one."""
        try:
            records = self._fetch(resource, connection, token_provider)
        except (FetchError, ConfigurationError, AuthenticationError) as e:
            message = f"Failed to fetch {resource.value}: {e}"
            logger.error(message)
            stats.errors.append(message)
            return

        stats.total_records += len(records)
        logger.info(f"Processing {len(records)} {resource.value} for connection {connection.id}")

        mappings = self._resolve_mappings(resource, connection, field_mapping, records)
        current = self._build_pass(resource, connection, mappings, stats.dry_run)
        interval = self.settings.progress_update_interval

        for index, record in enumerate(records, start=1):
            try:
                self._process_record(record, current, stats)
            except RecordValidationError as e:
                stats.record(resource, RecordAction.SKIP)
                stats.errors.append(f"{resource.label} {index}{_describe(record)}: {e}")
                for issue in e.errors:
                    stats.add_validation_issue(issue)
            except Exception as e:
                stats.record(resource, RecordAction.SKIP)
                message = f"{resource.label} {index}{_describe(record)}: {e}"
                logger.error(message)
                stats.errors.append(message)

            if progress_callback and index % interval == 0:
                self._report_progress(progress_callback, stats)

        if progress_callback:
            self._report_progress(progress_callback, stats)

        logger.info(f"Finished {resource.value} pass: {stats.counts_for(resource)}")

    def _process_record(self, record: Any, current: _Pass, stats: ImportStats) -> None:
        """
        Map, validate, match and load one record.

        Raises:
            RecordValidationError: If the mapped record is invalid
        """
        if not isinstance(record, dict):
            raise RecordValidationError(["Record is not a JSON object"])

        mapped = self.mapper.map(record, current.mappings)

        validation = current.validator.validate(mapped)
        if not validation.is_valid:
            raise RecordValidationError(validation.errors)

        match = current.matcher.match(mapped, current.store)
        action = current.loader.load_record(mapped, match)

        if stats.dry_run:
            current.store.plan(action, match, current.loader.build_payload(mapped))

            if len(stats.samples) < self.settings.dry_run_sample_size:
                stats.samples.append(ProcessedSample(
                    original=record,
                    mapped=mapped,
                    action=action,
                    existing=match.existing,
                ))

        stats.record(current.resource, action)

    def _report_progress(self, callback: ProgressCallback, stats: ImportStats) -> None:
        try:
            callback(stats.records_processed, stats.total_records)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def _save_result(self, connection: ConnectionConfig, stats: ImportStats) -> None:
        """Persist the final status and stats, releasing the lease."""
        try:
            self.connection_repo.save_sync_result(
                connection.id, SyncStatus(stats.status.value), stats.to_dict()
            )
        except Exception as e:
            logger.error(f"Failed to save import result for connection {connection.id}: {e}")
            stats.errors.append(f"Failed to save import result: {e}")



def _describe(record: Any) -> str:
    """Identifying attributes of a source record for error messages."""
    if not isinstance(record, dict):
        return ""
    parts = [
        f"{key}={record[key]}"
        for key in ("id", "username", "email", "name")
        if record.get(key) not in (None, "")
    ][:2]
    return f" [{', '.join(parts)}]" if parts else ""
