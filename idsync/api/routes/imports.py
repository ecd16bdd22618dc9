"""Import, preview and sync status endpoints for a connection."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...exceptions import AuthenticationError, FetchError
from ...services.import_service import ImportRequest, ImportService, dry_run_results
from ...services.preview import PreviewService
from ...storage.base import ConnectionRepository
from ..dependencies import get_connection_repo, get_import_service, get_preview_service
from ..models import ConnectionStatusResponse, ImportRequestBody, ImportUsersRequest

router = APIRouter()


def _respond(outcome, include_stats: bool) -> Dict[str, Any]:
    if not outcome.dry_run:
        return {
            "success": True,
            "message": "Import started",
            "taskId": outcome.task.id,
        }

    stats = outcome.stats
    response = {
        "success": True,
        "message": (
            f"Dry run {stats.status.value}: {stats.total_records} records analyzed, "
            f"{len(stats.errors)} errors"
        ),
        "taskId": outcome.task.id,
        "dryRun": True,
        "results": dry_run_results(stats),
    }
    if include_stats:
        response["stats"] = stats.to_dict()
    return response


@router.post("/{connection_id}/import-users")
def import_users(
    connection_id: str,
    body: Optional[ImportUsersRequest] = None,
    service: ImportService = Depends(get_import_service),
):
    """Import users from a connection, or simulate it with ``dryRun``."""
    body = body or ImportUsersRequest()
    outcome = service.start_import(connection_id, ImportRequest(
        dry_run=body.dry_run,
        field_mapping=body.mapping(),
        import_users=True,
        import_groups=False,
    ))
    return _respond(outcome, include_stats=False)


@router.post("/{connection_id}/import")
def import_resources(
    connection_id: str,
    body: Optional[ImportRequestBody] = None,
    service: ImportService = Depends(get_import_service),
):
    """Import users and/or groups; passes default to the connection's settings."""
    body = body or ImportRequestBody()
    outcome = service.start_import(connection_id, ImportRequest(
        dry_run=body.dry_run,
        field_mapping=body.mapping(),
        import_users=body.import_users,
        import_groups=body.import_groups,
    ))
    return _respond(outcome, include_stats=True)


@router.post("/{connection_id}/import-preview")
def import_preview(
    connection_id: str,
    service: ImportService = Depends(get_import_service),
    preview_service: PreviewService = Depends(get_preview_service),
):
    """Fetch a small sample and suggest a field mapping."""
    connection = service.get_connection(connection_id)

    try:
        analysis = preview_service.preview(connection)
    except (AuthenticationError, FetchError) as e:
        raise HTTPException(status_code=502, detail=f"Failed to fetch import preview: {e}")

    return {
        "success": True,
        "analysis": analysis.to_dict(),
        "preview": analysis.records,
    }


@router.get("/{connection_id}/status", response_model=ConnectionStatusResponse)
def connection_status(
    connection_id: str,
    repo: ConnectionRepository = Depends(get_connection_repo),
):
    """Get the last synchronization status of a connection."""
    return repo.get_status(connection_id)
