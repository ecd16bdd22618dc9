"""Import task polling endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query

from ...storage.base import TaskRepository
from ..dependencies import get_task_repo

router = APIRouter()


@router.get("/tasks/{task_id}")
def get_task(task_id: str, repo: TaskRepository = Depends(get_task_repo)):
    """Get an import task."""
    task = repo.get(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Import task not found")
    return task.to_dict()


@router.get("/connections/{connection_id}/tasks")
def list_connection_tasks(
    connection_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    repo: TaskRepository = Depends(get_task_repo),
):
    """List a connection's import tasks, newest first."""
    tasks = repo.list_for_connection(connection_id, limit=limit)
    return {"tasks": [t.to_dict() for t in tasks], "total": len(tasks)}
