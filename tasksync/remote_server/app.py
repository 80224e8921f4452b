"""FastAPI reference implementation of the remote task API.

Stands in for the production backend during development and in
integration tests. Tasks are kept in a SQLite-backed LocalStore.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, HTTPException

from ..errors import LocalStoreError, TaskValidationError
from ..models import Task
from ..store import LocalStore

logger = logging.getLogger(__name__)


def create_app(
    db_path: str | Path = ":memory:",
    store: LocalStore | None = None,
) -> FastAPI:
    """Create the remote task API application.

    Args:
        db_path: SQLite database path, used when no store is given.
        store: Optional pre-built store.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="tasksync remote",
        description="Reference remote store for tasksync clients",
        version="0.1.0",
    )

    if store is None:
        store = LocalStore(db_path)
    store.connect()
    app.state.store = store

    def _store_failure(e: LocalStoreError) -> HTTPException:
        logger.error(f"Remote store failure: {e}")
        return HTTPException(status_code=503, detail=str(e))

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check used by client connectivity probes."""
        return {"status": "ok", "timestamp": datetime.now().isoformat()}

    @app.get("/api/tasks")
    async def api_list_tasks() -> dict[str, Any]:
        try:
            tasks = store.get_all()
        except LocalStoreError as e:
            raise _store_failure(e) from e
        return {"count": len(tasks), "tasks": [task.to_dict() for task in tasks]}

    @app.put("/api/tasks/{task_id}")
    async def api_put_task(
        task_id: int, payload: dict[str, Any] = Body(...)
    ) -> dict[str, Any]:
        if payload.get("id", task_id) != task_id:
            raise HTTPException(status_code=400, detail="Task id does not match URL")

        try:
            task = Task.from_dict({**payload, "id": task_id}, synced=True)
        except TaskValidationError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        existing = store.get(task_id)
        if existing is not None and existing.completed and not task.completed:
            # Completion never reverts
            task = task.with_changes(completed=True)

        try:
            store.put(task)
        except LocalStoreError as e:
            raise _store_failure(e) from e
        return task.to_dict()

    @app.post("/api/tasks/{task_id}/complete")
    async def api_complete_task(task_id: int) -> dict[str, Any]:
        try:
            found = store.mark_completed(task_id, synced=True)
        except LocalStoreError as e:
            raise _store_failure(e) from e
        if not found:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return store.get(task_id).to_dict()

    @app.delete("/api/tasks/{task_id}")
    async def api_delete_task(task_id: int) -> dict[str, Any]:
        try:
            deleted = store.delete(task_id)
        except LocalStoreError as e:
            raise _store_failure(e) from e
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return {"deleted": task_id}

    return app
