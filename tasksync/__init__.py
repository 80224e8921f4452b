"""tasksync: an offline-first task list that reconciles with a remote store."""

from .errors import (
    LocalStoreError,
    RemoteStoreError,
    TaskNotFoundError,
    TaskSyncError,
    TaskValidationError,
)
from .models import Task, new_task_id

__version__ = "0.1.0"

__all__ = [
    "Task",
    "new_task_id",
    "TaskSyncError",
    "TaskValidationError",
    "TaskNotFoundError",
    "LocalStoreError",
    "RemoteStoreError",
]
