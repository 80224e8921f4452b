"""Error types raised by tasksync stores and the reconciler."""


class TaskSyncError(Exception):
    """Base class for all tasksync errors."""


class TaskValidationError(TaskSyncError, ValueError):
    """A task failed validation before reaching either store."""


class TaskNotFoundError(TaskSyncError, KeyError):
    """No task exists with the given id."""

    def __init__(self, task_id: int):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task {self.task_id} not found"


class LocalStoreError(TaskSyncError):
    """The local SQLite store failed (corruption, disk full, locked)."""


class RemoteStoreError(TaskSyncError):
    """A remote store call failed (network error, timeout, bad response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
