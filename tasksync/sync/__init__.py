"""Offline-first synchronization between the local and remote task stores.

Provides the existence-merge reconciler, the connectivity monitor that
triggers it, and the grouped view it produces.
"""

from .connectivity import ConnectivityEvent, ConnectivityMonitor
from .grouping import PAST_BUCKET, TaskGroup, TaskView, group_tasks
from .reconciler import ReconcileResult, Reconciler, SyncStatus

__all__ = [
    "ConnectivityEvent",
    "ConnectivityMonitor",
    "PAST_BUCKET",
    "TaskGroup",
    "TaskView",
    "group_tasks",
    "ReconcileResult",
    "Reconciler",
    "SyncStatus",
]
