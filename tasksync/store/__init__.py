"""Task stores: the offline-capable local store and the remote client."""

from .local_store import LocalStore
from .remote_store import HttpRemoteStore, RemoteStore

__all__ = ["LocalStore", "RemoteStore", "HttpRemoteStore"]
