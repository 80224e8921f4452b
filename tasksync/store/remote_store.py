"""Remote task store interface and its HTTP client implementation.

Handles network communication with retry logic and per-request timeouts.
Callers are responsible for checking connectivity before every call.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import RemoteStoreError, TaskValidationError
from ..models import Task

logger = logging.getLogger(__name__)


class RemoteStore(ABC):
    """Abstract authoritative task store reachable only online."""

    @abstractmethod
    async def put(self, task: Task) -> None:
        """Create or replace a task keyed by id."""
        pass

    @abstractmethod
    async def get_all(self) -> list[Task]:
        """Fetch every remote task. Returned tasks are marked synced."""
        pass

    @abstractmethod
    async def delete(self, task_id: int) -> None:
        """Delete a task. Deleting an absent task is not an error."""
        pass

    @abstractmethod
    async def mark_completed(self, task_id: int) -> None:
        """Mark a remote task completed."""
        pass

    async def health_check(self) -> bool:
        """Check whether the remote is reachable."""
        try:
            await self.get_all()
            return True
        except RemoteStoreError:
            return False

    async def close(self) -> None:
        """Release any held connections."""


class HttpRemoteStore(RemoteStore):
    """REST client for the remote task API.

    Retries connection errors, timeouts and 5xx responses with exponential
    backoff. Client errors (4xx) fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote client.

        Args:
            base_url: Base URL of the remote API (e.g., "http://host:8765").
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per request.
            backoff_seconds: Initial delay between attempts.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        allow_404: bool = False,
    ) -> httpx.Response:
        """Make an HTTP request with exponential backoff retry.

        Args:
            method: HTTP method.
            path: URL path relative to base_url.
            json_data: Optional JSON body.
            allow_404: Return a 404 response instead of raising.

        Returns:
            The successful response.

        Raises:
            RemoteStoreError: When all attempts fail or the server rejects
                the request.
        """
        client = await self._get_client()
        backoff = self.backoff_seconds
        last_error = "no attempts made"

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, json=json_data)
            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                logger.warning(
                    f"{method} {path} timed out, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TransportError as e:
                last_error = f"Connection failed: {e}"
                logger.warning(
                    f"{method} {path} connection failed, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
            else:
                if response.status_code < 400:
                    return response
                if response.status_code == 404 and allow_404:
                    return response
                if response.status_code < 500:
                    # Client error, don't retry
                    raise RemoteStoreError(
                        f"{method} {path} rejected: HTTP {response.status_code}: "
                        f"{response.text}",
                        status_code=response.status_code,
                    )
                last_error = f"Server error {response.status_code}"
                logger.warning(
                    f"{method} {path} server error {response.status_code}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise RemoteStoreError(
            f"{method} {path} failed after {self.max_retries} attempts: {last_error}"
        )

    async def health_check(self) -> bool:
        """Check if the remote API is healthy.

        A single attempt is made so connectivity probes stay cheap.
        """
        try:
            client = await self._get_client()
            response = await client.get("/api/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def get_all(self) -> list[Task]:
        response = await self._request("GET", "/api/tasks")
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Malformed task list from remote: {e}") from e

        records = payload.get("tasks", []) if isinstance(payload, dict) else None
        if not isinstance(records, list):
            raise RemoteStoreError(
                f"Malformed task list from remote: expected a tasks array, got {payload!r}"
            )

        tasks = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object remote task {record!r}")
                continue
            try:
                tasks.append(Task.from_dict(record, synced=True))
            except TaskValidationError as e:
                logger.warning(f"Skipping invalid remote task {record!r}: {e}")
        return tasks

    async def put(self, task: Task) -> None:
        await self._request("PUT", f"/api/tasks/{task.id}", task.to_dict())
        logger.debug(f"Pushed task {task.id} to remote")

    async def delete(self, task_id: int) -> None:
        response = await self._request(
            "DELETE", f"/api/tasks/{task_id}", allow_404=True
        )
        if response.status_code == 404:
            logger.debug(f"Remote task {task_id} already absent")

    async def mark_completed(self, task_id: int) -> None:
        await self._request("POST", f"/api/tasks/{task_id}/complete")
