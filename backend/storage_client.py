"""
Internal storage service HTTP client.

Implements the BlobStore interface against the storage service's object API:

    PUT    /api/v1/objects/{path}  -> {"location": ..., "url": ...}
    DELETE /api/v1/objects/{path}
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from shared.services.blob_store import BlobStore, BlobStoreError, StoredBlob

logger = logging.getLogger(__name__)


class HttpBlobStore(BlobStore):
    """
    HTTP client for backend-to-storage service communication.

    Uploads are retried with exponential backoff on connection errors and
    5xx responses; deletes are attempted once, callers decide what a failed
    delete means.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5
    ):
        self.base_url = base_url.rstrip("/")
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff
        self._owns_client = http_client is None
        self._http_client = http_client or self._create_http_client(timeout_seconds)

        # Statistics
        self._stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0
        }

    @classmethod
    def from_config(cls, config_manager) -> "HttpBlobStore":
        return cls(
            base_url=config_manager.storage_service_url,
            timeout_seconds=config_manager.storage_timeout_seconds
        )

    @staticmethod
    def _create_http_client(timeout_seconds: float) -> httpx.AsyncClient:
        """Create HTTP client for internal service communication."""
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        timeout = httpx.Timeout(
            connect=5.0,
            read=timeout_seconds,
            write=timeout_seconds,
            pool=5.0
        )
        return httpx.AsyncClient(limits=limits, timeout=timeout, follow_redirects=False)

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/api/v1/objects/{quote(path, safe='/')}"

    async def put(self, path: str, data: bytes, content_type: str) -> StoredBlob:
        last_error: Optional[Exception] = None

        for attempt in range(self._retry_attempts):
            try:
                response = await self._request(
                    "PUT",
                    self._object_url(path),
                    content=data,
                    headers={"Content-Type": content_type or "application/octet-stream"}
                )
            except httpx.TransportError as e:
                last_error = e
            except httpx.HTTPError as e:
                raise BlobStoreError(f"Failed to store {path}: {e}")
            else:
                if response.status_code < 400:
                    payload = self._deserialize_response(response)
                    return StoredBlob(
                        location=payload.get("location", path),
                        url=payload.get("url", "")
                    )
                last_error = BlobStoreError(f"Storage service returned HTTP {response.status_code}")
                # Client errors will not succeed on retry
                if response.status_code < 500:
                    break

            if attempt < self._retry_attempts - 1:
                wait_time = self._retry_backoff * (2 ** attempt)
                logger.warning(f"Upload of {path} failed, retrying in {wait_time}s: {last_error}")
                await asyncio.sleep(wait_time)

        raise BlobStoreError(f"Failed to store {path}: {last_error}")

    async def delete(self, path: str) -> None:
        try:
            response = await self._request("DELETE", self._object_url(path))
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Failed to delete {path}: {e}")

        if response.status_code == 404:
            logger.debug(f"Blob {path} already absent")
            return
        if response.status_code >= 400:
            raise BlobStoreError(f"Failed to delete {path}: HTTP {response.status_code}")

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        self._stats["total_requests"] += 1
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.HTTPError:
            self._stats["failed_requests"] += 1
            raise
        if response.status_code < 400 or response.status_code == 404:
            self._stats["successful_requests"] += 1
        else:
            self._stats["failed_requests"] += 1
        return response

    @staticmethod
    def _deserialize_response(response: httpx.Response) -> Dict[str, Any]:
        content_type = response.headers.get("Content-Type", "").lower()
        if "application/json" not in content_type:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    async def health_check(self) -> bool:
        try:
            response = await self._http_client.get(f"{self.base_url}/health")
        except httpx.HTTPError as e:
            logger.warning(f"Storage health check failed: {e}")
            return False
        return response.status_code == 200

    def get_connection_pool_stats(self) -> Dict[str, Any]:
        """Get request statistics."""
        return {
            **self._stats,
            "success_rate": (
                self._stats["successful_requests"] / max(1, self._stats["total_requests"])
            ) * 100
        }

    async def close(self) -> None:
        """Clean up resources."""
        if self._owns_client and not self._http_client.is_closed:
            await self._http_client.aclose()
