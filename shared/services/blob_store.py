"""
Blob store interface.

Object content lives outside the document store; file records keep the
`storage_path` handle returned when the object was written.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class BlobStoreError(Exception):
    """Raised when the blob store rejects or cannot complete an operation."""


@dataclass(frozen=True)
class StoredBlob:
    location: str
    url: str


class BlobStore(ABC):

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> StoredBlob:
        """
        Write an object.

        Raises:
            BlobStoreError: If the object could not be stored
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """
        Remove an object. Deleting a missing object is not an error.

        Raises:
            BlobStoreError: If the store failed to remove the object
        """

    async def close(self) -> None:
        return None
