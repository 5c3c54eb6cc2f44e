"""
File operations inside a bucket: blob I/O paired with file records.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from shared.models.file import File
from shared.services.blob_store import BlobStore, BlobStoreError
from shared.services.bucket_crud_manager import BucketCRUDManager
from shared.services.errors import BackendUnavailableError, PinDropError, ValidationError
from shared.services.file_crud_manager import FileCRUDManager
from shared.services.lifecycle_monitor import BucketObjectStore


logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255


@dataclass
class FileUpload:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadFailure:
    filename: str
    error: str


@dataclass
class UploadResult:
    uploaded: List[File] = field(default_factory=list)
    failed: List[UploadFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self):
        return {
            "uploaded": [f.to_dict() for f in self.uploaded],
            "failed": [{"filename": f.filename, "error": f.error} for f in self.failed],
        }


def clean_filename(name: Optional[str]) -> str:
    """
    Validate a display/upload file name.

    Raises:
        ValidationError: If the name is empty, too long or contains a path separator
    """
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("File name is required")
    if len(cleaned) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"File name must be at most {MAX_FILENAME_LENGTH} characters")
    if "/" in cleaned or "\\" in cleaned or cleaned in (".", ".."):
        raise ValidationError("File name must not contain path separators")
    return cleaned


class FileService(BucketObjectStore):
    """
    Pairs blob store writes with file records.

    A file record is only written after its blob is stored; if the record
    write fails the blob is removed again.
    """

    def __init__(
        self,
        file_manager: FileCRUDManager,
        bucket_manager: BucketCRUDManager,
        blob_store: BlobStore
    ):
        self.file_manager = file_manager
        self.bucket_manager = bucket_manager
        self.blob_store = blob_store

    # BucketObjectStore

    async def list_bucket_objects(self, bucket_id: uuid.UUID) -> List[File]:
        return await self.file_manager.list_all_for_bucket(bucket_id)

    async def delete_object(self, file: File) -> None:
        await self.blob_store.delete(file.storage_path)

    # File operations

    async def store(
        self,
        bucket_id: uuid.UUID,
        upload: FileUpload,
        uploaded_by: Optional[str] = None
    ) -> File:
        """
        Store one upload: blob first, then the record.

        Raises:
            BackendUnavailableError: If either store fails
        """
        file = File.create(
            bucket_id=bucket_id,
            name=clean_filename(upload.filename),
            size=upload.size,
            mime_type=upload.content_type,
            uploaded_by=uploaded_by
        )

        try:
            blob = await self.blob_store.put(file.storage_path, upload.content, file.mime_type)
        except BlobStoreError as e:
            raise BackendUnavailableError("Blob store is unavailable", cause=e)

        file.storage_path = blob.location or file.storage_path
        file.download_url = blob.url

        try:
            return await self.file_manager.create_file(file)
        except PinDropError:
            try:
                await self.blob_store.delete(file.storage_path)
            except BlobStoreError as e:
                logger.warning(f"Blob {file.storage_path} orphaned after failed record write: {e}")
            raise

    async def store_many(
        self,
        bucket_id: uuid.UUID,
        uploads: List[FileUpload],
        uploaded_by: Optional[str] = None
    ) -> UploadResult:
        """Store each upload independently, collecting per-file failures."""
        result = UploadResult()
        for upload in uploads:
            try:
                result.uploaded.append(await self.store(bucket_id, upload, uploaded_by))
            except PinDropError as e:
                logger.warning(f"Upload of {upload.filename} to bucket {bucket_id} failed: {e}")
                result.failed.append(UploadFailure(filename=upload.filename, error=str(e)))
        return result

    async def list_files(self, bucket_id: uuid.UUID) -> List[File]:
        return await self.file_manager.list_for_bucket(bucket_id)

    async def get_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> File:
        return await self.file_manager.get_file(bucket_id, file_id)

    async def rename_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID, new_name: str) -> File:
        return await self.file_manager.rename_file(bucket_id, file_id, clean_filename(new_name))

    async def delete_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID, permanent: bool = False) -> None:
        """
        Soft delete a file, or remove its blob and record when permanent.

        Raises:
            FileObjectNotFoundError: If the file is not an active file of the bucket
            BackendUnavailableError: If the blob could not be removed
        """
        if not permanent:
            await self.file_manager.soft_delete(bucket_id, file_id)
            return

        file = await self.file_manager.get_file(bucket_id, file_id)
        try:
            await self.blob_store.delete(file.storage_path)
        except BlobStoreError as e:
            raise BackendUnavailableError("Blob store is unavailable", cause=e)
        await self.file_manager.delete_file(bucket_id, file_id)

    async def record_download(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> File:
        """
        Look up a file for download and count the download.

        A failure to update the counter is logged and does not fail the download.
        """
        file = await self.file_manager.get_file(bucket_id, file_id)
        try:
            await self.file_manager.increment_download(file.id)
            file.record_download()
        except BackendUnavailableError as e:
            logger.warning(f"Could not record download of file {file.id}: {e}")
        return file

    async def refresh_bucket_stats(self, bucket_id: uuid.UUID) -> Tuple[int, int]:
        """Recompute file count and size from the live file set and store them."""
        file_count, storage_used = await self.file_manager.bucket_stats(bucket_id)
        await self.bucket_manager.update_stats(bucket_id, file_count, storage_used)
        return file_count, storage_used
