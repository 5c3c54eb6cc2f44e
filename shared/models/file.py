"""
File model for objects stored inside a bucket.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any


IMAGE_TYPES = {"jpg", "jpeg", "png", "gif", "webp", "svg"}
DOCUMENT_TYPES = {"pdf", "doc", "docx", "txt", "rtf"}
VIDEO_TYPES = {"mp4", "avi", "mov", "wmv", "flv", "webm"}
AUDIO_TYPES = {"mp3", "wav", "flac", "aac", "ogg"}
ARCHIVE_TYPES = {"zip", "rar", "7z", "tar", "gz"}


class File:
    """
    File object stored in the blob backend and tracked in the files table.

    Attributes:
        id: UUID primary key
        bucket_id: References Bucket.id
        name: Display name (renameable)
        original_name: Name at upload time
        size: File size in bytes
        mime_type: MIME type
        uploaded_by: Uploader identity, None for anonymous PIN holders
        storage_path: Blob store path (content location handle)
        download_url: Retrievable URL returned by the blob store
        is_active: False once soft deleted
        download_count: Number of recorded downloads
        last_downloaded_at: Last download timestamp
        deleted_at: Soft delete timestamp
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: uuid.UUID,
        bucket_id: uuid.UUID,
        name: str,
        size: int,
        storage_path: str,
        mime_type: str = "application/octet-stream",
        original_name: Optional[str] = None,
        uploaded_by: Optional[str] = None,
        download_url: str = "",
        is_active: bool = True,
        download_count: int = 0,
        last_downloaded_at: Optional[datetime] = None,
        deleted_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        if size < 0:
            raise ValueError("size must be non-negative")

        self.id = id
        self.bucket_id = bucket_id
        self.name = name
        self.original_name = original_name or name
        self.size = size
        self.mime_type = mime_type or "application/octet-stream"
        self.uploaded_by = uploaded_by
        self.storage_path = storage_path
        self.download_url = download_url
        self.is_active = is_active
        self.download_count = download_count
        self.last_downloaded_at = last_downloaded_at
        self.deleted_at = deleted_at

        # Set timestamps
        now = datetime.now(timezone.utc)
        self.created_at = created_at or now
        self.updated_at = updated_at or now

    @staticmethod
    def build_storage_path(bucket_id: uuid.UUID, file_id: uuid.UUID, filename: str) -> str:
        """Blob path for an object: buckets/<bucket>/files/<file>-<name>."""
        return f"buckets/{bucket_id}/files/{file_id}-{filename}"

    @classmethod
    def create(
        cls,
        bucket_id: uuid.UUID,
        name: str,
        size: int,
        mime_type: str,
        uploaded_by: Optional[str] = None
    ) -> 'File':
        """Create a new file with generated UUID and its storage path."""
        file_id = uuid.uuid4()
        return cls(
            id=file_id,
            bucket_id=bucket_id,
            name=name,
            original_name=name,
            size=size,
            mime_type=mime_type,
            uploaded_by=uploaded_by,
            storage_path=cls.build_storage_path(bucket_id, file_id, name)
        )

    @property
    def file_type(self) -> str:
        """Lowercase extension of the file name."""
        if not self.name or "." not in self.name:
            return ""
        return self.name.rsplit(".", 1)[-1].lower()

    @property
    def category(self) -> str:
        ext = self.file_type
        if ext in IMAGE_TYPES:
            return "image"
        if ext in DOCUMENT_TYPES:
            return "document"
        if ext in VIDEO_TYPES:
            return "video"
        if ext in AUDIO_TYPES:
            return "audio"
        if ext in ARCHIVE_TYPES:
            return "archive"
        return "file"

    @property
    def is_deleted(self) -> bool:
        return not self.is_active

    def soft_delete(self) -> None:
        """Mark file as deleted (soft delete)."""
        now = datetime.now(timezone.utc)
        self.is_active = False
        self.deleted_at = now
        self.updated_at = now

    def record_download(self) -> None:
        now = datetime.now(timezone.utc)
        self.download_count += 1
        self.last_downloaded_at = now

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert file to dictionary.

        Returns:
            Dictionary representation of file
        """
        return {
            "id": str(self.id),
            "bucket_id": str(self.bucket_id),
            "name": self.name,
            "original_name": self.original_name,
            "size": self.size,
            "mime_type": self.mime_type,
            "type": self.file_type,
            "category": self.category,
            "uploaded_by": self.uploaded_by,
            "download_url": self.download_url,
            "is_active": self.is_active,
            "download_count": self.download_count,
            "last_downloaded_at": self.last_downloaded_at.isoformat() if self.last_downloaded_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }

    def __str__(self) -> str:
        """String representation of file."""
        return f"<File {self.name}>"

    def __repr__(self) -> str:
        """Detailed string representation for debugging."""
        return f"<File(id={self.id}, name={self.name}, bucket_id={self.bucket_id}, size={self.size})>"
