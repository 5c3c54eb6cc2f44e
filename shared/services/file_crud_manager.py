"""
File CRUD manager: persistence of file records and usage aggregates.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Tuple

from shared.database.connection_manager import DatabaseConnectionManager, translate_backend_errors
from shared.models.file import File
from shared.services.errors import FileObjectNotFoundError


logger = logging.getLogger(__name__)

FILE_COLUMNS = """
    id, bucket_id, name, original_name, size, mime_type, uploaded_by,
    storage_path, download_url, is_active, download_count, last_downloaded_at,
    created_at, updated_at, deleted_at
"""


class FileCRUDManager:
    """Manage file records belonging to buckets."""

    def __init__(self, database_manager: DatabaseConnectionManager):
        self._db = database_manager

    @translate_backend_errors
    async def create_file(self, file: File) -> File:
        """
        Insert a file record after its blob has been stored.

        Args:
            file: File with id, storage_path and download_url set

        Returns:
            The stored file
        """
        async with self._db.acquire() as conn:
            await conn.execute(f"""
                INSERT INTO files ({FILE_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            """,
            file.id,
            file.bucket_id,
            file.name,
            file.original_name,
            file.size,
            file.mime_type,
            file.uploaded_by,
            file.storage_path,
            file.download_url,
            file.is_active,
            file.download_count,
            file.last_downloaded_at,
            file.created_at,
            file.updated_at,
            file.deleted_at
            )

        logger.debug(f"Created file record {file.id} in bucket {file.bucket_id}")
        return file

    @translate_backend_errors
    async def get_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> File:
        """
        Get an active file of a bucket.

        Raises:
            FileObjectNotFoundError: If absent, soft deleted or in another bucket
        """
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {FILE_COLUMNS} FROM files
                WHERE id = $1 AND bucket_id = $2 AND is_active = TRUE
                """,
                file_id, bucket_id
            )

        if row is None:
            raise FileObjectNotFoundError()
        return self._row_to_file(row)

    @translate_backend_errors
    async def list_for_bucket(self, bucket_id: uuid.UUID) -> List[File]:
        """Active files of a bucket, newest first."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {FILE_COLUMNS} FROM files
                WHERE bucket_id = $1 AND is_active = TRUE
                ORDER BY created_at DESC
            """, bucket_id)

        return [self._row_to_file(row) for row in rows]

    @translate_backend_errors
    async def list_all_for_bucket(self, bucket_id: uuid.UUID) -> List[File]:
        """Every file record of a bucket, soft deleted ones included."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {FILE_COLUMNS} FROM files WHERE bucket_id = $1",
                bucket_id
            )

        return [self._row_to_file(row) for row in rows]

    @translate_backend_errors
    async def rename_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID, new_name: str) -> File:
        """
        Change the display name of an active file.

        Raises:
            FileObjectNotFoundError: If the file is not an active file of the bucket
        """
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE files SET name = $3, updated_at = $4
                WHERE id = $1 AND bucket_id = $2 AND is_active = TRUE
                RETURNING {FILE_COLUMNS}
            """, file_id, bucket_id, new_name, datetime.now(timezone.utc))

        if row is None:
            raise FileObjectNotFoundError()
        return self._row_to_file(row)

    @translate_backend_errors
    async def soft_delete(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> None:
        """
        Mark an active file as deleted.

        Raises:
            FileObjectNotFoundError: If the file is not an active file of the bucket
        """
        now = datetime.now(timezone.utc)
        async with self._db.acquire() as conn:
            result = await conn.execute("""
                UPDATE files SET is_active = FALSE, deleted_at = $3, updated_at = $3
                WHERE id = $1 AND bucket_id = $2 AND is_active = TRUE
            """, file_id, bucket_id, now)

        if result == "UPDATE 0":
            raise FileObjectNotFoundError()

    @translate_backend_errors
    async def delete_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> None:
        """Remove a file record permanently."""
        async with self._db.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM files WHERE id = $1 AND bucket_id = $2",
                file_id, bucket_id
            )

        if result == "DELETE 0":
            raise FileObjectNotFoundError()

    @translate_backend_errors
    async def increment_download(self, file_id: uuid.UUID) -> None:
        async with self._db.acquire() as conn:
            await conn.execute("""
                UPDATE files
                SET download_count = download_count + 1, last_downloaded_at = $2
                WHERE id = $1
            """, file_id, datetime.now(timezone.utc))

    @translate_backend_errors
    async def bucket_stats(self, bucket_id: uuid.UUID) -> Tuple[int, int]:
        """
        Count and total size of the active files of a bucket.

        Returns:
            (file_count, storage_used)
        """
        async with self._db.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT COUNT(*) AS file_count, COALESCE(SUM(size), 0) AS storage_used
                FROM files
                WHERE bucket_id = $1 AND is_active = TRUE
            """, bucket_id)

        return int(row["file_count"]), int(row["storage_used"])

    @translate_backend_errors
    async def total_active_bytes_for_owner(self, owner_id: str) -> int:
        """Sum of active file sizes across the owner's active buckets."""
        async with self._db.acquire() as conn:
            total = await conn.fetchval("""
                SELECT COALESCE(SUM(f.size), 0)
                FROM files f
                JOIN buckets b ON b.id = f.bucket_id
                WHERE b.owner_id = $1 AND b.is_active = TRUE AND f.is_active = TRUE
            """, owner_id)

        return int(total or 0)

    def _row_to_file(self, row) -> File:
        """Convert database row to File instance."""
        return File(
            id=_to_uuid(row["id"]),
            bucket_id=_to_uuid(row["bucket_id"]),
            name=row["name"],
            original_name=row["original_name"],
            size=row["size"],
            mime_type=row["mime_type"],
            uploaded_by=row["uploaded_by"],
            storage_path=row["storage_path"],
            download_url=row["download_url"],
            is_active=row["is_active"],
            download_count=row["download_count"],
            last_downloaded_at=row["last_downloaded_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"]
        )


def _to_uuid(val):
    if isinstance(val, str):
        return uuid.UUID(val)
    return val
