"""
Bucket CRUD manager: persistence of bucket records in PostgreSQL.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from shared.database.connection_manager import DatabaseConnectionManager, translate_backend_errors
from shared.models.bucket import Bucket
from shared.models.credential import (
    CredentialFormatError,
    credential_from_columns,
    credential_to_columns,
)
from shared.services.errors import BucketNotFoundError


logger = logging.getLogger(__name__)

BUCKET_COLUMNS = """
    id, name, description, owner_id, owner_email, owner_name, collaborators,
    pin_code, encrypted_pin, hashed_pin, is_active, file_count, storage_used,
    preview, color, created_at, updated_at, deleted_at, deleted_reason
"""


class BucketCRUDManager:
    """Manage bucket records and the queries the lifecycle sweep relies on."""

    def __init__(self, database_manager: DatabaseConnectionManager):
        self._db = database_manager

    @translate_backend_errors
    async def create_bucket(self, bucket: Bucket) -> Bucket:
        """
        Insert a new bucket; the database assigns its id.

        Args:
            bucket: Unsaved bucket (id is None)

        Returns:
            The same bucket with id and timestamps from the database
        """
        columns = credential_to_columns(bucket.credential)

        async with self._db.transaction() as conn:
            row = await conn.fetchrow(f"""
                INSERT INTO buckets (
                    name, description, owner_id, owner_email, owner_name,
                    collaborators, pin_code, encrypted_pin, hashed_pin,
                    is_active, file_count, storage_used, preview, color,
                    created_at, updated_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16
                )
                RETURNING id, created_at, updated_at
            """,
            bucket.name,
            bucket.description,
            bucket.owner_id,
            bucket.owner_email,
            bucket.owner_name,
            list(bucket.collaborators),
            columns["pin_code"],
            columns["encrypted_pin"],
            columns["hashed_pin"],
            bucket.is_active,
            bucket.file_count,
            bucket.storage_used,
            bucket.preview,
            bucket.color,
            bucket.created_at,
            bucket.updated_at
            )

        bucket.id = _to_uuid(row["id"])
        bucket.created_at = row["created_at"]
        bucket.updated_at = row["updated_at"]
        return bucket

    @translate_backend_errors
    async def get_bucket(self, bucket_id: uuid.UUID) -> Bucket:
        """
        Get a bucket by ID, active or not.

        Raises:
            BucketNotFoundError: If no record exists
        """
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {BUCKET_COLUMNS} FROM buckets WHERE id = $1",
                bucket_id
            )

        if row is None:
            raise BucketNotFoundError()

        return self._row_to_bucket(row)

    @translate_backend_errors
    async def find_active_by_pin_code(self, pin_code: str) -> Optional[Bucket]:
        """Equality lookup on the legacy plaintext PIN column."""
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {BUCKET_COLUMNS} FROM buckets
                WHERE pin_code = $1 AND is_active = TRUE
                LIMIT 1
                """,
                pin_code
            )

        if row is None:
            return None
        return self._row_to_bucket(row)

    @translate_backend_errors
    async def list_active_by_hashed_pin(self, hashed_pin: str) -> List[Bucket]:
        """
        Active protected buckets whose stored keyed hash equals `hashed_pin`,
        oldest first. Rows with a malformed credential are skipped.
        """
        async with self._db.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {BUCKET_COLUMNS} FROM buckets
                WHERE is_active = TRUE AND hashed_pin = $1
                ORDER BY created_at ASC
            """, hashed_pin)

        return self._rows_to_buckets(rows)

    @translate_backend_errors
    async def list_by_owner(self, owner_id: str, include_inactive: bool = False) -> List[Bucket]:
        """Buckets owned by a user, newest first."""
        query = f"SELECT {BUCKET_COLUMNS} FROM buckets WHERE owner_id = $1"
        if not include_inactive:
            query += " AND is_active = TRUE"
        query += " ORDER BY created_at DESC"

        async with self._db.acquire() as conn:
            rows = await conn.fetch(query, owner_id)

        return self._rows_to_buckets(rows)

    @translate_backend_errors
    async def list_shared_with(self, email: str) -> List[Bucket]:
        """Active buckets listing `email` as a collaborator, newest first."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {BUCKET_COLUMNS} FROM buckets
                WHERE $1 = ANY(collaborators) AND is_active = TRUE
                ORDER BY created_at DESC
            """, email)

        return self._rows_to_buckets(rows)

    @translate_backend_errors
    async def list_expired(self, created_before: datetime) -> List[Bucket]:
        """Active buckets created at or before the cutoff."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {BUCKET_COLUMNS} FROM buckets
                WHERE is_active = TRUE AND created_at <= $1
                ORDER BY created_at ASC
            """, created_before)

        return self._rows_to_buckets(rows)

    @translate_backend_errors
    async def list_inactive_since(self, updated_before: datetime) -> List[Bucket]:
        """Inactive buckets last updated at or before the cutoff."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {BUCKET_COLUMNS} FROM buckets
                WHERE is_active = FALSE AND updated_at <= $1
                ORDER BY updated_at ASC
            """, updated_before)

        return self._rows_to_buckets(rows)

    @translate_backend_errors
    async def update_bucket(self, bucket: Bucket) -> Bucket:
        """
        Persist the mutable attributes of a bucket.

        The credential and creation timestamp are immutable and not written.

        Raises:
            BucketNotFoundError: If the record no longer exists
        """
        bucket.updated_at = datetime.now(timezone.utc)

        async with self._db.transaction() as conn:
            result = await conn.execute("""
                UPDATE buckets SET
                    name = $2, description = $3, collaborators = $4,
                    is_active = $5, preview = $6, color = $7,
                    deleted_at = $8, deleted_reason = $9, updated_at = $10
                WHERE id = $1
            """,
            bucket.id,
            bucket.name,
            bucket.description,
            list(bucket.collaborators),
            bucket.is_active,
            bucket.preview,
            bucket.color,
            bucket.deleted_at,
            bucket.deleted_reason,
            bucket.updated_at
            )

        if result == "UPDATE 0":
            raise BucketNotFoundError()
        return bucket

    @translate_backend_errors
    async def update_stats(self, bucket_id: uuid.UUID, file_count: int, storage_used: int) -> None:
        """Store recomputed file count and byte size."""
        async with self._db.acquire() as conn:
            await conn.execute("""
                UPDATE buckets SET file_count = $2, storage_used = $3, updated_at = $4
                WHERE id = $1
            """, bucket_id, file_count, storage_used, datetime.now(timezone.utc))

    @translate_backend_errors
    async def purge(self, bucket_id: uuid.UUID) -> int:
        """
        Remove a bucket record and every file record it owns in one transaction.

        Returns:
            Number of file records removed
        """
        async with self._db.transaction() as conn:
            files_result = await conn.execute(
                "DELETE FROM files WHERE bucket_id = $1", bucket_id
            )
            await conn.execute("DELETE FROM buckets WHERE id = $1", bucket_id)

        return _affected_rows(files_result)

    def _rows_to_buckets(self, rows) -> List[Bucket]:
        buckets = []
        for row in rows:
            try:
                buckets.append(self._row_to_bucket(row))
            except CredentialFormatError as e:
                logger.error(f"Skipping bucket {row['id']} with malformed credential: {e}")
        return buckets

    def _row_to_bucket(self, row) -> Bucket:
        """Convert database row to Bucket instance."""
        return Bucket(
            id=_to_uuid(row["id"]),
            name=row["name"],
            description=row["description"],
            owner_id=row["owner_id"],
            owner_email=row["owner_email"],
            owner_name=row["owner_name"],
            collaborators=list(row["collaborators"] or []),
            credential=credential_from_columns(
                row["pin_code"], row["encrypted_pin"], row["hashed_pin"]
            ),
            is_active=row["is_active"],
            file_count=row["file_count"],
            storage_used=row["storage_used"],
            preview=row["preview"],
            color=row["color"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
            deleted_reason=row["deleted_reason"]
        )


def _to_uuid(val):
    """Normalize UUID fields: DB may return strings for UUID columns depending on driver."""
    if isinstance(val, str):
        return uuid.UUID(val)
    return val


def _affected_rows(status: Optional[str]) -> int:
    """Parse asyncpg command status such as 'DELETE 5'."""
    if not status or not isinstance(status, str):
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0
