"""
Bucket lifecycle: expiry, inactive grace period and cascading purge.

A bucket is ACTIVE until its owner deletes it (INACTIVE) or it is purged.
Expiry is not a stored state: an active bucket whose age reaches the expiry
period is treated as gone on the next read and removed by the next sweep.
An inactive bucket is kept for a grace period after its last update so the
owner can still see it, then purged.
"""

import asyncio
import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shared.models.bucket import Bucket
from shared.models.file import File
from shared.services.blob_store import BlobStoreError
from shared.services.bucket_cache import BucketCache
from shared.services.bucket_crud_manager import BucketCRUDManager
from shared.services.errors import PinDropError


logger = logging.getLogger(__name__)

REASON_EXPIRED = "expired"
REASON_INACTIVE = "inactive"
REASON_OWNER_DELETED = "owner_deleted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PURGED = "purged"


class BucketObjectStore(ABC):
    """The slice of file handling a purge needs."""

    @abstractmethod
    async def list_bucket_objects(self, bucket_id: uuid.UUID) -> List[File]:
        """Every file record of the bucket, active or soft deleted."""

    @abstractmethod
    async def delete_object(self, file: File) -> None:
        """Remove the blob behind a file record."""


@dataclass
class PurgeReport:
    bucket_id: uuid.UUID
    reason: str
    files_deleted: int = 0
    bytes_freed: int = 0
    orphaned_paths: List[str] = field(default_factory=list)
    state: LifecycleState = LifecycleState.PURGED


@dataclass
class SweepSummary:
    expired_buckets: int = 0
    inactive_buckets: int = 0
    files_deleted: int = 0
    bytes_freed: int = 0
    orphaned_blobs: int = 0
    failed_buckets: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def total_buckets(self) -> int:
        return self.expired_buckets + self.inactive_buckets

    def add(self, report: PurgeReport) -> None:
        if report.reason == REASON_EXPIRED:
            self.expired_buckets += 1
        else:
            self.inactive_buckets += 1
        self.files_deleted += report.files_deleted
        self.bytes_freed += report.bytes_freed
        self.orphaned_blobs += len(report.orphaned_paths)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired_buckets": self.expired_buckets,
            "inactive_buckets": self.inactive_buckets,
            "total_buckets": self.total_buckets,
            "files_deleted": self.files_deleted,
            "bytes_freed": self.bytes_freed,
            "orphaned_blobs": self.orphaned_blobs,
            "failed_buckets": self.failed_buckets,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class BucketLifecycleMonitor:
    """
    Applies the expiry and grace-period rules to buckets.

    Used lazily by every read path (check_on_read) and periodically by the
    sweep, so an expired bucket is unreachable even if no sweep has run yet.
    """

    def __init__(
        self,
        bucket_manager: BucketCRUDManager,
        object_store: BucketObjectStore,
        cache: Optional[BucketCache] = None,
        expiry_days: int = 7,
        inactive_grace_hours: int = 24,
        blob_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.bucket_manager = bucket_manager
        self.object_store = object_store
        self.cache = cache
        self.expiry = timedelta(days=expiry_days)
        self.inactive_grace = timedelta(hours=inactive_grace_hours)
        self.blob_timeout_seconds = blob_timeout_seconds
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config_manager,
        bucket_manager: BucketCRUDManager,
        object_store: BucketObjectStore,
        cache: Optional[BucketCache] = None
    ) -> "BucketLifecycleMonitor":
        return cls(
            bucket_manager=bucket_manager,
            object_store=object_store,
            cache=cache,
            expiry_days=config_manager.bucket_expiry_days,
            inactive_grace_hours=config_manager.inactive_grace_hours,
            blob_timeout_seconds=config_manager.storage_timeout_seconds,
        )

    def now(self) -> datetime:
        return self._clock()

    def is_expired(self, bucket: Bucket, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        return bucket.is_active and now - bucket.created_at >= self.expiry

    def is_purge_due(self, bucket: Bucket, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        if self.is_expired(bucket, now):
            return True
        return not bucket.is_active and now - bucket.updated_at >= self.inactive_grace

    @staticmethod
    def lifecycle_state(bucket: Bucket) -> LifecycleState:
        return LifecycleState.ACTIVE if bucket.is_active else LifecycleState.INACTIVE

    def days_until_expiration(self, bucket: Bucket, now: Optional[datetime] = None) -> int:
        """Whole days left before expiry, rounded up and never negative."""
        now = now or self._clock()
        remaining = (bucket.created_at + self.expiry - now).total_seconds()
        return max(0, math.ceil(remaining / 86400))

    def expires_at(self, bucket: Bucket) -> datetime:
        return bucket.created_at + self.expiry

    async def purge_bucket(self, bucket: Bucket, reason: str) -> PurgeReport:
        """
        Destroy a bucket, its blobs and its file records.

        Blob deletes are attempted once each; a failed or timed out delete is
        logged and reported as an orphan, and the purge continues. The file
        and bucket records are then removed in a single transaction.

        Raises:
            BackendUnavailableError: If the record deletion fails
        """
        report = PurgeReport(bucket_id=bucket.id, reason=reason)
        files = await self.object_store.list_bucket_objects(bucket.id)

        for file in files:
            try:
                await asyncio.wait_for(
                    self.object_store.delete_object(file),
                    timeout=self.blob_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timed out deleting blob {file.storage_path} of bucket {bucket.id}")
                report.orphaned_paths.append(file.storage_path)
            except BlobStoreError as e:
                logger.warning(f"Failed to delete blob {file.storage_path} of bucket {bucket.id}: {e}")
                report.orphaned_paths.append(file.storage_path)

        report.files_deleted = await self.bucket_manager.purge(bucket.id)
        report.bytes_freed = sum(f.size for f in files)

        if self.cache is not None:
            self.cache.invalidate(bucket.id)

        logger.info(
            f"Purged bucket {bucket.id} ({reason}): {report.files_deleted} files, "
            f"{report.bytes_freed} bytes, {len(report.orphaned_paths)} orphaned blobs"
        )
        return report

    async def check_on_read(self, bucket: Bucket, now: Optional[datetime] = None) -> Optional[Bucket]:
        """
        Return the bucket if it is still reachable, purging it otherwise.

        A failed inline purge is logged; the bucket is unreachable either way
        and the next sweep retries the purge.
        """
        now = now or self._clock()
        if not self.is_purge_due(bucket, now):
            return bucket

        reason = REASON_EXPIRED if self.is_expired(bucket, now) else REASON_INACTIVE
        try:
            await self.purge_bucket(bucket, reason)
        except PinDropError as e:
            logger.error(f"Inline purge of bucket {bucket.id} failed, left for sweep: {e}")
            if self.cache is not None:
                self.cache.invalidate(bucket.id)
        return None

    async def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Purge every expired active bucket and every inactive bucket past its
        grace period, one bucket at a time.

        A failure on one bucket is counted and logged; the sweep continues.
        """
        now = now or self._clock()
        summary = SweepSummary(started_at=self._clock())

        expired = await self.bucket_manager.list_expired(now - self.expiry)
        inactive = await self.bucket_manager.list_inactive_since(now - self.inactive_grace)
        logger.info(f"Sweep found {len(expired)} expired and {len(inactive)} inactive buckets")

        for bucket, reason in (
            [(b, REASON_EXPIRED) for b in expired] + [(b, REASON_INACTIVE) for b in inactive]
        ):
            try:
                report = await self.purge_bucket(bucket, reason)
            except PinDropError as e:
                summary.failed_buckets += 1
                logger.error(f"Sweep failed to purge bucket {bucket.id}: {e}")
                continue
            summary.add(report)

        summary.finished_at = self._clock()
        logger.info(f"Sweep complete: {summary.to_dict()}")
        return summary
