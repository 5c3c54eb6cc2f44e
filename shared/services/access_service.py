"""
Access service: every bucket and file operation the gateway exposes.

Wires the PIN codec, attempt governor, lifecycle monitor, storage accountant
and file service together. Every read of a bucket passes through the
lifecycle monitor so expired buckets are never served.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from shared.models.bucket import Bucket
from shared.models.credential import LegacyPlainCredential
from shared.models.file import File
from shared.models.owner import Owner
from shared.security.attempt_governor import AttemptGovernor, AttemptStatus
from shared.security.pin_codec import DecryptionError, PinCodec, generate_pin, normalize_pin, pin_format
from shared.services import analytics
from shared.services.analytics import AnalyticsSink, NullAnalyticsSink
from shared.services.bucket_cache import BucketCache
from shared.services.bucket_crud_manager import BucketCRUDManager
from shared.services.errors import (
    BackendUnavailableError,
    BucketNotFoundError,
    InvalidPinFormatError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from shared.services.file_service import FileService, FileUpload, UploadResult, clean_filename
from shared.services.lifecycle_monitor import (
    REASON_OWNER_DELETED,
    BucketLifecycleMonitor,
    SweepSummary,
)
from shared.services.storage_accountant import StorageAccountant


logger = logging.getLogger(__name__)

MAX_BUCKET_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


def _clean_bucket_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Bucket name is required")
    if len(cleaned) > MAX_BUCKET_NAME_LENGTH:
        raise ValidationError(f"Bucket name must be at most {MAX_BUCKET_NAME_LENGTH} characters")
    return cleaned


def _clean_description(description: Optional[str]) -> str:
    cleaned = (description or "").strip()
    if len(cleaned) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return cleaned


def _clean_email(email: Optional[str]) -> str:
    cleaned = (email or "").strip().lower()
    if "@" not in cleaned or cleaned.startswith("@") or cleaned.endswith("@"):
        raise ValidationError("A valid email address is required")
    return cleaned


class AccessService:
    """
    Composition root for bucket access.

    Owner-only operations take the caller's owner id and raise
    PermissionDeniedError for anyone else. Anonymous holders reach a bucket
    through resolve_by_pin, or through open_with_pin once they know its id.
    """

    def __init__(
        self,
        codec: PinCodec,
        governor: AttemptGovernor,
        bucket_manager: BucketCRUDManager,
        file_service: FileService,
        monitor: BucketLifecycleMonitor,
        accountant: StorageAccountant,
        cache: Optional[BucketCache] = None,
        analytics_sink: Optional[AnalyticsSink] = None,
        create_attempts: int = 5,
        create_retry_delay: float = 0.1
    ):
        self.codec = codec
        self.governor = governor
        self.bucket_manager = bucket_manager
        self.file_service = file_service
        self.monitor = monitor
        self.accountant = accountant
        self.cache = cache or BucketCache(ttl_seconds=0)
        self.analytics = analytics_sink or NullAnalyticsSink()
        self.create_attempts = create_attempts
        self.create_retry_delay = create_retry_delay

    # Buckets

    async def create_bucket(
        self,
        owner: Owner,
        name: str,
        description: str = "",
        preview: Optional[str] = None,
        color: Optional[str] = None,
        collaborators: Optional[List[str]] = None
    ) -> Tuple[Bucket, str]:
        """
        Create a bucket with a freshly generated PIN.

        Returns:
            The stored bucket and its PIN in clear text, shown once to the owner

        Raises:
            ValidationError: If the name or description is invalid
            BackendUnavailableError: If every persistence attempt failed
        """
        name = _clean_bucket_name(name)
        description = _clean_description(description)
        collaborators = [_clean_email(c) for c in collaborators or []]

        pin = generate_pin()
        credential = self.codec.protect(pin)

        last_error: Optional[BackendUnavailableError] = None
        for attempt in range(self.create_attempts):
            bucket = Bucket.create(
                name=name,
                owner_id=owner.user_id,
                credential=credential,
                description=description,
                owner_email=owner.email,
                owner_name=owner.name,
                collaborators=collaborators,
                preview=preview,
                color=color
            )
            try:
                bucket = await self.bucket_manager.create_bucket(bucket)
                break
            except BackendUnavailableError as e:
                last_error = e
                logger.warning(f"Bucket creation attempt {attempt + 1}/{self.create_attempts} failed: {e}")
                if attempt < self.create_attempts - 1:
                    await asyncio.sleep(self.create_retry_delay)
        else:
            raise BackendUnavailableError(
                "Failed to create bucket",
                cause=last_error.cause if last_error else None
            )

        self.cache.put(bucket)
        self.analytics.emit(analytics.BUCKET_CREATE, {"bucket_id": str(bucket.id)})
        logger.info(f"Created bucket {bucket.id} for owner {owner.user_id}")
        return bucket, pin

    async def _load_bucket(self, bucket_id: uuid.UUID) -> Bucket:
        bucket = self.cache.get(bucket_id)
        if bucket is None:
            bucket = await self.bucket_manager.get_bucket(bucket_id)
            self.cache.put(bucket)

        if await self.monitor.check_on_read(bucket) is None:
            raise BucketNotFoundError()
        return bucket

    async def get_bucket(self, bucket_id: uuid.UUID) -> Bucket:
        """
        Get a reachable bucket: active and unexpired, or inactive and still
        inside its grace period.

        Raises:
            BucketNotFoundError: If missing, expired or past its grace period
        """
        return await self._load_bucket(bucket_id)

    async def _get_active_bucket(self, bucket_id: uuid.UUID) -> Bucket:
        bucket = await self._load_bucket(bucket_id)
        if not bucket.is_active:
            raise BucketNotFoundError()
        return bucket

    async def _get_owned_bucket(self, bucket_id: uuid.UUID, owner_id: str) -> Bucket:
        bucket = await self._load_bucket(bucket_id)
        if not bucket.is_owned_by(owner_id):
            raise PermissionDeniedError("Only the bucket owner can do this")
        return bucket

    async def _find_by_pin(self, candidate: str) -> Optional[Bucket]:
        """Legacy plaintext equality first, then protected buckets by keyed hash."""
        bucket = await self.bucket_manager.find_active_by_pin_code(candidate)
        if bucket is not None and self.codec.matches(candidate, bucket.credential):
            return bucket

        for bucket in await self.bucket_manager.list_active_by_hashed_pin(self.codec.hash_pin(candidate)):
            if self.codec.matches(candidate, bucket.credential):
                return bucket
        return None

    def _emit_pin_attempt(self, raw_pin: Optional[str], status: str) -> None:
        self.analytics.emit(analytics.PIN_ATTEMPT, {"pin_format": pin_format(raw_pin), "status": status})

    async def resolve_by_pin(
        self,
        pin: str,
        origin: Optional[str],
        challenge_token: Optional[str] = None
    ) -> Bucket:
        """
        Find the active bucket a PIN opens.

        Args:
            pin: PIN as typed by the caller
            origin: Caller network origin used by the attempt governor
            challenge_token: Challenge response, needed after repeated failures

        Raises:
            InvalidPinFormatError: Malformed PIN; no attempt is consumed
            RateLimitedError: Challenge required or origin locked out
            BucketNotFoundError: No reachable bucket matches
        """
        try:
            candidate = normalize_pin(pin)
        except InvalidPinFormatError:
            self._emit_pin_attempt(pin, "invalid_format")
            raise

        decision = await self.governor.check_and_record(origin, challenge_token)
        if decision.status == AttemptStatus.LOCKED_OUT:
            self._emit_pin_attempt(pin, "locked_out")
            raise RateLimitedError(
                f"Too many attempts. Try again in {decision.minutes_left} minutes.",
                minutes_left=decision.minutes_left
            )
        if decision.status == AttemptStatus.CHALLENGE_REQUIRED:
            self._emit_pin_attempt(pin, "challenge_required")
            raise RateLimitedError("Please complete the verification challenge.", challenge_required=True)

        bucket = await self._find_by_pin(candidate)
        if bucket is not None and await self.monitor.check_on_read(bucket) is None:
            bucket = None

        if bucket is None:
            self.governor.record_failure(origin)
            self._emit_pin_attempt(pin, "not_found")
            raise BucketNotFoundError()

        self.cache.put(bucket)
        self._emit_pin_attempt(pin, "success")
        self.analytics.emit(analytics.PIN_ACCESS, {"bucket_id": str(bucket.id)})
        return bucket

    async def open_with_pin(
        self,
        bucket_id: uuid.UUID,
        pin: str,
        origin: Optional[str],
        challenge_token: Optional[str] = None
    ) -> Bucket:
        """
        Check a PIN against one known bucket, for holders acting on its files.

        Successful checks consume nothing; a mismatch charges the origin an
        attempt and a failure. Locked out origins are refused, and origins
        that must pass a challenge need a verified `challenge_token`.

        Raises:
            InvalidPinFormatError: Malformed PIN
            RateLimitedError: Challenge required or origin locked out
            BucketNotFoundError: Bucket unreachable or PIN does not match
        """
        candidate = normalize_pin(pin)

        decision = await self.governor.check(origin, challenge_token)
        if decision.status == AttemptStatus.LOCKED_OUT:
            raise RateLimitedError(
                f"Too many attempts. Try again in {decision.minutes_left} minutes.",
                minutes_left=decision.minutes_left
            )
        if decision.status == AttemptStatus.CHALLENGE_REQUIRED:
            raise RateLimitedError("Please complete the verification challenge.", challenge_required=True)

        try:
            bucket = await self._get_active_bucket(bucket_id)
        except BucketNotFoundError:
            self.governor.record_failure(origin, consume_attempt=True)
            raise

        if not self.codec.matches(candidate, bucket.credential):
            self.governor.record_failure(origin, consume_attempt=True)
            raise BucketNotFoundError()
        return bucket

    async def authorize_member(self, bucket_id: uuid.UUID, caller: Owner) -> Bucket:
        """
        Owner or collaborator access to a bucket.

        Raises:
            BucketNotFoundError: If the bucket is unreachable
            PermissionDeniedError: If the caller is neither owner nor collaborator
        """
        bucket = await self._load_bucket(bucket_id)
        if bucket.is_owned_by(caller.user_id) or bucket.has_access(caller.email):
            return bucket
        raise PermissionDeniedError("You do not have access to this bucket")

    async def reveal_pin(self, bucket_id: uuid.UUID, owner_id: str) -> str:
        """
        Show the PIN of a bucket to its owner.

        An undecryptable stored PIN is reported as a missing bucket.
        """
        bucket = await self._get_owned_bucket(bucket_id, owner_id)
        credential = bucket.credential
        if isinstance(credential, LegacyPlainCredential):
            return credential.pin_code

        try:
            return self.codec.reveal(credential.encrypted_pin)
        except DecryptionError as e:
            logger.error(f"Stored PIN of bucket {bucket.id} cannot be decrypted: {e}")
            raise BucketNotFoundError()

    async def update_bucket(
        self,
        bucket_id: uuid.UUID,
        owner_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        preview: Optional[str] = None,
        color: Optional[str] = None
    ) -> Bucket:
        bucket = await self._get_owned_bucket(bucket_id, owner_id)
        if not bucket.is_active:
            raise BucketNotFoundError()

        if name is not None:
            bucket.name = _clean_bucket_name(name)
        if description is not None:
            bucket.description = _clean_description(description)
        if preview:
            bucket.preview = preview
        if color:
            bucket.color = color

        bucket = await self.bucket_manager.update_bucket(bucket)
        self.cache.put(bucket)
        return bucket

    async def add_collaborator(self, bucket_id: uuid.UUID, owner_id: str, email: str) -> Bucket:
        bucket = await self._get_owned_bucket(bucket_id, owner_id)
        if not bucket.is_active:
            raise BucketNotFoundError()
        if bucket.add_collaborator(_clean_email(email)):
            bucket = await self.bucket_manager.update_bucket(bucket)
            self.cache.put(bucket)
        return bucket

    async def remove_collaborator(self, bucket_id: uuid.UUID, owner_id: str, email: str) -> Bucket:
        bucket = await self._get_owned_bucket(bucket_id, owner_id)
        if not bucket.is_active:
            raise BucketNotFoundError()
        if bucket.remove_collaborator(_clean_email(email)):
            bucket = await self.bucket_manager.update_bucket(bucket)
            self.cache.put(bucket)
        return bucket

    async def _reachable(self, buckets: List[Bucket]) -> List[Bucket]:
        reachable = []
        for bucket in buckets:
            if await self.monitor.check_on_read(bucket) is not None:
                reachable.append(bucket)
        return reachable

    async def list_owned_buckets(self, owner_id: str) -> List[Bucket]:
        """Active, unexpired buckets of an owner; expired ones are purged on the way."""
        return await self._reachable(await self.bucket_manager.list_by_owner(owner_id))

    async def list_shared_buckets(self, email: str) -> List[Bucket]:
        return await self._reachable(await self.bucket_manager.list_shared_with(_clean_email(email)))

    async def delete_bucket(self, bucket_id: uuid.UUID, owner_id: str, permanent: bool = False) -> None:
        """
        Soft delete a bucket, or purge it immediately when `permanent`.

        A soft deleted bucket stays visible to its owner for the grace period
        and is purged by the next sweep after that.
        """
        bucket = await self._get_owned_bucket(bucket_id, owner_id)

        if permanent:
            await self.monitor.purge_bucket(bucket, REASON_OWNER_DELETED)
        elif bucket.is_active:
            bucket.is_active = False
            bucket.deleted_at = datetime.now(timezone.utc)
            bucket.deleted_reason = REASON_OWNER_DELETED
            await self.bucket_manager.update_bucket(bucket)

        self.cache.invalidate(bucket_id)
        self.analytics.emit(analytics.BUCKET_DELETE, {"bucket_id": str(bucket_id), "permanent": permanent})

    # Files

    async def upload_files(
        self,
        bucket_id: uuid.UUID,
        uploads: List[FileUpload],
        uploader_id: Optional[str] = None
    ) -> UploadResult:
        """
        Upload a batch of files into an active bucket.

        The whole batch is checked against the per-object ceiling and the
        bucket owner's quota before anything is written. Files are then stored
        one by one; a failure on one file does not stop the others.

        Raises:
            ValidationError: Empty batch, bad file name, oversized file or quota exceeded
            BucketNotFoundError: If the bucket is unreachable or inactive
        """
        if not uploads:
            raise ValidationError("No files provided")

        bucket = await self._get_active_bucket(bucket_id)

        for upload in uploads:
            clean_filename(upload.filename)
            self.accountant.check_object_size(upload.size, upload.filename)
        await self.accountant.ensure_admitted(bucket.owner_id, [u.size for u in uploads])

        result = await self.file_service.store_many(bucket.id, uploads, uploader_id)

        if result.uploaded:
            await self._refresh_stats(bucket.id)
        for file in result.uploaded:
            self.analytics.emit(analytics.FILE_UPLOAD, {
                "bucket_id": str(bucket.id),
                "file_type": file.file_type,
                "size": file.size,
            })
        return result

    async def _refresh_stats(self, bucket_id: uuid.UUID) -> None:
        try:
            await self.file_service.refresh_bucket_stats(bucket_id)
        except BackendUnavailableError as e:
            logger.warning(f"Could not refresh stats of bucket {bucket_id}: {e}")
        self.cache.invalidate(bucket_id)

    async def list_files(self, bucket_id: uuid.UUID) -> List[File]:
        await self._load_bucket(bucket_id)
        return await self.file_service.list_files(bucket_id)

    async def rename_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID, new_name: str) -> File:
        await self._get_active_bucket(bucket_id)
        return await self.file_service.rename_file(bucket_id, file_id, new_name)

    async def delete_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID, permanent: bool = False) -> None:
        await self._get_active_bucket(bucket_id)
        await self.file_service.delete_file(bucket_id, file_id, permanent=permanent)
        await self._refresh_stats(bucket_id)

    async def download_file(self, bucket_id: uuid.UUID, file_id: uuid.UUID) -> File:
        """
        Look up a file for download and count it.

        Returns:
            The file; its download_url is the retrievable location
        """
        await self._load_bucket(bucket_id)
        file = await self.file_service.record_download(bucket_id, file_id)
        self.analytics.emit(analytics.FILE_DOWNLOAD, {
            "bucket_id": str(bucket_id),
            "file_type": file.file_type,
        })
        return file

    # Maintenance

    async def run_sweep(self) -> SweepSummary:
        return await self.monitor.sweep()

    def days_until_expiration(self, bucket: Bucket) -> int:
        return self.monitor.days_until_expiration(bucket)
