"""
Storage quota accounting.

Usage is charged to the owner of the target bucket, whoever uploads, and is
computed on demand from the live file set across the owner's active buckets.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from shared.services.errors import FileTooLargeError, QuotaExceededError
from shared.services.file_crud_manager import FileCRUDManager


logger = logging.getLogger(__name__)

MB = 1024 * 1024


def _mb(size: int) -> str:
    return f"{size / MB:.1f}MB"


@dataclass(frozen=True)
class Admission:
    allowed: bool
    used: int
    remaining: int
    reason: Optional[str] = None


class StorageAccountant:

    def __init__(
        self,
        file_manager: FileCRUDManager,
        max_total_bytes: int = 30 * MB,
        max_file_bytes: int = 25 * MB
    ):
        self.file_manager = file_manager
        self.max_total_bytes = max_total_bytes
        self.max_file_bytes = max_file_bytes

    @classmethod
    def from_config(cls, config_manager, file_manager: FileCRUDManager) -> "StorageAccountant":
        return cls(
            file_manager=file_manager,
            max_total_bytes=config_manager.max_total_storage_bytes,
            max_file_bytes=config_manager.max_file_size_bytes,
        )

    async def total_used(self, owner_id: str) -> int:
        """Bytes of active files across the owner's active buckets."""
        return await self.file_manager.total_active_bytes_for_owner(owner_id)

    def check_object_size(self, size: int, name: Optional[str] = None) -> None:
        """
        Raises:
            FileTooLargeError: If a single object is over the per-object ceiling
        """
        if size > self.max_file_bytes:
            label = f"{name} " if name else ""
            raise FileTooLargeError(
                f"File {label}exceeds the {_mb(self.max_file_bytes)} limit"
            )

    async def admit(
        self,
        owner_id: str,
        incoming_bytes: int,
        largest_object: Optional[int] = None
    ) -> Admission:
        """
        Decide whether `incoming_bytes` more can be charged to the owner.

        Args:
            owner_id: Owner of the target bucket
            incoming_bytes: Total size of the batch
            largest_object: Size of the largest object in the batch, checked
                against the per-object ceiling first
        """
        if largest_object is not None and largest_object > self.max_file_bytes:
            return Admission(
                allowed=False,
                used=0,
                remaining=0,
                reason=f"File exceeds the {_mb(self.max_file_bytes)} limit"
            )

        used = await self.total_used(owner_id)
        remaining = max(0, self.max_total_bytes - used)

        if used + incoming_bytes > self.max_total_bytes:
            return Admission(
                allowed=False,
                used=used,
                remaining=remaining,
                reason=(
                    f"Upload would exceed {_mb(self.max_total_bytes)} storage limit. "
                    f"Current: {_mb(used)}, Adding: {_mb(incoming_bytes)}"
                )
            )

        return Admission(allowed=True, used=used, remaining=remaining - incoming_bytes)

    async def ensure_admitted(self, owner_id: str, sizes: Iterable[int]) -> Admission:
        """
        Admission check for a batch that raises instead of returning a refusal.

        Raises:
            FileTooLargeError: If any object is over the per-object ceiling
            QuotaExceededError: If the batch would push the owner over the cap
        """
        sizes = list(sizes)
        for size in sizes:
            self.check_object_size(size)

        admission = await self.admit(owner_id, sum(sizes))
        if not admission.allowed:
            logger.info(f"Upload refused for owner {owner_id}: {admission.reason}")
            raise QuotaExceededError(admission.reason)
        return admission
