"""
Short-lived cache of bucket records.

Writes go through the cache (put after every persisted mutation) and deletes
or purges invalidate the entry, so a cached bucket is never staler than the
TTL relative to changes made by another process.
"""

import uuid
from time import monotonic
from typing import Callable, Dict, Optional, Tuple

from shared.models.bucket import Bucket


class BucketCache:

    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], float] = monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[uuid.UUID, Tuple[float, Bucket]] = {}

    def get(self, bucket_id: uuid.UUID) -> Optional[Bucket]:
        entry = self._entries.get(bucket_id)
        if entry is None:
            return None
        stored_at, bucket = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[bucket_id]
            return None
        return bucket

    def put(self, bucket: Bucket) -> None:
        if bucket.id is None or self.ttl_seconds <= 0:
            return
        self._entries[bucket.id] = (self._clock(), bucket)

    def invalidate(self, bucket_id: uuid.UUID) -> None:
        self._entries.pop(bucket_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, bucket_id) -> bool:
        return self.get(bucket_id) is not None
