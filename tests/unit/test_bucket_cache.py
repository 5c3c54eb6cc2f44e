"""
Unit tests for the bucket record cache and analytics sinks.
"""

import logging
import uuid

import pytest

from shared.models.bucket import Bucket
from shared.models.credential import ProtectedCredential
from shared.services.analytics import AnalyticsSink, LoggingAnalyticsSink, NullAnalyticsSink
from shared.services.bucket_cache import BucketCache


def make_bucket():
    return Bucket(
        id=uuid.uuid4(), name="Trip", owner_id="o",
        credential=ProtectedCredential(encrypted_pin="enc", hashed_pin="hash")
    )


class TestBucketCache:

    def test_put_and_get(self, clock):
        cache = BucketCache(ttl_seconds=60, clock=clock)
        bucket = make_bucket()

        cache.put(bucket)

        assert cache.get(bucket.id) is bucket
        assert bucket.id in cache
        assert len(cache) == 1

    def test_entry_expires_after_ttl(self, clock):
        cache = BucketCache(ttl_seconds=60, clock=clock)
        bucket = make_bucket()
        cache.put(bucket)

        clock.advance(59)
        assert cache.get(bucket.id) is bucket
        clock.advance(1)
        assert cache.get(bucket.id) is None
        assert len(cache) == 0

    def test_invalidate_and_clear(self, clock):
        cache = BucketCache(ttl_seconds=60, clock=clock)
        first, second = make_bucket(), make_bucket()
        cache.put(first)
        cache.put(second)

        cache.invalidate(first.id)
        cache.invalidate(uuid.uuid4())
        assert cache.get(first.id) is None
        assert cache.get(second.id) is second

        cache.clear()
        assert len(cache) == 0

    def test_unsaved_bucket_not_cached(self, clock):
        cache = BucketCache(ttl_seconds=60, clock=clock)
        bucket = make_bucket()
        bucket.id = None

        cache.put(bucket)

        assert len(cache) == 0

    def test_zero_ttl_disables_cache(self, clock):
        cache = BucketCache(ttl_seconds=0, clock=clock)
        bucket = make_bucket()

        cache.put(bucket)

        assert cache.get(bucket.id) is None


class TestAnalyticsSinks:

    def test_failing_sink_does_not_raise(self, caplog):
        class BrokenSink(AnalyticsSink):
            def log_event(self, name, params=None):
                raise RuntimeError("collector down")

        with caplog.at_level(logging.WARNING):
            BrokenSink().emit("file_upload", {"size": 1})

        assert "file_upload dropped" in caplog.text

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO, logger="pindrop.analytics"):
            LoggingAnalyticsSink().emit("bucket_create", {"bucket_id": "b1"})

        assert "bucket_create" in caplog.text
        assert "b1" in caplog.text

    def test_null_sink(self):
        assert NullAnalyticsSink().emit("pin_access") is None

    def test_recording_sink_defaults_params(self, analytics_sink):
        analytics_sink.emit("pin_access")
        assert analytics_sink.events == [("pin_access", {})]
