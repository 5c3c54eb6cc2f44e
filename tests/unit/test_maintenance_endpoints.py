"""Unit tests for the maintenance endpoints and the app root."""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from backend.dependencies import Services
from backend.main import create_app, run_periodic_sweep
from shared.services.errors import BackendUnavailableError


class TestSweepEndpoint:

    @pytest.fixture(autouse=True)
    def _set_client(self, api_client, auth_headers):
        self.client = api_client
        self.headers = auth_headers

    def test_requires_api_key(self):
        response = self.client.post("/api/v1/maintenance/sweep")
        assert response.status_code == 401

    def test_rejects_wrong_api_key(self):
        response = self.client.post("/api/v1/maintenance/sweep", headers={"X-API-Key": "wrong"})
        assert response.status_code == 403

    def test_bearer_token_is_not_enough(self):
        response = self.client.post("/api/v1/maintenance/sweep", headers=self.headers)
        assert response.status_code == 401

    def test_sweep_purges_expired_buckets(self, bucket_manager):
        created = self.client.post("/api/v1/buckets", json={"name": "Old"}, headers=self.headers).json()
        self.client.post("/api/v1/buckets", json={"name": "Fresh"}, headers=self.headers)
        old = bucket_manager.buckets[uuid.UUID(created["bucket"]["id"])]
        old.created_at = old.created_at - timedelta(days=7, seconds=1)

        response = self.client.post("/api/v1/maintenance/sweep", headers={"X-API-Key": "test-api-key"})

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["expired_buckets"] == 1
        assert summary["inactive_buckets"] == 0
        assert summary["failed_buckets"] == 0
        assert old.id not in bucket_manager.buckets
        assert len(bucket_manager.buckets) == 1

    def test_empty_sweep(self):
        response = self.client.post("/api/v1/maintenance/sweep", headers={"X-API-Key": "test-api-key"})
        assert response.json()["summary"]["total_buckets"] == 0


class TestAppRoot:

    def test_root(self, api_client):
        response = api_client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "PinDrop Backend API", "status": "ready"}

    def test_sweep_disabled_without_api_key(self, access_service, jwt_service):
        client = TestClient(create_app(Services(access=access_service, jwt_service=jwt_service, sweep_enabled=False)))

        response = client.post("/api/v1/maintenance/sweep", headers={"X-API-Key": "anything"})

        assert response.status_code == 503

    def test_health_without_database(self, api_client):
        body = api_client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["database"] == "unhealthy"


class TestPeriodicSweep:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        RuntimeError("boom"),
        BackendUnavailableError("Document store is unavailable"),
    ])
    async def test_failed_run_keeps_schedule(self, error):
        access = Mock()
        access.run_sweep = AsyncMock(side_effect=[error, Mock(total_buckets=2)])

        with patch("backend.main.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_sleep.side_effect = [None, asyncio.CancelledError()]
            with pytest.raises(asyncio.CancelledError):
                await run_periodic_sweep(access, interval_hours=1)

        assert access.run_sweep.await_count == 2
        mock_sleep.assert_awaited_with(3600)
