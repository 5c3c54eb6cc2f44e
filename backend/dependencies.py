"""
Dependency injection for PinDrop backend services.

This module provides:
- Construction of the service graph from configuration
- FastAPI dependencies for the access service and JWT service
- Caller identity (owner from bearer token, network origin)
- API key protection for maintenance endpoints
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from shared.auth.jwt_service import JWTService
from shared.config.config_manager import ConfigManager, ConfigValidationError
from shared.database.connection_manager import DatabaseConnectionManager
from shared.models.owner import Owner
from shared.security.attempt_governor import UNKNOWN_ORIGIN, AttemptGovernor
from shared.security.pin_codec import PinCodec
from shared.services.access_service import AccessService
from shared.services.analytics import AnalyticsSink, LoggingAnalyticsSink
from shared.services.blob_store import BlobStore
from shared.services.bucket_cache import BucketCache
from shared.services.bucket_crud_manager import BucketCRUDManager
from shared.services.challenge import ChallengeVerifier, RecaptchaVerifier
from shared.services.file_crud_manager import FileCRUDManager
from shared.services.file_service import FileService
from shared.services.lifecycle_monitor import BucketLifecycleMonitor
from shared.services.storage_accountant import StorageAccountant
from backend.storage_client import HttpBlobStore

logger = logging.getLogger(__name__)

PIN_HEADER = "X-Bucket-Pin"
CHALLENGE_HEADER = "X-Challenge-Token"


@dataclass
class Services:
    """Long-lived service objects shared by every request."""
    access: AccessService
    jwt_service: JWTService
    api_key: Optional[str] = None
    database: Optional[DatabaseConnectionManager] = None
    blob_store: Optional[BlobStore] = None
    challenge_verifier: Optional[ChallengeVerifier] = None
    config: Optional[ConfigManager] = None
    sweep_interval_hours: int = 24
    sweep_enabled: bool = True
    trust_proxy_headers: bool = False

    async def close(self) -> None:
        if self.blob_store is not None:
            await self.blob_store.close()
        if isinstance(self.challenge_verifier, RecaptchaVerifier):
            await self.challenge_verifier.close()
        if self.database is not None:
            await self.database.close()


def build_access_service(
    config: ConfigManager,
    database: DatabaseConnectionManager,
    blob_store: BlobStore,
    challenge_verifier: ChallengeVerifier,
    analytics_sink: Optional[AnalyticsSink] = None
) -> AccessService:
    """Wire the access service and its collaborators from configuration."""
    bucket_manager = BucketCRUDManager(database)
    file_manager = FileCRUDManager(database)
    cache = BucketCache(ttl_seconds=config.bucket_cache_ttl_seconds)
    file_service = FileService(file_manager, bucket_manager, blob_store)

    return AccessService(
        codec=PinCodec.from_config(config),
        governor=AttemptGovernor.from_config(config, challenge_verifier),
        bucket_manager=bucket_manager,
        file_service=file_service,
        monitor=BucketLifecycleMonitor.from_config(config, bucket_manager, file_service, cache),
        accountant=StorageAccountant.from_config(config, file_manager),
        cache=cache,
        analytics_sink=analytics_sink or LoggingAnalyticsSink(),
    )


def build_services(config: Optional[ConfigManager] = None) -> Services:
    """
    Build the production service graph.

    Raises:
        ConfigValidationError: If required secrets are missing or invalid
    """
    config = config or ConfigManager(validate_secrets=True)
    database = DatabaseConnectionManager(config)
    blob_store = HttpBlobStore.from_config(config)
    challenge_verifier = RecaptchaVerifier(config.recaptcha_secret)

    try:
        api_key = config.get_api_key()
    except ConfigValidationError:
        logger.warning("API_KEY not configured - maintenance endpoints disabled")
        api_key = None

    return Services(
        access=build_access_service(config, database, blob_store, challenge_verifier),
        jwt_service=JWTService.from_config(config),
        api_key=api_key,
        database=database,
        blob_store=blob_store,
        challenge_verifier=challenge_verifier,
        config=config,
        sweep_interval_hours=config.sweep_interval_hours,
        sweep_enabled=config.sweep_enabled,
        trust_proxy_headers=config.trust_proxy_headers,
    )


# Dependency providers

def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up"
        )
    return services


def get_access_service(services: Services = Depends(get_services)) -> AccessService:
    return services.access


def get_jwt_service(services: Services = Depends(get_services)) -> JWTService:
    return services.jwt_service


def get_client_origin(request: Request, services: Services = Depends(get_services)) -> str:
    """
    Network origin used to count PIN attempts.

    The socket peer, unless the API sits behind a trusted reverse proxy; then
    the last X-Forwarded-For hop, which is the one that proxy appended.
    Earlier hops are client supplied and never used.
    """
    if services.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            last_hop = forwarded.split(",")[-1].strip()
            if last_hop:
                return last_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ORIGIN


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


async def get_optional_owner(
    request: Request,
    jwt_service: JWTService = Depends(get_jwt_service)
) -> Optional[Owner]:
    """Owner identity if a bearer token is present; an invalid token is rejected."""
    token = _bearer_token(request)
    if token is None:
        return None

    owner = jwt_service.owner_from_token(token)
    if owner is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )
    return owner


async def get_current_owner(owner: Optional[Owner] = Depends(get_optional_owner)) -> Owner:
    """Dependency to get the authenticated owner from the JWT token."""
    if owner is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token is required"
        )
    return owner


def get_bucket_pin(request: Request) -> Optional[str]:
    return request.headers.get(PIN_HEADER)


def get_challenge_token(request: Request) -> Optional[str]:
    return request.headers.get(CHALLENGE_HEADER)


def require_api_key(request: Request, services: Services = Depends(get_services)) -> None:
    """Guard for scheduler-only endpoints."""
    if not services.api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API key is not configured"
        )

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key is required"
        )
    if not hmac.compare_digest(api_key.encode("utf-8"), services.api_key.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )
