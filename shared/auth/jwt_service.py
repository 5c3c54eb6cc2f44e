"""
JWT token service for PinDrop owner authentication.

Bucket owners sign in with an external identity provider; PinDrop only
validates the access tokens it is handed and reads the owner claims
(`user_id`, `email`, `name`) from them.
"""

import jwt
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from shared.models.owner import Owner


logger = logging.getLogger(__name__)


class JWTService:
    """Service for JWT token operations."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 30,
        issuer: str = "pindrop"
    ):
        """
        Initialize JWT service.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (default: HS256)
            access_token_expire_minutes: Access token expiration in minutes
            issuer: JWT issuer claim
        """
        if not secret_key:
            raise ValueError("JWT_SECRET_KEY must be configured")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.issuer = issuer

    @classmethod
    def from_config(cls, config_manager) -> 'JWTService':
        """
        Create JWT service from configuration.

        Returns:
            JWTService instance configured from the config manager
        """
        return cls(
            secret_key=config_manager.get_jwt_secret(),
            algorithm=config_manager.jwt_algorithm,
            issuer=config_manager.jwt_issuer
        )

    def generate_access_token(self, payload: Dict[str, Any]) -> str:
        """
        Generate an access token.

        Args:
            payload: Owner claims to include in token

        Returns:
            JWT access token string
        """
        now = datetime.now(timezone.utc)
        exp = now + timedelta(minutes=self.access_token_expire_minutes)

        token_payload = {
            **payload,
            "token_type": "access",
            "iat": now,
            "exp": exp,
            "iss": self.issuer
        }

        return jwt.encode(token_payload, self.secret_key, algorithm=self.algorithm)

    def validate_access_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate an access token.

        Args:
            token: JWT token to validate

        Returns:
            Token payload if valid, None otherwise
        """
        if not token:
            return None

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if payload.get("token_type") != "access":
            logger.warning(f"Token type mismatch: expected access, got {payload.get('token_type')}")
            return None

        return payload

    def owner_from_token(self, token: str) -> Optional[Owner]:
        """Owner identity of a valid access token carrying a user_id claim."""
        payload = self.validate_access_token(token)
        if not payload or not payload.get("user_id"):
            return None
        return Owner.from_claims(payload)

    def get_token_expiration(self, token: str) -> Optional[datetime]:
        """
        Get token expiration time.

        Args:
            token: JWT token

        Returns:
            Expiration datetime if token is decodable, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False}
            )
        except jwt.InvalidTokenError:
            return None

        exp_timestamp = payload.get("exp")
        if exp_timestamp:
            return datetime.fromtimestamp(exp_timestamp, tz=timezone.utc)
        return None
