"""Authentication module for PinDrop."""

from .jwt_service import JWTService

__all__ = [
    "JWTService"
]
