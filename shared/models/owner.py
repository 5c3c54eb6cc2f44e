"""
Authenticated caller identity, taken from validated access token claims.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Owner:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Owner":
        return cls(
            user_id=str(claims["user_id"]),
            email=claims.get("email"),
            name=claims.get("name"),
        )
