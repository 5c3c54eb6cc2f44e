"""
Bucket model for PIN-shared file containers.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from shared.models.credential import BucketCredential


DEFAULT_PREVIEW = "folder"
DEFAULT_COLOR = "from-blue-500 to-cyan-500"


class Bucket:
    """
    Bucket model holding files shared through a PIN.

    Attributes:
        id: UUID primary key, assigned by the database on insert
        name: Display name
        description: Free-form description
        owner_id: Identity of the owning user
        owner_email: Owner's email address
        owner_name: Owner's display name
        collaborators: Ordered, duplicate-free list of collaborator emails
        credential: Exactly one PIN representation (legacy or protected)
        is_active: False once the owner soft-deleted the bucket
        file_count: Active files, recomputed from the live file set
        storage_used: Bytes of active files, recomputed from the live file set
        preview: Cosmetic icon name
        color: Cosmetic color gradient
        created_at: Creation timestamp
        updated_at: Last update timestamp
        deleted_at: Soft delete timestamp
        deleted_reason: Why the bucket was deactivated
    """

    def __init__(
        self,
        id: Optional[uuid.UUID],
        name: str,
        owner_id: str,
        credential: BucketCredential,
        description: str = "",
        owner_email: Optional[str] = None,
        owner_name: Optional[str] = None,
        collaborators: Optional[List[str]] = None,
        is_active: bool = True,
        file_count: int = 0,
        storage_used: int = 0,
        preview: str = DEFAULT_PREVIEW,
        color: str = DEFAULT_COLOR,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        deleted_at: Optional[datetime] = None,
        deleted_reason: Optional[str] = None
    ):
        if file_count < 0 or storage_used < 0:
            raise ValueError("file_count and storage_used must be non-negative")

        self.id = id
        self.name = name
        self.description = description or ""
        self.owner_id = owner_id
        self.owner_email = owner_email
        self.owner_name = owner_name
        self.collaborators = []
        for email in collaborators or []:
            if email not in self.collaborators:
                self.collaborators.append(email)
        self.credential = credential
        self.is_active = is_active
        self.file_count = file_count
        self.storage_used = storage_used
        self.preview = preview or DEFAULT_PREVIEW
        self.color = color or DEFAULT_COLOR
        self.deleted_at = deleted_at
        self.deleted_reason = deleted_reason

        # Set timestamps
        now = datetime.now(timezone.utc)
        self.created_at = created_at or now
        self.updated_at = updated_at or self.created_at

    @classmethod
    def create(
        cls,
        name: str,
        owner_id: str,
        credential: BucketCredential,
        description: str = "",
        owner_email: Optional[str] = None,
        owner_name: Optional[str] = None,
        collaborators: Optional[List[str]] = None,
        preview: str = DEFAULT_PREVIEW,
        color: str = DEFAULT_COLOR
    ) -> 'Bucket':
        """
        Create a new, not yet persisted bucket.

        The id stays None until the database assigns one.
        """
        return cls(
            id=None,
            name=name,
            owner_id=owner_id,
            credential=credential,
            description=description,
            owner_email=owner_email,
            owner_name=owner_name,
            collaborators=collaborators,
            preview=preview,
            color=color
        )

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def add_collaborator(self, email: str) -> bool:
        """Add a collaborator; returns False if already present."""
        if email in self.collaborators:
            return False
        self.collaborators.append(email)
        self.touch()
        return True

    def remove_collaborator(self, email: str) -> bool:
        """Remove a collaborator; returns False if not present."""
        if email not in self.collaborators:
            return False
        self.collaborators = [c for c in self.collaborators if c != email]
        self.touch()
        return True

    def has_access(self, email: Optional[str]) -> bool:
        """Owner or collaborator check by email."""
        if not email:
            return False
        return email == self.owner_email or email in self.collaborators

    def is_owned_by(self, owner_id: Optional[str]) -> bool:
        return owner_id is not None and owner_id == self.owner_id

    def expires_at(self, expiry_days: int) -> datetime:
        return self.created_at + timedelta(days=expiry_days)

    def to_dict(self, expiry_days: Optional[int] = None) -> Dict[str, Any]:
        """
        Convert bucket to dictionary.

        The credential is never included; owners fetch their PIN separately.
        """
        data = {
            "id": str(self.id) if self.id else None,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "owner_email": self.owner_email,
            "owner_name": self.owner_name,
            "collaborators": list(self.collaborators),
            "is_active": self.is_active,
            "file_count": self.file_count,
            "storage_used": self.storage_used,
            "preview": self.preview,
            "color": self.color,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }
        if expiry_days is not None:
            data["expires_at"] = self.expires_at(expiry_days).isoformat()
        return data

    def __str__(self) -> str:
        """String representation of bucket."""
        return f"<Bucket {self.name}>"

    def __repr__(self) -> str:
        """Detailed string representation for debugging."""
        return f"<Bucket(id={self.id}, name={self.name}, owner_id={self.owner_id}, is_active={self.is_active})>"
