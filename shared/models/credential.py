"""
Bucket access credential representations.

A bucket stores exactly one of:
    LegacyPlainCredential: plaintext PIN from before PIN encryption existed
    ProtectedCredential: AES-GCM encrypted PIN plus an HMAC of the same PIN
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


class CredentialFormatError(ValueError):
    """Raised when a stored record carries no credential or more than one."""


@dataclass(frozen=True)
class LegacyPlainCredential:
    """Plaintext PIN kept verbatim for buckets created before encryption."""

    pin_code: str

    def __repr__(self) -> str:
        return "LegacyPlainCredential(pin_code=***)"


@dataclass(frozen=True)
class ProtectedCredential:
    """
    Encrypted PIN with an independently keyed hash.

    Attributes:
        encrypted_pin: base64(nonce || ciphertext); only the owner path decrypts it
        hashed_pin: base64 HMAC-SHA256 of the normalized PIN; used by verifiers
    """

    encrypted_pin: str
    hashed_pin: str


BucketCredential = Union[LegacyPlainCredential, ProtectedCredential]


def credential_from_columns(
    pin_code: Optional[str],
    encrypted_pin: Optional[str],
    hashed_pin: Optional[str]
) -> BucketCredential:
    """
    Build the credential variant from the three storage columns.

    Raises:
        CredentialFormatError: If the columns do not hold exactly one representation
    """
    has_legacy = bool(pin_code)
    has_protected = bool(encrypted_pin) or bool(hashed_pin)

    if has_legacy and has_protected:
        raise CredentialFormatError("Bucket record holds both legacy and protected PIN data")
    if has_legacy:
        return LegacyPlainCredential(pin_code=pin_code)
    if encrypted_pin and hashed_pin:
        return ProtectedCredential(encrypted_pin=encrypted_pin, hashed_pin=hashed_pin)
    raise CredentialFormatError("Bucket record holds no usable PIN credential")


def credential_to_columns(credential: BucketCredential) -> Mapping[str, Any]:
    """Flatten a credential into the pin_code / encrypted_pin / hashed_pin columns."""
    if isinstance(credential, LegacyPlainCredential):
        return {"pin_code": credential.pin_code, "encrypted_pin": None, "hashed_pin": None}
    if isinstance(credential, ProtectedCredential):
        return {
            "pin_code": None,
            "encrypted_pin": credential.encrypted_pin,
            "hashed_pin": credential.hashed_pin,
        }
    raise CredentialFormatError(f"Unsupported credential type: {type(credential).__name__}")
