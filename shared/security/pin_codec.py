"""
PIN credential codec.

- Generation: "drop-" + uppercase alphanumerics from the OS CSPRNG
- Owner display: AES-256-GCM, key derived with PBKDF2-HMAC-SHA256
- Verification: HMAC-SHA256 under a separate secret, constant-time compare

No I/O happens here. Verification helpers never raise: a malformed stored
value means "no match".
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import re
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.models.credential import (
    BucketCredential,
    LegacyPlainCredential,
    ProtectedCredential,
)
from shared.services.errors import InternalError, InvalidPinFormatError


logger = logging.getLogger(__name__)

PIN_PREFIX = "drop-"
PIN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
PIN_BODY_LENGTH = 4
LEGACY_PIN_BODY_LENGTH = 8
PIN_LENGTH = len(PIN_PREFIX) + PIN_BODY_LENGTH
LEGACY_PIN_LENGTH = len(PIN_PREFIX) + LEGACY_PIN_BODY_LENGTH

NONCE_SIZE = 12
GCM_TAG_SIZE = 16
KDF_ITERATIONS = 100_000
KDF_SALT = b"pindrop-pin-encryption"

_PIN_RE = re.compile(
    rf"^{PIN_PREFIX}(?:[A-Z0-9]{{{PIN_BODY_LENGTH}}}|[A-Z0-9]{{{LEGACY_PIN_BODY_LENGTH}}})$"
)


class DecryptionError(InternalError):
    """Encrypted PIN blob is malformed or fails authentication."""


def generate_pin() -> str:
    """Generate a new PIN in the current short format."""
    body = "".join(secrets.choice(PIN_ALPHABET) for _ in range(PIN_BODY_LENGTH))
    return f"{PIN_PREFIX}{body}"


def normalize_pin(raw: Optional[str]) -> str:
    """
    Canonical form of a user-typed PIN: lowercase prefix, uppercase body.

    Raises:
        InvalidPinFormatError: If the PIN matches neither supported format
    """
    if not raw or not isinstance(raw, str):
        raise InvalidPinFormatError("PIN is required")

    candidate = raw.strip()
    if candidate[:len(PIN_PREFIX)].lower() == PIN_PREFIX:
        candidate = PIN_PREFIX + candidate[len(PIN_PREFIX):].upper()

    if not _PIN_RE.match(candidate):
        raise InvalidPinFormatError(
            f"PIN must look like {PIN_PREFIX}XXXX (letters and digits)"
        )
    return candidate


def pin_format(raw: Optional[str]) -> str:
    """Classify a PIN as "new", "legacy" or "invalid" without revealing it."""
    try:
        pin = normalize_pin(raw)
    except InvalidPinFormatError:
        return "invalid"
    return "new" if len(pin) == PIN_LENGTH else "legacy"


class PinCodec:
    """
    Protects and verifies PINs with two independent secrets.

    The encryption secret only matters for the owner's display path; the
    HMAC secret is all a verifier needs.
    """

    def __init__(self, encryption_secret: str, hmac_secret: str):
        if not encryption_secret or not hmac_secret:
            raise ValueError("Both encryption and HMAC secrets must be provided")
        if encryption_secret == hmac_secret:
            raise ValueError("Encryption and HMAC secrets must differ")

        self._aes = AESGCM(self._derive_key(encryption_secret))
        self._hmac_key = hmac_secret.encode("utf-8")

    @classmethod
    def from_config(cls, config_manager) -> "PinCodec":
        return cls(
            encryption_secret=config_manager.pin_encryption_secret,
            hmac_secret=config_manager.pin_hmac_secret,
        )

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        return hashlib.pbkdf2_hmac(
            "sha256", secret.encode("utf-8"), KDF_SALT, KDF_ITERATIONS, dklen=32
        )

    def hash_pin(self, pin: str) -> str:
        """Keyed hash of the normalized PIN, base64 encoded."""
        digest = hmac.new(self._hmac_key, normalize_pin(pin).encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def encrypt(self, pin: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aes.encrypt(nonce, normalize_pin(pin).encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def protect(self, pin: str) -> ProtectedCredential:
        """Encrypt the PIN and compute its keyed hash."""
        return ProtectedCredential(encrypted_pin=self.encrypt(pin), hashed_pin=self.hash_pin(pin))

    def reveal(self, encrypted_pin: str) -> str:
        """
        Decrypt an encrypted PIN for its owner.

        Raises:
            DecryptionError: If the blob is malformed or fails authentication
        """
        try:
            data = base64.b64decode(encrypted_pin, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError(f"Encrypted PIN is not valid base64: {e}")

        if len(data) <= NONCE_SIZE + GCM_TAG_SIZE:
            raise DecryptionError("Encrypted PIN is too short")

        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = self._aes.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionError("Encrypted PIN failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Encrypted PIN is not valid text")

    def verify(self, candidate: str, hashed_pin: str) -> bool:
        """Constant-time check of a candidate PIN against a stored keyed hash."""
        try:
            expected = self.hash_pin(candidate)
        except InvalidPinFormatError:
            return False
        if not isinstance(hashed_pin, str):
            return False
        return hmac.compare_digest(expected.encode("ascii"), hashed_pin.encode("utf-8"))

    @staticmethod
    def verify_legacy_plain(candidate: str, stored: str) -> bool:
        """Equality check for pre-encryption buckets holding a plaintext PIN."""
        try:
            return hmac.compare_digest(
                normalize_pin(candidate).encode("utf-8"),
                normalize_pin(stored).encode("utf-8"),
            )
        except InvalidPinFormatError:
            return False

    def matches(self, candidate: str, credential: BucketCredential) -> bool:
        """Verify a candidate against either credential variant; errors mean no match."""
        try:
            if isinstance(credential, LegacyPlainCredential):
                return self.verify_legacy_plain(candidate, credential.pin_code)
            if isinstance(credential, ProtectedCredential):
                return self.verify(candidate, credential.hashed_pin)
        except Exception as e:
            logger.warning(f"PIN verification error treated as no match: {type(e).__name__}")
            return False
        return False
