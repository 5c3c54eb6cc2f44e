"""
Unit tests for PIN generation, normalization, protection and verification.
"""

import base64
import re

import pytest

from shared.models.credential import LegacyPlainCredential, ProtectedCredential
from shared.security.pin_codec import (
    LEGACY_PIN_LENGTH,
    PIN_ALPHABET,
    PIN_LENGTH,
    DecryptionError,
    PinCodec,
    generate_pin,
    normalize_pin,
    pin_format,
)
from shared.services.errors import InvalidPinFormatError, ValidationError


def _mutations(pin):
    """Every PIN that differs from `pin` in exactly one body character."""
    prefix, body = pin[:5], pin[5:]
    for i, original in enumerate(body):
        for replacement in PIN_ALPHABET:
            if replacement != original:
                yield prefix + body[:i] + replacement + body[i + 1:]


class TestPinGeneration:
    """Generated PINs use the short format."""

    def test_generated_pin_format(self):
        for _ in range(200):
            pin = generate_pin()
            assert len(pin) == PIN_LENGTH
            assert re.fullmatch(r"drop-[A-Z0-9]{4}", pin)

    def test_generated_pins_vary(self):
        assert len({generate_pin() for _ in range(50)}) > 1


class TestNormalization:
    """PINs are case-insensitive and must match one of two formats."""

    @pytest.mark.parametrize("raw,expected", [
        ("drop-AB12", "drop-AB12"),
        ("DROP-ab12", "drop-AB12"),
        ("  drop-ab12 ", "drop-AB12"),
        ("drop-abcd1234", "drop-ABCD1234"),
    ])
    def test_normalize_valid(self, raw, expected):
        assert normalize_pin(raw) == expected

    @pytest.mark.parametrize("raw", [
        None, "", "drop-", "drop-AB1", "drop-AB123", "drop-AB12345678",
        "pin-AB12", "drop_AB12", "drop-AB!2", "dropAB12",
    ])
    def test_normalize_invalid(self, raw):
        with pytest.raises(InvalidPinFormatError):
            normalize_pin(raw)

    def test_invalid_format_is_validation_error(self):
        with pytest.raises(ValidationError):
            normalize_pin("nope")

    def test_pin_format_classification(self):
        assert pin_format("drop-AB12") == "new"
        assert pin_format("drop-AB12CD34") == "legacy"
        assert pin_format("garbage") == "invalid"
        assert len("drop-AB12CD34") == LEGACY_PIN_LENGTH


class TestCodecConstruction:

    def test_secrets_required(self):
        with pytest.raises(ValueError):
            PinCodec("", "hmac")
        with pytest.raises(ValueError):
            PinCodec("enc", "")

    def test_secrets_must_differ(self):
        with pytest.raises(ValueError):
            PinCodec("same-secret", "same-secret")


class TestProtectAndVerify:
    """Round trip and sensitivity of the keyed hash and the encryption."""

    def test_protect_returns_protected_credential(self, codec):
        credential = codec.protect("drop-AB12")
        assert isinstance(credential, ProtectedCredential)
        assert credential.encrypted_pin != "drop-AB12"
        assert "drop-AB12" not in credential.hashed_pin

    def test_verify_round_trip(self, codec):
        for _ in range(20):
            pin = generate_pin()
            assert codec.verify(pin, codec.protect(pin).hashed_pin)

    def test_verify_is_case_insensitive(self, codec):
        assert codec.verify("drop-ab12", codec.protect("drop-AB12").hashed_pin)

    def test_single_character_mutation_fails(self, codec):
        pin = "drop-K7Q2"
        hashed = codec.protect(pin).hashed_pin
        for mutated in _mutations(pin):
            assert not codec.verify(mutated, hashed)

    def test_verify_rejects_malformed_candidate(self, codec):
        hashed = codec.protect("drop-AB12").hashed_pin
        assert codec.verify("not-a-pin", hashed) is False

    def test_hash_depends_on_hmac_secret(self, codec):
        other = PinCodec("test-pin-encryption-secret", "another-hmac-secret")
        assert not other.verify("drop-AB12", codec.protect("drop-AB12").hashed_pin)

    def test_reveal_round_trip(self, codec):
        for _ in range(20):
            pin = generate_pin()
            assert codec.reveal(codec.protect(pin).encrypted_pin) == pin

    def test_reveal_legacy_length_pin(self, codec):
        assert codec.reveal(codec.encrypt("drop-ABCD1234")) == "drop-ABCD1234"

    def test_encryption_uses_fresh_nonce(self, codec):
        assert codec.encrypt("drop-AB12") != codec.encrypt("drop-AB12")


class TestReveal:
    """Malformed blobs raise DecryptionError."""

    def test_invalid_base64(self, codec):
        with pytest.raises(DecryptionError):
            codec.reveal("%%% not base64 %%%")

    def test_too_short(self, codec):
        with pytest.raises(DecryptionError):
            codec.reveal(base64.b64encode(b"short").decode())

    def test_tampered_blob(self, codec):
        data = bytearray(base64.b64decode(codec.encrypt("drop-AB12")))
        data[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            codec.reveal(base64.b64encode(bytes(data)).decode())

    def test_wrong_key(self, codec):
        other = PinCodec("different-encryption-secret", "test-pin-hmac-secret")
        with pytest.raises(DecryptionError):
            other.reveal(codec.encrypt("drop-AB12"))


class TestMatches:
    """Variant dispatch; errors never escape."""

    def test_matches_protected(self, codec):
        credential = codec.protect("drop-AB12")
        assert codec.matches("drop-AB12", credential)
        assert not codec.matches("drop-AB13", credential)

    def test_matches_legacy_plain(self, codec):
        credential = LegacyPlainCredential("drop-ABCD1234")
        assert codec.matches("drop-abcd1234", credential)
        assert not codec.matches("drop-ABCD1235", credential)

    def test_verify_legacy_plain_with_malformed_stored_value(self):
        assert PinCodec.verify_legacy_plain("drop-AB12", "garbage") is False

    def test_matches_with_corrupted_hash_is_false(self, codec):
        credential = ProtectedCredential(encrypted_pin="x", hashed_pin="éé")
        assert codec.matches("drop-AB12", credential) is False

    def test_matches_unknown_credential_is_false(self, codec):
        assert codec.matches("drop-AB12", object()) is False
