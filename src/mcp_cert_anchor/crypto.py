"""Record encryption with AES-256-GCM.

- Key derivation: PBKDF2-HMAC-SHA256 over the master key with a fresh
  16-byte salt per record (100K iterations)
- Encryption: AES-256-GCM with a 16-byte nonce and 16-byte tag

Each record gets its own derived key. The salt and derived key together
form the key material that must be kept off-chain to decrypt later.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mcp_cert_anchor.envelope import NONCE_SIZE, TAG_SIZE, Envelope
from mcp_cert_anchor.errors import (
    ConfigError,
    DecodeError,
    IntegrityError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MASTER_KEY_SIZE = 32
SALT_SIZE = 16
KEY_SIZE = 32
MIN_KDF_ITERATIONS = 100_000


@dataclass(frozen=True)
class KeyMaterial:
    """Per-record salt and derived key."""

    salt: bytes
    derived_key: bytes

    def to_bytes(self) -> bytes:
        """Serialize as salt(16) + derived_key(32)."""
        return self.salt + self.derived_key

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, key_hex: str) -> "KeyMaterial":
        """Parse the 96-char hex form.

        Raises:
            ValidationError: If the hex is malformed or the wrong length
        """
        try:
            raw = bytes.fromhex(key_hex)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Key material is not valid hex: {e}") from e

        if len(raw) != SALT_SIZE + KEY_SIZE:
            raise ValidationError(
                f"Key material must be {SALT_SIZE + KEY_SIZE} bytes, got {len(raw)}"
            )
        return cls(salt=raw[:SALT_SIZE], derived_key=raw[SALT_SIZE:])


def parse_master_key(key_hex: str) -> bytes:
    """Parse a 64-char hex master key.

    Raises:
        ConfigError: If the key is missing or malformed
    """
    if not key_hex:
        raise ConfigError(
            "Master key not set. Set ENCRYPTION_MASTER_KEY to 64 hex characters; "
            "records encrypted under a throwaway key cannot be recovered."
        )
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as e:
        raise ConfigError(f"Master key is not valid hex: {e}") from e
    if len(key) != MASTER_KEY_SIZE:
        raise ConfigError(
            f"Master key must be {MASTER_KEY_SIZE} bytes ({MASTER_KEY_SIZE * 2} hex chars), "
            f"got {len(key)} bytes"
        )
    return key


class EnvelopeCipher:
    """Encrypts records into envelopes and back.

    Usage:
        cipher = EnvelopeCipher(master_key)
        envelope, key = cipher.encrypt({"firstName": "Ana"})
        record = cipher.decrypt(envelope, key)
    """

    def __init__(self, master_key: bytes, iterations: int = MIN_KDF_ITERATIONS):
        if len(master_key) != MASTER_KEY_SIZE:
            raise ConfigError(f"Master key must be {MASTER_KEY_SIZE} bytes")
        if iterations < MIN_KDF_ITERATIONS:
            raise ConfigError(f"KDF iterations must be at least {MIN_KDF_ITERATIONS}")
        self._master_key = master_key
        self.iterations = iterations

    def derive_key(self, salt: bytes) -> bytes:
        """Derive a 32-byte record key from the master key and salt."""
        return hashlib.pbkdf2_hmac(
            "sha256", self._master_key, salt, self.iterations, dklen=KEY_SIZE
        )

    def encrypt(self, record: Any) -> tuple[Envelope, KeyMaterial]:
        """Encrypt a JSON-serializable record.

        Returns:
            The envelope and the key material needed to decrypt it

        Raises:
            ValidationError: If the record is not JSON-serializable
        """
        try:
            plaintext = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Record is not JSON-serializable: {e}") from e

        salt = os.urandom(SALT_SIZE)
        key = self.derive_key(salt)
        nonce = os.urandom(NONCE_SIZE)

        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        envelope = Envelope(
            ciphertext=sealed[:-TAG_SIZE],
            nonce=nonce,
            auth_tag=sealed[-TAG_SIZE:],
        )
        return envelope, KeyMaterial(salt=salt, derived_key=key)

    def decrypt(self, envelope: Envelope, key_material: KeyMaterial) -> Any:
        """Verify and decrypt an envelope.

        No plaintext is released unless the tag verifies.

        Raises:
            IntegrityError: If the tag does not verify (tampering or wrong key)
            DecodeError: If the plaintext is not JSON
        """
        if len(key_material.derived_key) != KEY_SIZE:
            raise IntegrityError(f"Derived key must be {KEY_SIZE} bytes")

        try:
            plaintext = AESGCM(key_material.derived_key).decrypt(
                envelope.nonce, envelope.ciphertext + envelope.auth_tag, None
            )
        except (InvalidTag, ValueError) as e:
            raise IntegrityError("Authentication tag verification failed") from e

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Decrypted record is not JSON: {e}") from e
