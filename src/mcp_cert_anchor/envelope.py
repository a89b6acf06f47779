"""Certificate payload encoding and decoding.

The payload format:
- Magic (6 bytes): "disabd"
- Body (variable): UTF-8 JSON object with base64 fields
  ``{"encryptedData": ..., "nonce": ..., "authTag": ...}``

This is the only format persisted on the ledger, so field order and
separators are fixed.
"""

import base64
import binascii
import json
from dataclasses import dataclass

from mcp_cert_anchor.errors import MalformedEnvelope, PrefixNotFound


MAGIC_PREFIX = b"disabd"
NONCE_SIZE = 16
TAG_SIZE = 16


@dataclass(frozen=True)
class Envelope:
    """Authenticated-encryption result for one record."""

    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes

    def to_dict(self) -> dict:
        """Base64 document form, in wire field order."""
        return {
            "encryptedData": base64.b64encode(self.ciphertext).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "authTag": base64.b64encode(self.auth_tag).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        """Parse the base64 document form.

        Accepts the legacy ``iv`` key in place of ``nonce`` and an outer
        ``{"encrypted": {...}}`` wrapper.

        Raises:
            MalformedEnvelope: If fields are missing or not valid base64
        """
        if not isinstance(data, dict):
            raise MalformedEnvelope("Envelope is not a JSON object")

        if isinstance(data.get("encrypted"), dict):
            data = data["encrypted"]

        nonce_field = data.get("nonce", data.get("iv"))
        fields = (data.get("encryptedData"), nonce_field, data.get("authTag"))
        if not all(isinstance(f, str) for f in fields):
            raise MalformedEnvelope(
                "Envelope must contain string fields encryptedData, nonce, authTag"
            )

        try:
            ciphertext, nonce, auth_tag = (
                base64.b64decode(f, validate=True) for f in fields
            )
        except (binascii.Error, ValueError) as e:
            raise MalformedEnvelope(f"Invalid base64 in envelope: {e}") from e

        if len(nonce) != NONCE_SIZE:
            raise MalformedEnvelope(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(auth_tag) != TAG_SIZE:
            raise MalformedEnvelope(f"Auth tag must be {TAG_SIZE} bytes, got {len(auth_tag)}")

        return cls(ciphertext=ciphertext, nonce=nonce, auth_tag=auth_tag)


def encode_envelope(envelope: Envelope) -> bytes:
    """Encode an envelope into the on-chain payload format.

    Args:
        envelope: Envelope to encode

    Returns:
        MAGIC_PREFIX followed by the compact JSON document
    """
    body = json.dumps(envelope.to_dict(), separators=(",", ":"))
    return MAGIC_PREFIX + body.encode("utf-8")


def decode_envelope(blob: bytes) -> Envelope:
    """Decode an on-chain payload back into an envelope.

    The magic prefix is searched for, so script-template bytes before it
    are tolerated.

    Args:
        blob: Payload bytes recovered from a data output

    Returns:
        Decoded Envelope

    Raises:
        PrefixNotFound: If the magic prefix is absent
        MalformedEnvelope: If the remainder is not the three-field document
    """
    idx = blob.find(MAGIC_PREFIX)
    if idx == -1:
        raise PrefixNotFound(f"Payload prefix {MAGIC_PREFIX!r} not found")

    body = blob[idx + len(MAGIC_PREFIX):]
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEnvelope(f"Envelope body is not JSON: {e}") from e

    return Envelope.from_dict(data)
