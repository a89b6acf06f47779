"""Error taxonomy for certificate anchoring.

Every error carries a stable ``code`` for callers and a ``retryable`` flag.
Only transient network failures are retryable.
"""

from typing import Optional


class AnchorError(Exception):
    """Base class for all anchoring errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def to_dict(self) -> dict:
        """Caller-facing error shape."""
        return {
            "error": str(self),
            "code": self.code,
            "retryable": self.retryable,
        }


class ConfigError(AnchorError):
    """Invalid or missing configuration detected at startup."""

    code = "CONFIG_ERROR"


class ValidationError(AnchorError, ValueError):
    """Malformed input, detected before any I/O."""

    code = "VALIDATION_ERROR"


class NoFunds(AnchorError):
    """The funding address has no spendable outputs."""

    code = "NO_FUNDS"


class InsufficientFunds(AnchorError):
    """The selected output cannot cover the data output and the fee."""

    code = "INSUFFICIENT_FUNDS"


class NetworkError(AnchorError):
    """Transport failure or timeout talking to the ledger."""

    code = "NETWORK_ERROR"
    retryable = True


class UpstreamError(AnchorError):
    """The ledger service answered with an error."""

    code = "UPSTREAM_ERROR"

    def __init__(self, status: Optional[int], body: str):
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"Ledger error: {body}")
        else:
            super().__init__(f"Ledger error {status}: {body}")


class BroadcastRejected(UpstreamError):
    """The ledger refused a signed transaction."""

    code = "BROADCAST_REJECTED"


class IntegrityError(AnchorError):
    """Authentication tag mismatch on decrypt."""

    code = "INTEGRITY_ERROR"


class DecodeError(AnchorError):
    """Decrypted plaintext is not a JSON document."""

    code = "DECODE_ERROR"


class PayloadError(AnchorError, ValueError):
    """Corrupt on-chain payload; fatal for one anchor id only."""

    code = "PAYLOAD_ERROR"


class UnsupportedScriptFormat(PayloadError):
    """Script does not start with one of the four push-data encodings."""

    code = "UNSUPPORTED_SCRIPT_FORMAT"


class PrefixNotFound(PayloadError):
    """Magic prefix missing from the recovered blob."""

    code = "PREFIX_NOT_FOUND"


class MalformedEnvelope(PayloadError):
    """Blob after the magic prefix is not a valid envelope document."""

    code = "MALFORMED_ENVELOPE"


class NotFound(AnchorError):
    """Missing key-index entry or missing ledger transaction."""

    code = "NOT_FOUND"


class SigningError(AnchorError):
    """Signing the transaction input failed."""

    code = "SIGNING_ERROR"


class TransactionStateError(AnchorError):
    """A transaction builder step was called out of order."""

    code = "TRANSACTION_STATE_ERROR"
