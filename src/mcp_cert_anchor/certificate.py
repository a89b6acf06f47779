"""Disability certificate schema, preview and field projection."""

import logging
import re
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mcp_cert_anchor.errors import ValidationError

logger = logging.getLogger(__name__)

ISSUER = "Sistema de Certificados de Discapacidad BSV"

_TXID_RE = re.compile(r"^[0-9a-fA-F]{64}$")

DisabilityType = Literal["cognitiva", "fisica", "sensorial", "psiquica", "multiple"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        extra="forbid",
    )


class EmergencyContact(_CamelModel):
    name: str
    phone: str
    relationship: str


class CertificateData(_CamelModel):
    """A disability certificate as submitted for anchoring."""

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    document_id: str = Field(min_length=7, max_length=15)
    phone_number: str = Field(min_length=9, max_length=20, pattern=r"^\+?[\d\s\-()]+$")

    disability_type: DisabilityType
    disability_percentage: float = Field(ge=33, le=100)
    disability_description: str = Field(max_length=1000)

    mobility_aids: Optional[list[str]] = None
    special_needs: Optional[str] = Field(default=None, max_length=500)
    emergency_contact: Optional[EmergencyContact] = None
    metadata: Optional[dict[str, Any]] = None


# Names callers may request when retrieving, in wire (camelCase) form
PROJECTABLE_FIELDS = frozenset(
    f.alias or name for name, f in CertificateData.model_fields.items()
)


def validate_certificate(record: Any) -> CertificateData:
    """Check a submitted certificate against the schema.

    Raises:
        ValidationError: With the first problem found
    """
    if not isinstance(record, dict):
        raise ValidationError("Certificate must be a JSON object")
    try:
        return CertificateData.model_validate(record)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "certificate"
        raise ValidationError(f"{location}: {first['msg']}") from e


def validate_anchor_id(anchor_id: Any) -> str:
    """Anchor ids are 64-char hex transaction ids.

    Raises:
        ValidationError: If the id is malformed
    """
    if not isinstance(anchor_id, str) or not _TXID_RE.match(anchor_id):
        raise ValidationError(f"Invalid anchor id: {anchor_id!r}")
    return anchor_id.lower()


def stamp_issuance(record: dict, issued_at: datetime) -> dict:
    """Copy of record with issuance metadata added."""
    metadata = dict(record.get("metadata") or {})
    metadata["issuedAt"] = issued_at.isoformat()
    metadata["issuer"] = ISSUER
    return {**record, "metadata": metadata}


def build_preview(record: dict, created_at: datetime) -> dict:
    """Non-sensitive summary kept unencrypted in the key index."""
    return {
        "disabilityType": record["disabilityType"],
        "percentage": record["disabilityPercentage"],
        "createdAt": created_at.isoformat(),
    }


def project_fields(record: dict, fields: Optional[list[str]], strict: bool = False) -> dict:
    """Keep only the requested fields of a decrypted record.

    None returns the whole record. Unknown names are dropped (and logged)
    unless strict is set.

    Raises:
        ValidationError: In strict mode, on an unknown field name
    """
    if fields is None:
        return record

    unknown = [f for f in fields if f not in PROJECTABLE_FIELDS]
    if unknown:
        if strict:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")
        logger.info("Ignoring unknown fields in projection: %s", ", ".join(unknown))

    return {
        f: record[f]
        for f in fields
        if f in PROJECTABLE_FIELDS and f in record
    }
