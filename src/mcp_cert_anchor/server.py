"""MCP server for anchoring encrypted disability certificates.

This server exposes tools to store certificates on the BSV ledger,
retrieve and decrypt them by transaction id, and inspect the local
key index and funding address.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from mcp_cert_anchor.config import Config, apply_env, load_config
from mcp_cert_anchor.envelope import decode_envelope
from mcp_cert_anchor.errors import AnchorError, ConfigError
from mcp_cert_anchor.primitives import decode_push_data, strip_data_marker
from mcp_cert_anchor.service import AnchoringService

logger = logging.getLogger(__name__)


def create_server(
    config: Optional[Config] = None,
    service: Optional[AnchoringService] = None,
) -> FastMCP:
    """Create and configure the MCP server with all tools.

    Args:
        config: Optional configuration. If not provided, uses defaults.
        service: Optional prebuilt service (otherwise built on first use).

    Returns:
        Configured FastMCP server instance.
    """
    if config is None:
        config = Config()

    mcp = FastMCP("mcp-cert-anchor")

    # Store config on server for access by tools
    mcp._config = config
    mcp._service = service

    def get_service() -> AnchoringService:
        """Get or create the anchoring service."""
        if mcp._service is None:
            mcp._service = AnchoringService.from_config(config)
        return mcp._service

    # =========================================================================
    # Certificate Storage
    # =========================================================================

    @mcp.tool()
    async def store_certificate(certificate: dict[str, Any]) -> dict:
        """Encrypt a disability certificate and anchor it on the ledger.

        Args:
            certificate: Certificate fields (firstName, lastName, documentId,
                phoneNumber, disabilityType, disabilityPercentage,
                disabilityDescription, and optional mobilityAids,
                specialNeeds, emergencyContact, metadata)

        Returns:
            Dictionary with 'anchorId', the transaction id needed to
            retrieve the certificate later.
        """
        try:
            anchor_id = await get_service().store(certificate)
        except AnchorError as e:
            logger.error("Store failed: %s", e)
            return e.to_dict()

        return {
            "anchorId": anchor_id,
            "message": "Certificate anchored on the BSV ledger",
        }

    @mcp.tool()
    async def retrieve_certificate(
        txid: str,
        fields: Optional[list[str]] = None,
    ) -> dict:
        """Fetch and decrypt an anchored certificate.

        Args:
            txid: Anchor id returned by store_certificate
            fields: Field names to return (optional, default: all).
                Unknown names are ignored.

        Returns:
            Dictionary with 'data' (the requested fields) and 'retrievedAt'.
        """
        try:
            data = await get_service().retrieve(txid, fields)
        except AnchorError as e:
            logger.error("Retrieve of %s failed: %s", txid, e)
            return e.to_dict()

        return {
            "data": data,
            "retrievedAt": datetime.now(timezone.utc).isoformat(),
        }

    # =========================================================================
    # Key Index
    # =========================================================================

    @mcp.tool()
    def list_certificates() -> dict:
        """List anchored certificates with their non-sensitive previews.

        Returns:
            Dictionary with 'count' and 'certificates'.
        """
        try:
            certificates = get_service().list_anchors()
        except AnchorError as e:
            return e.to_dict()

        return {
            "count": len(certificates),
            "certificates": certificates,
        }

    @mcp.tool()
    def certificate_stats() -> dict:
        """Summarize anchored certificates by type and percentage.

        Returns:
            Dictionary with 'total', 'byType' and 'averagePercentage'.
        """
        try:
            return get_service().stats()
        except AnchorError as e:
            return e.to_dict()

    # =========================================================================
    # Ledger
    # =========================================================================

    @mcp.tool()
    async def get_funding_status() -> dict:
        """Show the funding address and its spendable balance.

        Returns:
            Dictionary with 'address', 'utxoCount' and 'totalSatoshis'.
        """
        try:
            return await get_service().funding_status()
        except AnchorError as e:
            return e.to_dict()

    @mcp.tool()
    def decode_anchor_script(script_hex: str) -> dict:
        """Extract the encrypted envelope from a data output script.

        Works offline and never decrypts.

        Args:
            script_hex: Data output locking script as hex string

        Returns:
            Dictionary with 'payload_size' and the base64 'envelope' fields.
        """
        try:
            script = bytes.fromhex(script_hex)
        except ValueError as e:
            return {"error": f"Invalid hex string: {e}", "code": "VALIDATION_ERROR", "retryable": False}

        try:
            blob = decode_push_data(strip_data_marker(script))
            envelope = decode_envelope(blob)
        except AnchorError as e:
            return e.to_dict()

        return {
            "payload_size": len(blob),
            "envelope": envelope.to_dict(),
        }

    return mcp


def setup_logging(level: str = "INFO") -> None:
    """Log to stderr; stdout carries the MCP stdio protocol."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    """Entry point for the MCP server."""
    from pathlib import Path

    # Try to load config from standard locations
    config_paths = [
        Path("mcp-cert-anchor.toml"),
        Path.home() / ".config" / "mcp-cert-anchor" / "config.toml",
    ]

    config = None
    for path in config_paths:
        if path.exists():
            config = load_config(path)
            break

    if config is None:
        config = Config()

    apply_env(config)
    setup_logging(config.log_level)

    try:
        config.validate()
    except ConfigError as e:
        logger.critical("Refusing to start: %s", e)
        raise SystemExit(1) from e

    server = create_server(config)
    server.run()


if __name__ == "__main__":
    main()
