"""MCP server for anchoring encrypted certificates on the BSV ledger."""

__version__ = "0.1.0"

# Server entry points
from mcp_cert_anchor.server import create_server, main

# Configuration
from mcp_cert_anchor.config import Config, ConnectionMethod, Network, load_config

# Encryption
from mcp_cert_anchor.crypto import EnvelopeCipher, KeyMaterial

# Payload encoding/decoding
from mcp_cert_anchor.envelope import (
    MAGIC_PREFIX,
    Envelope,
    decode_envelope,
    encode_envelope,
)

# Push-data primitives
from mcp_cert_anchor.primitives import (
    decode_push_data,
    encode_push_data,
)

# Anchoring
from mcp_cert_anchor.service import AnchoringService

__all__ = [
    # Version
    "__version__",
    # Server
    "create_server",
    "main",
    # Config
    "Config",
    "ConnectionMethod",
    "Network",
    "load_config",
    # Encryption
    "EnvelopeCipher",
    "KeyMaterial",
    # Envelope
    "MAGIC_PREFIX",
    "Envelope",
    "encode_envelope",
    "decode_envelope",
    # Primitives
    "encode_push_data",
    "decode_push_data",
    # Service
    "AnchoringService",
]
