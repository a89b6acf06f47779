"""Ledger communication interfaces."""

from mcp_cert_anchor.config import Config, ConnectionMethod
from mcp_cert_anchor.node.interface import (
    LedgerClient,
    OutputInfo,
    TransactionInfo,
    UnspentOutput,
)
from mcp_cert_anchor.node.rpc import NodeRPCClient
from mcp_cert_anchor.node.whatsonchain import WhatsOnChainClient


def create_ledger_client(config: Config) -> LedgerClient:
    """Build the ledger client selected by config."""
    if config.connection_method == ConnectionMethod.RPC:
        return NodeRPCClient(config)
    return WhatsOnChainClient(config)


__all__ = [
    "LedgerClient",
    "OutputInfo",
    "TransactionInfo",
    "UnspentOutput",
    "NodeRPCClient",
    "WhatsOnChainClient",
    "create_ledger_client",
]
