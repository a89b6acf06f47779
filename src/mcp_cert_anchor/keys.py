"""Funding key loading and addresses.

Key handling, addresses and signatures come from the ``bsv`` SDK; this
module maps configuration onto it.
"""

from bsv import Network as BsvNetwork
from bsv import P2PKH, PrivateKey, Script

from mcp_cert_anchor.config import Network
from mcp_cert_anchor.errors import ValidationError

# regtest shares the testnet version bytes
BSV_NETWORKS = {
    Network.MAINNET: BsvNetwork.MAINNET,
    Network.TESTNET: BsvNetwork.TESTNET,
    Network.REGTEST: BsvNetwork.TESTNET,
}


def load_private_key(wif: str) -> PrivateKey:
    """Parse a Wallet Import Format key.

    Raises:
        ValidationError: If the WIF is malformed
    """
    if not isinstance(wif, str) or not wif:
        raise ValidationError("Funding key must be a non-empty WIF string")
    try:
        return PrivateKey(wif)
    except Exception as e:
        # The SDK raises assorted types for bad checksums and prefixes
        raise ValidationError(f"Malformed WIF: {e}") from e


def funding_address(key: PrivateKey, network: Network = Network.MAINNET) -> str:
    """P2PKH address for key on network."""
    return key.address(network=BSV_NETWORKS[network])


def funding_locking_script(key: PrivateKey) -> Script:
    """P2PKH locking script paying to key."""
    return P2PKH().lock(key.address())
