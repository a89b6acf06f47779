"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import tomli

from mcp_cert_anchor.errors import ConfigError


class ConnectionMethod(Enum):
    """How the ledger is reached."""
    WHATSONCHAIN = "whatsonchain"
    RPC = "rpc"


class Network(Enum):
    """BSV network."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"


class IndexBackend(Enum):
    """Key index storage backend."""
    JSONL = "jsonl"
    JSON = "json"
    MEMORY = "memory"


class LocateStrategy(Enum):
    """How the data output is found in a fetched transaction."""
    VALUE = "value"
    SCRIPT = "script"


# Default RPC ports per network
DEFAULT_PORTS = {
    Network.MAINNET: 8332,
    Network.TESTNET: 18332,
    Network.REGTEST: 18443,
}

# WhatsOnChain path segment per network
WOC_CHAINS = {
    Network.MAINNET: "main",
    Network.TESTNET: "test",
}

MASTER_KEY_ENV = "ENCRYPTION_MASTER_KEY"
WIF_ENV = "BSV_PRIVATE_KEY"

DEFAULT_INDEX_PATH = Path.home() / ".config" / "mcp-cert-anchor" / "index.jsonl"


@dataclass
class Config:
    """Server configuration."""

    # Connection settings
    connection_method: ConnectionMethod = ConnectionMethod.WHATSONCHAIN
    network: Network = Network.MAINNET

    # WhatsOnChain settings
    woc_base_url: str = "https://api.whatsonchain.com/v1/bsv"

    # RPC settings
    rpc_host: str = "127.0.0.1"
    rpc_port: Optional[int] = None
    rpc_user: str = ""
    rpc_password: str = field(default="", repr=False)

    # Secrets
    wif: str = field(default="", repr=False)
    master_key: str = field(default="", repr=False)
    kdf_iterations: int = 100_000

    # Fee rate in satoshis per byte
    fee_rate: float = 0.05

    # Key index
    index_backend: IndexBackend = IndexBackend.JSONL
    index_path: Path = DEFAULT_INDEX_PATH

    # Safety settings
    timeout: float = 30.0
    max_data_size: int = 102400  # 100KB
    locate_data_output: LocateStrategy = LocateStrategy.VALUE

    log_level: str = "INFO"

    @property
    def default_rpc_port(self) -> int:
        """Get default RPC port for current network."""
        return DEFAULT_PORTS[self.network]

    def get_rpc_port(self) -> int:
        """Get configured or default RPC port."""
        return self.rpc_port if self.rpc_port else self.default_rpc_port

    @property
    def woc_url(self) -> str:
        """WhatsOnChain API root for the current network."""
        return f"{self.woc_base_url.rstrip('/')}/{WOC_CHAINS[self.network]}"

    def validate(self) -> None:
        """Fail fast on settings that would lose data or funds.

        Raises:
            ConfigError: On the first invalid setting
        """
        # Imported here to avoid a cycle (crypto/keys import Network)
        from mcp_cert_anchor.crypto import MIN_KDF_ITERATIONS, parse_master_key
        from mcp_cert_anchor.keys import load_private_key

        parse_master_key(self.master_key)

        if not self.wif:
            raise ConfigError(f"{WIF_ENV} not set. Provide the funding key in WIF format.")
        try:
            load_private_key(self.wif)
        except ValueError as e:
            raise ConfigError(f"Invalid funding key: {e}") from e

        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ConfigError(f"kdf_iterations must be at least {MIN_KDF_ITERATIONS}")
        if self.fee_rate <= 0:
            raise ConfigError("Fee rate must be positive")
        if self.timeout <= 0:
            raise ConfigError("Timeout must be positive")
        if (self.connection_method == ConnectionMethod.WHATSONCHAIN
                and self.network not in WOC_CHAINS):
            raise ConfigError(f"WhatsOnChain does not serve {self.network.value}")


DEFAULT_CONFIG = Config()


def _enum(enum_cls, value, section: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value {value!r} in [{section}]") from e


def load_config(path: Path) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration, merged with defaults
    """
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomli.load(f)

    conn = data.get("connection", {})
    woc = data.get("whatsonchain", {})
    rpc = data.get("rpc", {})
    wallet = data.get("wallet", {})
    crypto = data.get("crypto", {})
    fees = data.get("fees", {})
    index = data.get("index", {})
    safety = data.get("safety", {})
    logging_cfg = data.get("logging", {})

    return Config(
        connection_method=_enum(ConnectionMethod, conn.get("method", "whatsonchain"), "connection"),
        network=_enum(Network, conn.get("network", "mainnet"), "connection"),
        woc_base_url=woc.get("base_url", DEFAULT_CONFIG.woc_base_url),
        rpc_host=rpc.get("host", "127.0.0.1"),
        rpc_port=rpc.get("port"),
        rpc_user=rpc.get("user", ""),
        rpc_password=rpc.get("password", ""),
        wif=wallet.get("wif", ""),
        master_key=crypto.get("master_key", ""),
        kdf_iterations=crypto.get("kdf_iterations", 100_000),
        fee_rate=float(fees.get("rate", DEFAULT_CONFIG.fee_rate)),
        index_backend=_enum(IndexBackend, index.get("backend", "jsonl"), "index"),
        index_path=Path(index["path"]).expanduser() if "path" in index else DEFAULT_INDEX_PATH,
        timeout=float(safety.get("timeout", 30.0)),
        max_data_size=safety.get("max_data_size", 102400),
        locate_data_output=_enum(LocateStrategy, safety.get("locate_data_output", "value"), "safety"),
        log_level=logging_cfg.get("level", "INFO"),
    )


def apply_env(config: Config, env: Optional[Mapping[str, str]] = None) -> Config:
    """Override secrets from the environment.

    Args:
        config: Configuration to update in place
        env: Environment mapping (defaults to os.environ)

    Returns:
        The same configuration
    """
    env = os.environ if env is None else env
    if env.get(MASTER_KEY_ENV):
        config.master_key = env[MASTER_KEY_ENV]
    if env.get(WIF_ENV):
        config.wif = env[WIF_ENV]
    return config
