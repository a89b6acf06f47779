"""Abstract interface for ledger communication."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class UnspentOutput:
    """Unspent transaction output."""
    txid: str
    output_index: int
    value: int  # satoshis
    locking_script: bytes = b""


@dataclass(frozen=True)
class OutputInfo:
    """One output of a fetched transaction."""
    value: int  # satoshis
    script: bytes


@dataclass
class TransactionInfo:
    """Transaction information."""
    txid: str
    outputs: list[OutputInfo] = field(default_factory=list)
    confirmations: int = 0


class LedgerClient(ABC):
    """Abstract interface for the ledger service.

    Every method may raise NetworkError or UpstreamError; lookups of
    unknown transactions raise NotFound.
    """

    @abstractmethod
    async def get_spendable_outputs(self, address: str) -> list[UnspentOutput]:
        """List unspent outputs paying to address."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_raw_transaction(self, txid: str) -> bytes:
        """Fetch serialized transaction bytes."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_transaction(self, txid: str) -> TransactionInfo:
        """Fetch a transaction with its decoded outputs."""
        pass  # pragma: no cover

    @abstractmethod
    async def broadcast(self, raw_tx: bytes) -> str:
        """Broadcast signed transaction, return txid."""
        pass  # pragma: no cover

    async def close(self) -> None:
        """Release network resources."""
