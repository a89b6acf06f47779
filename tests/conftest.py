"""Shared fixtures: an in-process fake ledger and a wired service."""

import asyncio
import os
from datetime import datetime, timezone

import pytest
from bsv import P2PKH, PrivateKey, Script, Transaction, TransactionInput, TransactionOutput

from mcp_cert_anchor.config import Network
from mcp_cert_anchor.crypto import EnvelopeCipher
from mcp_cert_anchor.errors import NotFound, UpstreamError
from mcp_cert_anchor.index import MemoryKeyIndex
from mcp_cert_anchor.keys import funding_address
from mcp_cert_anchor.node.interface import (
    LedgerClient,
    OutputInfo,
    TransactionInfo,
    UnspentOutput,
)
from mcp_cert_anchor.service import AnchoringService

TEST_MASTER_KEY = bytes(range(32))
# Private key 1, compressed
TEST_WIF = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
TEST_ADDRESS = "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"
FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def parse_tx(raw: bytes) -> Transaction:
    return Transaction.from_hex(raw.hex())


def script_of(output) -> bytes:
    return bytes.fromhex(output.locking_script.hex())


class FakeLedger(LedgerClient):
    """In-memory ledger that funds, accepts and serves P2PKH transactions."""

    def __init__(self, network: Network = Network.MAINNET):
        self.network = network
        self.transactions: dict[str, bytes] = {}
        self.utxos: dict[str, list[UnspentOutput]] = {}
        self.addresses: dict[bytes, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.reject_with = None
        self.closed = False

    def fund(self, key: PrivateKey, value: int) -> UnspentOutput:
        """Create a confirmed output of value sats paying to key."""
        address = funding_address(key, self.network)
        locking = P2PKH().lock(key.address())
        script = bytes.fromhex(locking.hex())
        self.addresses[script] = address
        tx = Transaction(
            [TransactionInput(
                source_txid=os.urandom(32).hex(),
                source_output_index=0,
                unlocking_script=Script("51"),
            )],
            [TransactionOutput(locking_script=locking, satoshis=value)],
        )
        self.transactions[tx.txid()] = bytes.fromhex(tx.hex())
        utxo = UnspentOutput(txid=tx.txid(), output_index=0, value=value, locking_script=script)
        self.utxos.setdefault(address, []).append(utxo)
        return utxo

    def _is_unspent(self, txid: str, index: int) -> bool:
        return any(
            u.txid == txid and u.output_index == index
            for utxos in self.utxos.values()
            for u in utxos
        )

    async def get_spendable_outputs(self, address: str) -> list[UnspentOutput]:
        self.calls.append(("get_spendable_outputs", address))
        await asyncio.sleep(0)
        return list(self.utxos.get(address, []))

    async def get_raw_transaction(self, txid: str) -> bytes:
        self.calls.append(("get_raw_transaction", txid))
        await asyncio.sleep(0)
        if txid not in self.transactions:
            raise NotFound(f"{txid} not found")
        return self.transactions[txid]

    async def get_transaction(self, txid: str) -> TransactionInfo:
        self.calls.append(("get_transaction", txid))
        await asyncio.sleep(0)
        if txid not in self.transactions:
            raise NotFound(f"{txid} not found")
        tx = parse_tx(self.transactions[txid])
        return TransactionInfo(
            txid=txid,
            outputs=[OutputInfo(value=o.satoshis, script=script_of(o)) for o in tx.outputs],
            confirmations=1,
        )

    async def broadcast(self, raw_tx: bytes) -> str:
        self.calls.append(("broadcast", raw_tx.hex()))
        await asyncio.sleep(0)
        if self.reject_with:
            raise UpstreamError(400, self.reject_with)

        tx = parse_tx(raw_tx)
        txid = tx.txid()
        spent = [(i.source_txid, i.source_output_index) for i in tx.inputs]
        for outpoint in spent:
            if not self._is_unspent(*outpoint):
                raise UpstreamError(400, "txn-mempool-conflict")

        for address, utxos in self.utxos.items():
            self.utxos[address] = [
                u for u in utxos
                if (u.txid, u.output_index) not in spent
            ]
        for n, out in enumerate(tx.outputs):
            script = script_of(out)
            address = self.addresses.get(script)
            if address is not None:
                self.utxos.setdefault(address, []).append(
                    UnspentOutput(txid=txid, output_index=n, value=out.satoshis, locking_script=script)
                )

        self.transactions[txid] = raw_tx
        return txid

    async def close(self) -> None:
        self.closed = True

    def called(self, method: str) -> bool:
        return any(name == method for name, _ in self.calls)


@pytest.fixture
def key():
    return PrivateKey(TEST_WIF)


@pytest.fixture
def cipher():
    return EnvelopeCipher(TEST_MASTER_KEY)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def index():
    return MemoryKeyIndex()


@pytest.fixture
def service(cipher, ledger, index, key):
    return AnchoringService(
        cipher=cipher,
        ledger=ledger,
        index=index,
        key=key,
        fee_rate=0.5,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def certificate():
    return {
        "firstName": "Lucía",
        "lastName": "Fernández",
        "documentId": "12345678Z",
        "phoneNumber": "+34 600 123 456",
        "disabilityType": "fisica",
        "disabilityPercentage": 60,
        "disabilityDescription": "Movilidad reducida en extremidades inferiores",
        "mobilityAids": ["silla de ruedas"],
        "emergencyContact": {
            "name": "Carmen Fernández",
            "phone": "+34 600 654 321",
            "relationship": "madre",
        },
    }
