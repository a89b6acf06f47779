"""Anchor transaction builder.

Builds a one-input, two-output transaction:
- output 0: change back to the funding key (P2PKH)
- output 1: unspendable data output carrying the payload, 1 satoshi

Steps must run in order:
EMPTY -> INPUTS_BOUND -> OUTPUTS_BOUND -> FEE_APPLIED -> SIGNED -> BROADCAST

Serialization and signing are done by the ``bsv`` SDK; this module owns the
step order and the fee and change policy.
"""

import logging
from enum import Enum
from typing import Optional

from bsv import (
    P2PKH,
    PrivateKey,
    Script,
    Transaction,
    TransactionInput,
    TransactionOutput,
)

from mcp_cert_anchor.errors import (
    BroadcastRejected,
    InsufficientFunds,
    SigningError,
    TransactionStateError,
    UpstreamError,
)
from mcp_cert_anchor.funding import estimate_fee
from mcp_cert_anchor.keys import funding_locking_script
from mcp_cert_anchor.node.interface import LedgerClient, UnspentOutput

logger = logging.getLogger(__name__)

DATA_OUTPUT_VALUE = 1

# Largest DER signature plus the sighash byte
MAX_SIGNATURE_SIZE = 73


class BuilderState(Enum):
    """Transaction builder progress."""
    EMPTY = "empty"
    INPUTS_BOUND = "inputs_bound"
    OUTPUTS_BOUND = "outputs_bound"
    FEE_APPLIED = "fee_applied"
    SIGNED = "signed"
    BROADCAST = "broadcast"


def _varint_size(n: int) -> int:
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


def script_bytes(script: Script) -> bytes:
    """Raw bytes of an SDK script."""
    return bytes.fromhex(script.hex())


class TransactionBuilder:
    """Assembles, signs and broadcasts one anchor transaction.

    Each store operation uses its own builder.

    Usage:
        builder = TransactionBuilder()
        builder.bind_input(utxo, source_tx, key)
        builder.bind_outputs(change_script, data_script)
        builder.apply_fee(0.05)
        builder.sign()
        txid = await builder.broadcast(client)
    """

    def __init__(self):
        self.state = BuilderState.EMPTY
        self.tx: Optional[Transaction] = None
        self.input_value = 0
        self.fee: Optional[int] = None
        self._key: Optional[PrivateKey] = None
        self._input: Optional[TransactionInput] = None

    def _require(self, expected: BuilderState) -> None:
        if self.state != expected:
            raise TransactionStateError(
                f"Builder is {self.state.value}, expected {expected.value}"
            )

    def bind_input(
        self,
        utxo: UnspentOutput,
        source_tx: Transaction,
        key: PrivateKey,
    ) -> "TransactionBuilder":
        """Spend utxo, taken from its parsed source transaction.

        Raises:
            UpstreamError: If the source transaction does not match the UTXO
        """
        self._require(BuilderState.EMPTY)

        source_txid = source_tx.txid()
        if source_txid != utxo.txid:
            raise UpstreamError(
                None, f"Source transaction hash {source_txid} does not match {utxo.txid}"
            )
        if utxo.output_index >= len(source_tx.outputs):
            raise UpstreamError(
                None, f"Output {utxo.output_index} missing from {utxo.txid}"
            )
        source_output = source_tx.outputs[utxo.output_index]
        if source_output.satoshis != utxo.value:
            raise UpstreamError(
                None,
                f"UTXO value {utxo.value} disagrees with source output {source_output.satoshis}",
            )

        if source_output.locking_script.hex() != funding_locking_script(key).hex():
            logger.warning(
                "Output %s:%d is not a P2PKH output for the funding key",
                utxo.txid, utxo.output_index,
            )

        self._key = key
        self._input = TransactionInput(
            source_transaction=source_tx,
            source_txid=utxo.txid,
            source_output_index=utxo.output_index,
            unlocking_script_template=P2PKH().unlock(key),
        )
        self.input_value = source_output.satoshis
        self.state = BuilderState.INPUTS_BOUND
        return self

    def bind_outputs(
        self,
        change_script: Script,
        data_script: bytes,
        data_value: int = DATA_OUTPUT_VALUE,
    ) -> "TransactionBuilder":
        """Add the change output (value pending) and the data output."""
        self._require(BuilderState.INPUTS_BOUND)
        outputs = [
            TransactionOutput(locking_script=change_script, satoshis=0, change=False),
            TransactionOutput(
                locking_script=Script(data_script.hex()), satoshis=data_value, change=False
            ),
        ]
        self.tx = Transaction([self._input], outputs)
        self.state = BuilderState.OUTPUTS_BOUND
        return self

    def unlocking_size(self) -> int:
        """Upper bound on the P2PKH unlocking script size."""
        return 1 + MAX_SIGNATURE_SIZE + 1 + len(self._key.public_key().serialize())

    def estimated_size(self) -> int:
        """Serialized size once signed, using the largest possible signature."""
        unlocking = self.unlocking_size()
        size = 4 + _varint_size(1) + 32 + 4 + _varint_size(unlocking) + unlocking + 4
        size += _varint_size(len(self.tx.outputs))
        for output in self.tx.outputs:
            script = script_bytes(output.locking_script)
            size += 8 + _varint_size(len(script)) + len(script)
        return size + 4

    def apply_fee(
        self, fee_rate: float, require_change_above_data: bool = False
    ) -> "TransactionBuilder":
        """Charge the fee to the change output.

        With require_change_above_data, change that does not exceed the data
        output value is refused, since a lookup by lowest value could then
        pick the change output instead of the data.

        Raises:
            InsufficientFunds: If change would go negative, or would not
                exceed the data value when that is required
        """
        self._require(BuilderState.OUTPUTS_BOUND)

        size = self.estimated_size()
        fee = estimate_fee(size, fee_rate)
        data_value = self.tx.outputs[1].satoshis
        change = self.input_value - data_value - fee
        if change < 0:
            raise InsufficientFunds(
                f"Input of {self.input_value} sats cannot cover data output "
                f"({data_value}) and fee ({fee})"
            )
        if change <= data_value:
            if require_change_above_data:
                raise InsufficientFunds(
                    f"Change of {change} sats would not exceed the data output "
                    f"({data_value}); the anchor could not be located by value"
                )
            logger.warning(
                "Change (%d sats) not above data output value; "
                "value-based output lookup may pick the wrong output",
                change,
            )

        self.tx.outputs[0].satoshis = change
        self.fee = fee
        self.state = BuilderState.FEE_APPLIED
        logger.info("Fee %d sats for ~%d bytes, change %d sats", fee, size, change)
        return self

    def sign(self) -> "TransactionBuilder":
        """Sign the input.

        Raises:
            SigningError: If signing fails; the input is left unsigned
        """
        self._require(BuilderState.FEE_APPLIED)
        try:
            self.tx.sign()
        except Exception as e:
            self.tx.inputs[0].unlocking_script = None
            raise SigningError(f"Could not sign input: {e}") from e

        if self.tx.inputs[0].unlocking_script is None:
            raise SigningError("Input was left without an unlocking script")
        self.state = BuilderState.SIGNED
        return self

    def raw(self) -> bytes:
        """Serialized transaction bytes."""
        return bytes.fromhex(self.tx.hex())

    async def broadcast(self, client: LedgerClient) -> str:
        """Send the signed transaction to the ledger.

        Returns:
            The ledger-assigned transaction id

        Raises:
            BroadcastRejected: If the ledger refuses the transaction
            NetworkError: On transport failure; the same bytes may be resent
        """
        self._require(BuilderState.SIGNED)
        local_txid = self.tx.txid()
        try:
            txid = await client.broadcast(self.raw())
        except BroadcastRejected:
            raise
        except UpstreamError as e:
            raise BroadcastRejected(e.status, e.body) from e

        if txid != local_txid:
            logger.warning("Ledger txid %s differs from local hash %s", txid, local_txid)
        self.state = BuilderState.BROADCAST
        return txid
