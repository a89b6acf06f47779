"""Certificate anchoring and retrieval.

Store path:
    validate -> encrypt -> encode -> select UTXO -> build/sign/broadcast
    -> index key under the returned anchor id

Retrieve path:
    index lookup -> fetch transaction -> recover envelope -> decrypt
    -> optional field projection

The key index is written only after a successful broadcast, so a failed
store never leaves a key for a certificate that is not on the ledger.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from bsv import PrivateKey, Transaction

from mcp_cert_anchor.builder import TransactionBuilder
from mcp_cert_anchor.certificate import (
    build_preview,
    project_fields,
    stamp_issuance,
    validate_anchor_id,
    validate_certificate,
)
from mcp_cert_anchor.config import Config, LocateStrategy, Network
from mcp_cert_anchor.crypto import EnvelopeCipher, KeyMaterial, parse_master_key
from mcp_cert_anchor.envelope import encode_envelope
from mcp_cert_anchor.errors import (
    DecodeError,
    IntegrityError,
    NotFound,
    UpstreamError,
    ValidationError,
)
from mcp_cert_anchor.funding import select_utxo
from mcp_cert_anchor.index import IndexRecord, KeyIndex, open_key_index
from mcp_cert_anchor.keys import funding_address, funding_locking_script, load_private_key
from mcp_cert_anchor.node import LedgerClient, create_ledger_client
from mcp_cert_anchor.primitives import encode_data_output_script
from mcp_cert_anchor.reader import recover_envelope

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnchoringService:
    """Anchors encrypted certificates on the ledger and reads them back.

    All collaborators are injected so tests can swap in fakes.
    """

    def __init__(
        self,
        cipher: EnvelopeCipher,
        ledger: LedgerClient,
        index: KeyIndex,
        key: PrivateKey,
        network: Network = Network.MAINNET,
        fee_rate: float = 0.05,
        max_data_size: int = 102400,
        locate_strategy: LocateStrategy = LocateStrategy.VALUE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cipher = cipher
        self.ledger = ledger
        self.index = index
        self.key = key
        self.network = network
        self.fee_rate = fee_rate
        self.max_data_size = max_data_size
        self.locate_strategy = locate_strategy
        self._clock = clock
        self._funding_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        ledger: Optional[LedgerClient] = None,
        index: Optional[KeyIndex] = None,
    ) -> "AnchoringService":
        """Build a service from validated configuration."""
        config.validate()
        cipher = EnvelopeCipher(parse_master_key(config.master_key), config.kdf_iterations)
        return cls(
            cipher=cipher,
            ledger=ledger if ledger is not None else create_ledger_client(config),
            index=index if index is not None else open_key_index(config),
            key=load_private_key(config.wif),
            network=config.network,
            fee_rate=config.fee_rate,
            max_data_size=config.max_data_size,
            locate_strategy=config.locate_data_output,
        )

    @property
    def address(self) -> str:
        """Funding (and change) address."""
        return funding_address(self.key, self.network)

    def _funding_lock(self, address: str) -> asyncio.Lock:
        # Selection through broadcast must not interleave for one address,
        # or two stores can spend the same UTXO.
        lock = self._funding_locks.get(address)
        if lock is None:
            lock = self._funding_locks[address] = asyncio.Lock()
        return lock

    async def store(self, record: Any) -> str:
        """Encrypt and anchor a certificate.

        Returns:
            The anchor id (ledger transaction id)

        Raises:
            ValidationError: If the certificate is malformed or too large
            NoFunds, InsufficientFunds: If the funding address cannot pay
            BroadcastRejected, UpstreamError, NetworkError: From the ledger
        """
        validate_certificate(record)
        now = self._clock()

        envelope, key_material = self.cipher.encrypt(stamp_issuance(record, now))
        blob = encode_envelope(envelope)
        if len(blob) > self.max_data_size:
            raise ValidationError(
                f"Encoded certificate is {len(blob)} bytes, limit is {self.max_data_size}"
            )
        data_script = encode_data_output_script(blob)
        logger.info("Encrypted certificate payload: %d bytes", len(blob))

        address = self.address
        async with self._funding_lock(address):
            utxo = select_utxo(await self.ledger.get_spendable_outputs(address))
            logger.info("Using UTXO %s:%d with %d sats", utxo.txid, utxo.output_index, utxo.value)

            raw = await self.ledger.get_raw_transaction(utxo.txid)
            try:
                source_tx = Transaction.from_hex(raw.hex())
            except Exception as e:
                raise UpstreamError(None, f"Unparseable source transaction {utxo.txid}: {e}") from e
            if not source_tx:
                raise UpstreamError(None, f"Unparseable source transaction {utxo.txid}")

            builder = TransactionBuilder()
            builder.bind_input(utxo, source_tx, self.key)
            builder.bind_outputs(funding_locking_script(self.key), data_script)
            builder.apply_fee(
                self.fee_rate,
                require_change_above_data=self.locate_strategy == LocateStrategy.VALUE,
            )
            builder.sign()
            anchor_id = (await builder.broadcast(self.ledger)).lower()

        logger.info("Certificate anchored in %s", anchor_id)
        try:
            self.index.put(IndexRecord(
                anchor_id=anchor_id,
                key_material_hex=key_material.to_hex(),
                created_at=now.isoformat(),
                preview=build_preview(record, now),
            ))
        except Exception:
            logger.error("Anchor %s broadcast but its key could not be indexed", anchor_id)
            raise
        return anchor_id

    async def retrieve(
        self,
        anchor_id: str,
        fields: Optional[list[str]] = None,
        strict: bool = False,
    ) -> dict:
        """Fetch and decrypt an anchored certificate.

        Args:
            anchor_id: Transaction id returned by store
            fields: Field names to return; None returns everything
            strict: Reject unknown field names instead of dropping them

        Raises:
            NotFound: If the anchor id is not indexed or not on the ledger
            IntegrityError: If the ciphertext or key was tampered with
            PayloadError: If the on-chain payload is corrupt
        """
        anchor_id = validate_anchor_id(anchor_id)

        entry = self.index.get(anchor_id)
        if entry is None:
            raise NotFound(f"No certificate indexed for {anchor_id}")
        try:
            key_material = KeyMaterial.from_hex(entry.key_material_hex)
        except ValidationError as e:
            raise IntegrityError(f"Stored key material for {anchor_id} is corrupt: {e}") from e

        transaction = await self.ledger.get_transaction(anchor_id)
        envelope = recover_envelope(transaction, self.locate_strategy)
        record = self.cipher.decrypt(envelope, key_material)
        if not isinstance(record, dict):
            raise DecodeError("Decrypted certificate is not a JSON object")

        return project_fields(record, fields, strict=strict)

    def list_anchors(self) -> list[dict]:
        """Previews of every indexed certificate."""
        return [
            {
                "anchorId": r.anchor_id,
                "createdAt": r.created_at,
                "preview": r.preview,
            }
            for r in self.index.get_all()
        ]

    def stats(self) -> dict:
        """Counts by disability type and mean percentage, from previews."""
        records = self.index.get_all()
        by_type: dict[str, int] = {}
        total_percentage = 0.0
        for r in records:
            kind = r.preview.get("disabilityType", "unknown")
            by_type[kind] = by_type.get(kind, 0) + 1
            total_percentage += r.preview.get("percentage", 0)

        average = round(total_percentage / len(records)) if records else 0
        return {
            "total": len(records),
            "byType": by_type,
            "averagePercentage": average,
        }

    async def funding_status(self) -> dict:
        """Spendable balance of the funding address."""
        address = self.address
        utxos = await self.ledger.get_spendable_outputs(address)
        return {
            "address": address,
            "utxoCount": len(utxos),
            "totalSatoshis": sum(u.value for u in utxos),
        }

    async def close(self) -> None:
        await self.ledger.close()
