"""WhatsOnChain REST API interface."""

import json
import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from mcp_cert_anchor.config import Config
from mcp_cert_anchor.errors import NetworkError, NotFound, UpstreamError
from mcp_cert_anchor.node.interface import (
    LedgerClient,
    OutputInfo,
    TransactionInfo,
    UnspentOutput,
)

logger = logging.getLogger(__name__)

SATOSHIS_PER_COIN = Decimal(100_000_000)


def coins_to_satoshis(value: Any) -> int:
    """Convert a coin amount (float or string) to integer satoshis."""
    return int(Decimal(str(value)) * SATOSHIS_PER_COIN)


class WhatsOnChainClient(LedgerClient):
    """Ledger access via the public WhatsOnChain API."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.url = config.woc_url
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=config.timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping failures onto the error taxonomy."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling WhatsOnChain {path}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection to WhatsOnChain failed: {e}") from e

        if response.status_code == 404:
            raise NotFound(f"WhatsOnChain: {path} not found")
        if response.status_code >= 400:
            raise UpstreamError(response.status_code, response.text.strip())
        return response

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def get_spendable_outputs(self, address: str) -> list[UnspentOutput]:
        """List unspent outputs for address."""
        response = await self._request("GET", f"/address/{address}/unspent")
        return [
            UnspentOutput(
                txid=u["tx_hash"],
                output_index=u["tx_pos"],
                value=u["value"],
            )
            for u in response.json()
        ]

    async def get_raw_transaction(self, txid: str) -> bytes:
        """Fetch serialized transaction bytes."""
        response = await self._request("GET", f"/tx/{txid}/hex")
        try:
            return bytes.fromhex(response.text.strip().strip('"'))
        except ValueError as e:
            raise UpstreamError(response.status_code, f"Invalid transaction hex: {e}") from e

    async def get_transaction(self, txid: str) -> TransactionInfo:
        """Fetch a transaction with decoded outputs."""
        response = await self._request("GET", f"/tx/hash/{txid}")
        data = response.json()

        if not isinstance(data.get("vout"), list):
            raise UpstreamError(response.status_code, "Invalid transaction format")

        return TransactionInfo(
            txid=data.get("txid", txid),
            outputs=[
                OutputInfo(
                    value=coins_to_satoshis(v["value"]),
                    script=bytes.fromhex(v["scriptPubKey"]["hex"]),
                )
                for v in data["vout"]
            ],
            confirmations=data.get("confirmations", 0),
        )

    async def broadcast(self, raw_tx: bytes) -> str:
        """Broadcast signed transaction, return txid."""
        logger.info("Broadcasting transaction (%d bytes)", len(raw_tx))
        response = await self._request("POST", "/tx/raw", json={"txhex": raw_tx.hex()})

        text = response.text.strip()
        try:
            # The API answers with a JSON string
            return str(json.loads(text))
        except json.JSONDecodeError:
            return text.replace('"', "")
