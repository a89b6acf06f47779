"""BSV node JSON-RPC interface."""

import base64
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
from mcp_cert_anchor.node.whatsonchain import coins_to_satoshis

# RPC_INVALID_ADDRESS_OR_KEY, returned for unknown transactions
RPC_NOT_FOUND = -5


class NodeRPCClient(LedgerClient):
    """Ledger access via a node's JSON-RPC.

    ``listunspent`` only sees addresses the node wallet watches, so the
    funding address must be imported into the node.
    """

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.url = f"http://{config.rpc_host}:{config.get_rpc_port()}"

        # Build auth header
        credentials = f"{config.rpc_user}:{config.rpc_password}"
        auth_bytes = base64.b64encode(credentials.encode()).decode()

        self._headers = {
            "Authorization": f"Basic {auth_bytes}",
            "Content-Type": "application/json",
        }

        self._client = httpx.AsyncClient(timeout=config.timeout, transport=transport)
        self._request_id = 0

    async def _call(self, method: str, *args: Any) -> Any:
        """Execute JSON-RPC call."""
        self._request_id += 1

        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": list(args),
        }

        try:
            response = await self._client.post(
                self.url,
                json=payload,
                headers=self._headers,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling {method}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection to node failed: {e}") from e

        # Nodes report RPC errors as HTTP 500 with a JSON body
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, response.text.strip()) from e

        if data.get("error"):
            error = data["error"]
            if error.get("code") == RPC_NOT_FOUND:
                raise NotFound(f"RPC {method}: {error.get('message')}")
            raise UpstreamError(response.status_code, f"RPC error {error.get('code')}: {error.get('message')}")

        return data.get("result")

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def get_spendable_outputs(self, address: str) -> list[UnspentOutput]:
        """List unspent outputs for address."""
        result = await self._call("listunspent", 1, 9999999, [address])

        return [
            UnspentOutput(
                txid=u["txid"],
                output_index=u["vout"],
                value=coins_to_satoshis(u["amount"]),
                locking_script=bytes.fromhex(u.get("scriptPubKey", "")),
            )
            for u in result
        ]

    async def get_raw_transaction(self, txid: str) -> bytes:
        """Fetch serialized transaction bytes."""
        result = await self._call("getrawtransaction", txid, 0)
        return bytes.fromhex(result)

    async def get_transaction(self, txid: str) -> TransactionInfo:
        """Fetch a transaction with decoded outputs."""
        result = await self._call("getrawtransaction", txid, 1)
        return TransactionInfo(
            txid=result["txid"],
            outputs=[
                OutputInfo(
                    value=coins_to_satoshis(v["value"]),
                    script=bytes.fromhex(v["scriptPubKey"]["hex"]),
                )
                for v in result["vout"]
            ],
            confirmations=result.get("confirmations", 0),
        )

    async def broadcast(self, raw_tx: bytes) -> str:
        """Broadcast signed transaction, return txid."""
        return await self._call("sendrawtransaction", raw_tx.hex())
