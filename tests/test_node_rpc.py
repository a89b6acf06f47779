"""Tests for JSON-RPC interface."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch, MagicMock

from mcp_cert_anchor.config import Config, Network, ConnectionMethod
from mcp_cert_anchor.errors import NetworkError, NotFound, UpstreamError
from mcp_cert_anchor.node import create_ledger_client
from mcp_cert_anchor.node.rpc import NodeRPCClient
from mcp_cert_anchor.node.whatsonchain import WhatsOnChainClient

TXID = "ab" * 32


def rpc_config() -> Config:
    return Config(
        connection_method=ConnectionMethod.RPC,
        network=Network.REGTEST,
        rpc_host="127.0.0.1",
        rpc_port=18443,
        rpc_user="test",
        rpc_password="test123",
    )


def rpc_result(result, status=200):
    def handler(request):
        return httpx.Response(status, json={"result": result, "error": None, "id": 1})
    return NodeRPCClient(rpc_config(), transport=httpx.MockTransport(handler))


class TestNodeRPCClient:
    """Test JSON-RPC interface."""

    @pytest.fixture
    def rpc(self):
        """Create RPC instance with test config."""
        return NodeRPCClient(rpc_config())

    def test_build_url(self, rpc):
        """Build correct RPC URL."""
        assert rpc.url == "http://127.0.0.1:18443"

    def test_auth_header(self, rpc):
        """Create correct auth header."""
        # Basic auth is base64(user:password)
        assert rpc._headers["Authorization"] == "Basic dGVzdDp0ZXN0MTIz"

    @pytest.mark.asyncio
    async def test_call_formats_request(self, rpc):
        """RPC call formats JSON-RPC 1.0 request."""
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "result": 100,
            "error": None,
            "id": 1,
        }

        with patch.object(rpc, '_client') as mock_client:
            mock_client.post = AsyncMock(return_value=mock_response)

            result = await rpc._call("getblockcount")

            assert result == 100

            # Verify request format
            call_args = mock_client.post.call_args
            request_body = call_args.kwargs.get('json')

            assert request_body["jsonrpc"] == "1.0"
            assert request_body["method"] == "getblockcount"
            assert request_body["params"] == []
            assert "id" in request_body

    @pytest.mark.asyncio
    async def test_handles_rpc_error(self, rpc):
        """Handle RPC error response."""
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.json.return_value = {
            "result": None,
            "error": {"code": -26, "message": "16: bad-txns-inputs-missingorspent"},
            "id": 1,
        }

        with patch.object(rpc, '_client') as mock_client:
            mock_client.post = AsyncMock(return_value=mock_response)

            with pytest.raises(UpstreamError, match="missingorspent"):
                await rpc._call("sendrawtransaction", "00")

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, rpc):
        """Error -5 maps to NotFound."""
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.json.return_value = {
            "result": None,
            "error": {"code": -5, "message": "No such mempool or blockchain transaction"},
            "id": 1,
        }

        with patch.object(rpc, '_client') as mock_client:
            mock_client.post = AsyncMock(return_value=mock_response)

            with pytest.raises(NotFound):
                await rpc.get_transaction(TXID)

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        def handler(request):
            return httpx.Response(401, text="Unauthorized")

        rpc = NodeRPCClient(rpc_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamError) as exc_info:
            await rpc._call("getblockcount")
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        rpc = NodeRPCClient(rpc_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(NetworkError):
            await rpc._call("getblockcount")

    @pytest.mark.asyncio
    async def test_get_spendable_outputs(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"result": [
                {"txid": TXID, "vout": 1, "amount": 0.0001, "scriptPubKey": "76a914" + "00" * 20 + "88ac"},
            ], "error": None, "id": 1})

        rpc = NodeRPCClient(rpc_config(), transport=httpx.MockTransport(handler))
        utxos = await rpc.get_spendable_outputs("mAddress")

        assert requests[0]["method"] == "listunspent"
        assert requests[0]["params"] == [1, 9999999, ["mAddress"]]
        assert utxos[0].txid == TXID
        assert utxos[0].output_index == 1
        assert utxos[0].value == 10_000
        assert len(utxos[0].locking_script) == 25

    @pytest.mark.asyncio
    async def test_get_raw_transaction(self):
        rpc = rpc_result("0100000000")
        assert await rpc.get_raw_transaction(TXID) == bytes.fromhex("0100000000")

    @pytest.mark.asyncio
    async def test_get_transaction(self):
        rpc = rpc_result({
            "txid": TXID,
            "confirmations": 0,
            "vout": [
                {"value": 0.00000001, "n": 0, "scriptPubKey": {"hex": "006a0161"}},
            ],
        })
        tx = await rpc.get_transaction(TXID)

        assert tx.txid == TXID
        assert tx.outputs[0].value == 1
        assert tx.outputs[0].script == b"\x00\x6a\x01a"

    @pytest.mark.asyncio
    async def test_broadcast(self):
        rpc = rpc_result(TXID)
        assert await rpc.broadcast(b"\x01") == TXID


class TestCreateLedgerClient:
    """Test client selection."""

    def test_rpc(self):
        assert isinstance(create_ledger_client(rpc_config()), NodeRPCClient)

    def test_whatsonchain(self):
        assert isinstance(create_ledger_client(Config()), WhatsOnChainClient)
