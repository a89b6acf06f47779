"""Tests for push-data primitives."""

import pytest

from mcp_cert_anchor.errors import UnsupportedScriptFormat, ValidationError
from mcp_cert_anchor.primitives import (
    OP_FALSE,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    OP_RETURN,
    decode_push_data,
    encode_data_output_script,
    encode_push_data,
    is_data_output_script,
    strip_data_marker,
)

# OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
P2PKH_SCRIPT = bytes.fromhex("76a914" + "00" * 20 + "88ac")


class TestPushDataEncoding:
    """Test push-data encoding."""

    @pytest.mark.parametrize("length", [1, 75])
    def test_direct_push(self, length):
        """1-75 bytes use the length as opcode."""
        data = b"x" * length
        script = encode_push_data(data)

        assert script[0] == length
        assert script[1:] == data

    @pytest.mark.parametrize("length", [76, 255])
    def test_pushdata1(self, length):
        """76-255 bytes use OP_PUSHDATA1."""
        data = b"x" * length
        script = encode_push_data(data)

        assert script[0] == OP_PUSHDATA1
        assert script[1] == length
        assert script[2:] == data

    @pytest.mark.parametrize("length", [256, 65535])
    def test_pushdata2(self, length):
        """256-65535 bytes use OP_PUSHDATA2 with little-endian length."""
        data = b"x" * length
        script = encode_push_data(data)

        assert script[0] == OP_PUSHDATA2
        assert int.from_bytes(script[1:3], "little") == length
        assert script[3:] == data

    def test_pushdata4(self):
        """65536+ bytes use OP_PUSHDATA4."""
        data = b"x" * 65536
        script = encode_push_data(data)

        assert script[0] == OP_PUSHDATA4
        assert script[1:5] == (65536).to_bytes(4, "little")
        assert len(script) == 5 + 65536

    def test_empty_data_rejected(self):
        """Empty data cannot be pushed."""
        with pytest.raises(ValidationError):
            encode_push_data(b"")

    @pytest.mark.parametrize("length", [1, 75, 76, 255, 256, 65535, 65536])
    def test_decode_inverts_encode(self, length):
        """Decoding returns the pushed blob at every boundary."""
        data = bytes(i % 256 for i in range(length))
        assert decode_push_data(encode_push_data(data)) == data


class TestPushDataDecoding:
    """Test push-data decoding."""

    def test_trailing_bytes_ignored(self):
        """Bytes after the pushed blob are ignored."""
        assert decode_push_data(b"\x03abcXYZ") == b"abc"

    def test_empty_script(self):
        """Empty script raises."""
        with pytest.raises(UnsupportedScriptFormat):
            decode_push_data(b"")

    @pytest.mark.parametrize("opcode", [0x00, 0x4F, 0x6A, 0xFF])
    def test_unsupported_opcode(self, opcode):
        """Non-push opcodes raise."""
        with pytest.raises(UnsupportedScriptFormat, match="Unsupported push opcode"):
            decode_push_data(bytes([opcode]) + b"data")

    def test_truncated_direct_push(self):
        """Declared length past the end raises."""
        with pytest.raises(UnsupportedScriptFormat, match="expected 10 bytes, got 3"):
            decode_push_data(b"\x0aabc")

    def test_truncated_pushdata1_length(self):
        """Missing PUSHDATA1 length byte raises."""
        with pytest.raises(UnsupportedScriptFormat, match="Truncated PUSHDATA1"):
            decode_push_data(bytes([OP_PUSHDATA1]))

    def test_truncated_pushdata2_length(self):
        """Short PUSHDATA2 length field raises."""
        with pytest.raises(UnsupportedScriptFormat, match="Truncated PUSHDATA2"):
            decode_push_data(bytes([OP_PUSHDATA2, 0x01]))

    def test_truncated_pushdata4_length(self):
        """Short PUSHDATA4 length field raises."""
        with pytest.raises(UnsupportedScriptFormat, match="Truncated PUSHDATA4"):
            decode_push_data(bytes([OP_PUSHDATA4, 0x01, 0x00]))

    def test_truncated_pushdata2_data(self):
        """PUSHDATA2 body shorter than declared raises."""
        script = bytes([OP_PUSHDATA2]) + (300).to_bytes(2, "little") + b"x" * 10
        with pytest.raises(UnsupportedScriptFormat, match="truncated"):
            decode_push_data(script)


class TestDataOutputScript:
    """Test unspendable data output scripts."""

    def test_marker(self):
        """Data script starts with OP_FALSE OP_RETURN."""
        script = encode_data_output_script(b"payload")

        assert script[:2] == bytes([OP_FALSE, OP_RETURN])
        assert script[2:] == encode_push_data(b"payload")
        assert is_data_output_script(script)

    def test_strip_marker(self):
        """Stripping leaves the push-data script."""
        script = encode_data_output_script(b"payload")
        assert decode_push_data(strip_data_marker(script)) == b"payload"

    def test_strip_bare_op_return(self):
        """A bare OP_RETURN marker is also stripped."""
        assert strip_data_marker(bytes([OP_RETURN, 0x01, 0x41])) == b"\x01A"

    def test_strip_without_marker(self):
        """Scripts without a marker are unchanged."""
        assert strip_data_marker(b"\x02ab") == b"\x02ab"

    def test_p2pkh_is_not_data_output(self):
        """P2PKH scripts are not data outputs."""
        assert not is_data_output_script(P2PKH_SCRIPT)
