"""Bitcoin script push-data encoding and decoding.

A blob is pushed with the smallest encoding that fits:
- 1-75 bytes: direct push (opcode is the length)
- 76-255 bytes: OP_PUSHDATA1 (1 byte length)
- 256-65535 bytes: OP_PUSHDATA2 (2 byte length, little-endian)
- 65536+ bytes: OP_PUSHDATA4 (4 byte length, little-endian)

The decoder is byte-exact: it accepts exactly these four forms.
"""

from mcp_cert_anchor.errors import UnsupportedScriptFormat, ValidationError

# Bitcoin script opcodes
OP_FALSE = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_RETURN = 0x6A

MAX_DIRECT_PUSH = 75


def encode_push_data(data: bytes) -> bytes:
    """Prefix data with its minimal push-data length tag.

    Args:
        data: Raw bytes to push (at least one byte)

    Returns:
        Push opcode, length field and data as bytes

    Raises:
        ValidationError: If data is empty
    """
    length = len(data)

    if length == 0:
        raise ValidationError("Cannot push empty data")
    if length <= MAX_DIRECT_PUSH:
        return bytes([length]) + data
    elif length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    elif length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    else:
        return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def decode_push_data(script: bytes) -> bytes:
    """Read the blob pushed at the start of a script.

    Bytes after the pushed blob are ignored.

    Args:
        script: Script bytes starting with a push opcode

    Returns:
        Pushed data

    Raises:
        UnsupportedScriptFormat: If the opcode is not a push opcode
            or the script is truncated
    """
    if not script:
        raise UnsupportedScriptFormat("Empty script")

    opcode = script[0]
    pos = 1

    if 1 <= opcode <= MAX_DIRECT_PUSH:
        length = opcode
    elif opcode == OP_PUSHDATA1:
        if pos + 1 > len(script):
            raise UnsupportedScriptFormat("Truncated PUSHDATA1 script")
        length = script[pos]
        pos += 1
    elif opcode == OP_PUSHDATA2:
        if pos + 2 > len(script):
            raise UnsupportedScriptFormat("Truncated PUSHDATA2 script")
        length = int.from_bytes(script[pos:pos + 2], "little")
        pos += 2
    elif opcode == OP_PUSHDATA4:
        if pos + 4 > len(script):
            raise UnsupportedScriptFormat("Truncated PUSHDATA4 script")
        length = int.from_bytes(script[pos:pos + 4], "little")
        pos += 4
    else:
        raise UnsupportedScriptFormat(f"Unsupported push opcode: {opcode:#x}")

    if pos + length > len(script):
        raise UnsupportedScriptFormat(
            f"Script truncated: expected {length} bytes, got {len(script) - pos}"
        )
    return script[pos:pos + length]


def encode_data_output_script(blob: bytes) -> bytes:
    """Build a provably unspendable script carrying blob.

    Format: OP_FALSE OP_RETURN <push blob>
    """
    return bytes([OP_FALSE, OP_RETURN]) + encode_push_data(blob)


def is_data_output_script(script: bytes) -> bool:
    """True if script starts with an unspendable data marker."""
    return script[:1] == bytes([OP_RETURN]) or script[:2] == bytes([OP_FALSE, OP_RETURN])


def strip_data_marker(script: bytes) -> bytes:
    """Drop a leading OP_FALSE OP_RETURN (or bare OP_RETURN) marker.

    Scripts without a marker are returned unchanged.
    """
    if script[:2] == bytes([OP_FALSE, OP_RETURN]):
        return script[2:]
    if script[:1] == bytes([OP_RETURN]):
        return script[1:]
    return script

