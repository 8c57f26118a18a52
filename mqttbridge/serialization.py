"""Primitives for encoding and decoding MQTT v5 property values."""

from typing import Final

from .error import DecodeFailedError

# Maximum variable integer value.
MAX_VARINT: Final = 268435455


def _encode_int(x: int, size: int) -> bytes:
    return x.to_bytes(length=size, byteorder="big")


def _decode_int(data: bytes, size: int) -> tuple[int, int]:
    if len(data) < size:
        raise DecodeFailedError(f"Integer underrun decoding {size} byte integer")
    return int.from_bytes(data[:size], byteorder="big"), size


def encode_uint8(x: int) -> bytes:
    """Encode an 8-bit integer to a buffer."""
    return _encode_int(x, 1)


def decode_uint8(data: bytes) -> tuple[int, int]:
    """Decode an 8-bit integer from a buffer.

    Returns a tuple of the decoded integer and the number of bytes consumed."""
    return _decode_int(data, 1)


def encode_uint16(x: int) -> bytes:
    """Encode a 16-bit integer to a buffer."""
    return _encode_int(x, 2)


def decode_uint16(data: bytes) -> tuple[int, int]:
    return _decode_int(data, 2)


def encode_uint32(x: int) -> bytes:
    """Encode a 32-bit integer to a buffer."""
    return _encode_int(x, 4)


def decode_uint32(data: bytes) -> tuple[int, int]:
    return _decode_int(data, 4)


def encode_binary(data: bytes) -> bytes:
    """Encode binary data to a buffer, prefixed by its 16-bit length."""
    return len(data).to_bytes(2, byteorder="big") + data


def decode_binary(data: bytes) -> tuple[bytes, int]:
    """Decode length-prefixed binary data from a buffer.

    Returns a tuple of the decoded data and the number of bytes consumed."""
    length, _ = _decode_int(data, 2)
    if length > len(data) - 2:
        raise DecodeFailedError("Binary data underrun")
    return bytes(data[2:2 + length]), length + 2


def encode_string(s: str) -> bytes:
    """Encode a UTF-8 string to a buffer."""
    return encode_binary(s.encode("utf-8"))


def decode_string(data: bytes) -> tuple[str, int]:
    """Decode a UTF-8 string from a buffer.

    Returns a tuple of the decoded string and the number of bytes consumed."""
    raw, sz = decode_binary(data)
    try:
        # Strict decoding rejects invalid sequences and surrogates.
        s = raw.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise DecodeFailedError("Invalid UTF-8 in string") from exc
    if "\u0000" in s:
        raise DecodeFailedError("Unicode null character in string")
    return s, sz


def encode_string_pair(values: tuple[str, str]) -> bytes:
    """Encode a UTF-8 string pair to a buffer."""
    return encode_string(values[0]) + encode_string(values[1])


def decode_string_pair(data: bytes) -> tuple[tuple[str, str], int]:
    """Decode a UTF-8 string pair from a buffer.

    Returns a tuple of the decoded string pair and the number of bytes consumed."""
    key, key_length = decode_string(data)
    value, value_length = decode_string(data[key_length:])
    return (key, value), key_length + value_length


def encode_varint(x: int) -> bytes:
    """Encode a variable length integer to a buffer."""
    if not 0 <= x <= MAX_VARINT:
        raise ValueError(f"Varint out of range (0 <= x <= {MAX_VARINT})")
    packed = bytearray()
    while True:
        b = x % 0x80
        x //= 0x80
        if x > 0:
            b += 0x80
        packed.append(b)
        if x == 0:
            return bytes(packed)


def decode_varint(data: bytes) -> tuple[int, int]:
    """Decode a variable length integer from a buffer.

    Returns a tuple of the decoded integer and the number of bytes consumed."""
    result = 0
    mult = 1
    for sz, byte in enumerate(data, start=1):
        result += byte % 0x80 * mult
        if byte < 0x80:
            return result, sz
        if sz >= 4:
            raise DecodeFailedError("Varint overflow")
        mult *= 0x80
    raise DecodeFailedError("Varint underrun")
