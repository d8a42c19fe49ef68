"""
Bit codec for watermark payloads.

Frame layout (MSB first)::

    sync(16) | crc16(16) | length(32, data bit count) | data(length)

The sync word is identical for every payload and only serves acquisition.
The CRC is CRC-16/CCITT-FALSE over the data bytes.
"""
from __future__ import annotations

import numpy as np

from pcmguard.errors import ErrorKind, Result

SYNC_PATTERN = np.array(
    [1, 0, 1, 0, 1, 0, 1, 0, 1, 1, 0, 0, 1, 1, 0, 0], dtype=np.uint8
)
SYNC_BITS = 16
CRC_BITS = 16
LENGTH_BITS = 32
HEADER_BITS = SYNC_BITS + CRC_BITS + LENGTH_BITS
MAX_PAYLOAD_BITS = 8 * 65_535


def crc16_ccitt(data: bytes) -> int:
    crc = 0xFFFF
    for b in data:
        crc ^= b << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def bytes_to_bits(data: bytes) -> np.ndarray:
    if not data:
        return np.zeros(0, dtype=np.uint8)
    return np.unpackbits(np.frombuffer(data, dtype=np.uint8))


def bits_to_bytes(bits: np.ndarray) -> bytes:
    bits = np.asarray(bits, dtype=np.uint8)
    if bits.size == 0:
        return b""
    return np.packbits(bits).tobytes()


def int_to_bits(value: int, width: int) -> np.ndarray:
    return np.array([(value >> i) & 1 for i in range(width - 1, -1, -1)], dtype=np.uint8)


def bits_to_int(bits: np.ndarray) -> int:
    val = 0
    for bit in bits:
        val = (val << 1) | int(bit)
    return val


# ---------------------------------------------------------------- encode
def encode_bytes(data: bytes) -> np.ndarray:
    """Full payload frame (sync, checksum, length, data) for raw bytes."""
    n_bits = 8 * len(data)
    if n_bits > MAX_PAYLOAD_BITS:
        raise ValueError(f"payload of {len(data)} bytes exceeds {MAX_PAYLOAD_BITS // 8}")
    return np.concatenate(
        (
            SYNC_PATTERN,
            int_to_bits(crc16_ccitt(data), CRC_BITS),
            int_to_bits(n_bits, LENGTH_BITS),
            bytes_to_bits(data),
        )
    )


def encode_text(text: str) -> np.ndarray:
    return encode_bytes(text.encode("utf-8"))


# ---------------------------------------------------------------- decode
def parse_header(bits: np.ndarray) -> Result[tuple[int, int]]:
    """
    Validate the 48 bits following the sync word.

    Returns ``(crc, data_bit_count)`` or a NOT_DETECTED failure when the
    declared length cannot belong to a genuine payload.
    """
    if len(bits) < CRC_BITS + LENGTH_BITS:
        return Result.fail(ErrorKind.NOT_DETECTED, "truncated payload header")
    crc = bits_to_int(bits[:CRC_BITS])
    length = bits_to_int(bits[CRC_BITS:CRC_BITS + LENGTH_BITS])
    if length % 8 or length > MAX_PAYLOAD_BITS:
        return Result.fail(ErrorKind.NOT_DETECTED, f"implausible payload length {length}")
    return Result.success((crc, length))


def decode_bytes(crc: int, data_bits: np.ndarray) -> Result[bytes]:
    data = bits_to_bytes(data_bits)
    if crc16_ccitt(data) != crc:
        return Result.fail(ErrorKind.CHECKSUM_MISMATCH, "payload checksum mismatch")
    return Result.success(data)


def decode_text(crc: int, data_bits: np.ndarray) -> Result[str]:
    res = decode_bytes(crc, data_bits)
    if not res.ok:
        return Result(error=res.error)
    try:
        return Result.success(res.value.decode("utf-8"))  # type: ignore[union-attr]
    except UnicodeDecodeError:
        return Result.fail(ErrorKind.CHECKSUM_MISMATCH, "payload is not valid UTF-8")


def decode_frame(bits: np.ndarray) -> Result[str]:
    """Decode a complete frame (as produced by :func:`encode_text`)."""
    bits = np.asarray(bits, dtype=np.uint8)
    if bits.size < HEADER_BITS or not np.array_equal(bits[:SYNC_BITS], SYNC_PATTERN):
        return Result.fail(ErrorKind.NOT_DETECTED, "sync pattern missing")
    header = parse_header(bits[SYNC_BITS:HEADER_BITS])
    if not header.ok:
        return Result(error=header.error)
    crc, length = header.value  # type: ignore[misc]
    data_bits = bits[HEADER_BITS:HEADER_BITS + length]
    if data_bits.size < length:
        return Result.fail(ErrorKind.NOT_DETECTED, "truncated payload data")
    return decode_text(crc, data_bits)
