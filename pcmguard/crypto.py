"""
AES-256-CTR over raw PCM bytes  +  encrypted sample container.
"""
from __future__ import annotations

import logging
import secrets
import struct
from typing import BinaryIO

import numpy as np
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from pcmguard.audioio import SampleSource, read_chunks
from pcmguard.config import EncryptionConfig
from pcmguard.errors import CipherMisuseError, ErrorKind, Result

log = logging.getLogger(__name__)

BLOCK = 16
MASK32 = 0xFFFF_FFFF
SAMPLE_BYTES = 4

CONTAINER_MAGIC = b"PGEC"
CONTAINER_VERSION = 1
_HEADER = struct.Struct("<4sBHIB")  # magic, version, channels, sample rate, iv length


class AesCtrCipher:
    """
    Keystream XOR with random access.

    The counter occupies bytes 12..15 of the counter block (big-endian) and
    wraps modulo 2**32. A 12-byte IV starts the counter at zero; a 16-byte IV
    carries its own initial counter. Encryption and decryption are the same
    operation.
    """

    def __init__(self, key: bytes, iv: bytes) -> None:
        cfg = EncryptionConfig(bytes(key), bytes(iv))  # raises CipherMisuseError
        self._ecb = Cipher(algorithms.AES(cfg.key), modes.ECB()).encryptor()
        self._nonce = cfg.iv[:12]
        self.initial_counter = (
            int.from_bytes(cfg.iv[12:16], "big") if len(cfg.iv) == 16 else 0
        )
        self.counter = self.initial_counter
        self.keystream_block = self._enc_block(self.counter)
        self.keystream_index = 0

    @classmethod
    def from_config(cls, cfg: EncryptionConfig) -> "AesCtrCipher":
        return cls(cfg.key, cfg.iv)

    # ------------------------------------------------------------------ blocks
    @property
    def counter_block(self) -> bytes:
        return self._nonce + self.counter.to_bytes(4, "big")

    def _enc_block(self, counter: int) -> bytes:
        return self._ecb.update(self._nonce + (counter & MASK32).to_bytes(4, "big"))

    def _keystream(self, first_counter: int, n_blocks: int) -> np.ndarray:
        """`n_blocks` consecutive keystream blocks in one ECB call (16-byte lanes)."""
        ctrs = (first_counter + np.arange(n_blocks, dtype=np.uint64)) & MASK32
        blocks = np.empty((n_blocks, BLOCK), dtype=np.uint8)
        blocks[:, :12] = np.frombuffer(self._nonce, dtype=np.uint8)
        blocks[:, 12:] = ctrs.astype(">u4").view(np.uint8).reshape(n_blocks, 4)
        ks = self._ecb.update(blocks.tobytes())
        return np.frombuffer(ks, dtype=np.uint8)

    def _advance(self) -> None:
        self.counter = (self.counter + 1) & MASK32
        self.keystream_block = self._enc_block(self.counter)
        self.keystream_index = 0

    # ------------------------------------------------------------------ API
    def seek(self, offset: int) -> None:
        """Position the keystream at absolute byte `offset`."""
        if offset < 0:
            raise ValueError("offset must be non-negative")
        block_index, self.keystream_index = divmod(offset, BLOCK)
        self.counter = (self.initial_counter + block_index) & MASK32
        self.keystream_block = self._enc_block(self.counter)

    def seek_samples(self, sample_offset: int) -> None:
        self.seek(sample_offset * SAMPLE_BYTES)

    def process_into(self, data: np.ndarray) -> None:
        """XOR the keystream into a uint8 array in place."""
        n = data.size
        pos = 0
        # scalar head: finish the partially consumed block
        while pos < n and self.keystream_index < BLOCK:
            data[pos] ^= self.keystream_block[self.keystream_index]
            self.keystream_index += 1
            pos += 1
        # vector body: whole 16-byte lanes
        lanes = (n - pos) // BLOCK
        if lanes:
            ks = self._keystream(self.counter + 1, lanes)
            data[pos:pos + lanes * BLOCK] ^= ks
            pos += lanes * BLOCK
            self.counter = (self.counter + lanes) & MASK32
            self.keystream_block = ks[-BLOCK:].tobytes()
            self.keystream_index = BLOCK
        # scalar tail
        while pos < n:
            if self.keystream_index == BLOCK:
                self._advance()
            data[pos] ^= self.keystream_block[self.keystream_index]
            self.keystream_index += 1
            pos += 1

    def process_bytes(self, data: bytes) -> bytes:
        buf = np.frombuffer(bytes(data), dtype=np.uint8).copy()
        self.process_into(buf)
        return buf.tobytes()

    def process(self, buffer: np.ndarray, channels: int = 1) -> np.ndarray:
        """Encrypt/decrypt float32 samples in place; sample count is preserved."""
        if buffer.dtype != np.float32 or not buffer.flags.c_contiguous:
            raise TypeError("expected a contiguous float32 buffer")
        self.process_into(buffer.view(np.uint8))
        return buffer


# ─────────────────────────────── container ───────────────────────────────
def new_iv() -> bytes:
    return secrets.token_bytes(12)


def encrypt_source(
    source: SampleSource,
    destination: BinaryIO,
    key: bytes,
    *,
    iv: bytes | None = None,
    chunk_frames: int = 4096,
) -> Result[int]:
    """Stream `source` into an encrypted container; returns frames written."""
    cfg = EncryptionConfig(key, iv if iv is not None else new_iv())
    cipher = AesCtrCipher.from_config(cfg)
    destination.write(
        _HEADER.pack(CONTAINER_MAGIC, CONTAINER_VERSION, source.channels,
                     source.sample_rate, len(cfg.iv))
        + cfg.iv
    )
    frames = 0
    for chunk in read_chunks(source, chunk_frames):
        cipher.process(chunk, source.channels)
        destination.write(chunk.tobytes())
        frames += chunk.size // source.channels
    log.info("[CRYPT] encrypted %d frames (%d ch @ %d Hz)", frames,
             source.channels, source.sample_rate)
    return Result.success(frames)


class EncryptedSource:
    """Seekable sample source decrypting a container on read."""

    def __init__(self, stream: BinaryIO, key: bytes, channels: int,
                 sample_rate: int, iv: bytes, data_offset: int) -> None:
        self._stream = stream
        self._cipher = AesCtrCipher(key, iv)
        self.channels = channels
        self.sample_rate = sample_rate
        self._data_offset = data_offset
        end = stream.seek(0, 2)
        self.frames: int | None = (end - data_offset) // (SAMPLE_BYTES * channels)
        stream.seek(data_offset)
        self.seekable = True

    def read(self, buffer: np.ndarray) -> int:
        want = (buffer.size // self.channels) * self.channels
        raw = self._stream.read(want * SAMPLE_BYTES)
        n = (len(raw) // (SAMPLE_BYTES * self.channels)) * self.channels
        if n == 0:
            return 0
        out = np.frombuffer(raw[:n * SAMPLE_BYTES], dtype="<f4").copy()
        self._cipher.process(out)
        buffer[:n] = out
        return n // self.channels

    def seek(self, frame: int) -> None:
        sample = frame * self.channels
        self._stream.seek(self._data_offset + sample * SAMPLE_BYTES)
        self._cipher.seek_samples(sample)

    def close(self) -> None:
        self._stream.close()


def open_encrypted(stream: BinaryIO, key: bytes) -> Result[EncryptedSource]:
    head = stream.read(_HEADER.size)
    if len(head) < _HEADER.size:
        return Result.fail(ErrorKind.NOT_DETECTED, "container header truncated")
    magic, version, channels, rate, iv_len = _HEADER.unpack(head)
    if magic != CONTAINER_MAGIC or version != CONTAINER_VERSION:
        return Result.fail(ErrorKind.NOT_DETECTED, "not a pcmguard container")
    iv = stream.read(iv_len)
    try:
        src = EncryptedSource(stream, key, channels, rate, iv, _HEADER.size + iv_len)
    except CipherMisuseError as exc:
        return Result.fail(ErrorKind.CIPHER_MISUSE, str(exc))
    return Result.success(src)
