"""
Fragile integrity watermark: Pearson-hash chain carried in sample LSBs.

The interleaved sample stream is cut into fixed-size blocks. The first
``CHECK_SAMPLES`` samples of every block after the first hold, one bit each
in bit 0 of their float32 pattern, the Pearson hash of the preceding block
(hash bit i in check sample i).
Any change to a block therefore surfaces when the *next* block is checked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pcmguard.config import WatermarkConfig
from pcmguard.utils import pearson_update

log = logging.getLogger(__name__)

CHECK_SAMPLES = 8


@dataclass(frozen=True, slots=True)
class IntegrityViolation:
    block_index: int
    claimed_hash: int
    actual_hash: int


def _as_float32(buffer: np.ndarray) -> np.ndarray:
    if buffer.dtype != np.float32:
        raise TypeError("integrity watermarking works on float32 sample buffers")
    return buffer


class IntegrityEmbedder:
    """Writes the hash chain into a float32 stream, in place."""

    def __init__(self, config: WatermarkConfig) -> None:
        self.block_size = config.integrity_block_size
        self.block_index = 0          # position inside the current block
        self.block_counter = 0        # number of the current block
        self.previous_block_hash: int | None = None
        self._h = 0

    def process(self, buffer: np.ndarray, channels: int = 1) -> np.ndarray:
        # channel layout is irrelevant: blocks run over the interleaved stream
        raw = _as_float32(buffer).view(np.uint32)
        pos = 0
        while pos < raw.size:
            take = min(self.block_size - self.block_index, raw.size - pos)
            seg = raw[pos:pos + take]

            if self.previous_block_hash is not None and self.block_index < CHECK_SAMPLES:
                n_check = min(CHECK_SAMPLES - self.block_index, take)
                bit_pos = np.arange(self.block_index, self.block_index + n_check)
                bits = (self.previous_block_hash >> bit_pos) & 1  # LSB first
                seg[:n_check] = (seg[:n_check] & np.uint32(0xFFFF_FFFE)) | bits.astype(np.uint32)

            self._h = pearson_update(self._h, seg.astype("<u4", copy=False).tobytes())
            self.block_index += take
            pos += take

            if self.block_index == self.block_size:
                self.previous_block_hash = self._h
                log.debug("[INTEGRITY] block %d hash=0x%02x", self.block_counter, self._h)
                self._h = 0
                self.block_index = 0
                self.block_counter += 1
        return buffer


class IntegrityVerifier:
    """
    Mirrors :class:`IntegrityEmbedder` and reports broken links in the chain.

    ``process`` returns the violations found in that chunk. With
    ``stop_at_first`` the verifier stops checking after the first one.
    """

    def __init__(self, config: WatermarkConfig, *, stop_at_first: bool = False) -> None:
        self.block_size = config.integrity_block_size
        self.stop_at_first = stop_at_first
        self.block_index = 0
        self.block_counter = 0
        self.blocks_checked = 0
        self.previous_block_hash: int | None = None
        self.violations: list[IntegrityViolation] = []
        self._claimed = 0
        self._h = 0

    @property
    def halted(self) -> bool:
        return self.stop_at_first and bool(self.violations)

    def process(self, buffer: np.ndarray, channels: int = 1) -> list[IntegrityViolation]:
        if self.halted:
            return []
        raw = _as_float32(buffer).view(np.uint32)
        found: list[IntegrityViolation] = []
        pos = 0
        while pos < raw.size:
            take = min(self.block_size - self.block_index, raw.size - pos)
            seg = raw[pos:pos + take]

            if self.previous_block_hash is not None and self.block_index < CHECK_SAMPLES:
                n_check = min(CHECK_SAMPLES - self.block_index, take)
                for i, bit in enumerate((seg[:n_check] & 1).tolist()):
                    self._claimed |= bit << (self.block_index + i)
                if self.block_index + n_check == CHECK_SAMPLES:
                    v = self._check()
                    if v is not None:
                        found.append(v)
                        if self.stop_at_first:
                            return found

            self._h = pearson_update(self._h, seg.astype("<u4", copy=False).tobytes())
            self.block_index += take
            pos += take

            if self.block_index == self.block_size:
                self.previous_block_hash = self._h
                self._h = 0
                self._claimed = 0
                self.block_index = 0
                self.block_counter += 1
        return found

    def _check(self) -> IntegrityViolation | None:
        self.blocks_checked += 1
        expected, claimed = self.previous_block_hash, self._claimed
        if claimed == expected:
            return None
        v = IntegrityViolation(self.block_counter, claimed, expected)  # type: ignore[arg-type]
        self.violations.append(v)
        log.warning("[INTEGRITY] violation at block %d (claimed 0x%02x, actual 0x%02x)",
                    self.block_counter, claimed, expected)
        return v
