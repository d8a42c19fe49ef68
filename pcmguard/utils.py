"""
pcmguard.utils
──────────────
Shared helpers: key seeding, chip PRNG, Pearson hashing, dB/linear
conversions and resampling.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from scipy.signal import resample_poly

# ──────────────────────────────── key seeding ────────────────────────────
FNV_OFFSET = 2_166_136_261
FNV_PRIME = 16_777_619
FALLBACK_SEED = 0xCAFEBABE  # substituted for an all-zero hash
MASK32 = 0xFFFF_FFFF


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over the character codes of `text`."""
    h = FNV_OFFSET
    for ch in text:
        h = ((h ^ ord(ch)) * FNV_PRIME) & MASK32
    return h


def seed_from_key(key: str) -> int:
    """Stable non-zero xorshift seed for a secret key."""
    return fnv1a_32(key) or FALLBACK_SEED


# ──────────────────────────────── chip PRNG ──────────────────────────────
def next_chip(state: int) -> Tuple[float, int]:
    """
    One xorshift32 step.

    Returns ``(value, new_state)`` with value in [0, 1). The function is pure,
    so embedder and extractor regenerate the same train from the same seed.
    """
    x = state
    x ^= (x << 13) & MASK32
    x ^= x >> 17
    x ^= (x << 5) & MASK32
    return x / 4_294_967_296.0, x


def chip_block(state: int, count: int) -> Tuple[np.ndarray, int]:
    """Draw `count` ±1 chips starting from `state`; returns (chips, new_state)."""
    out = np.empty(count, dtype=np.int8)
    x = state
    for i in range(count):
        # inlined next_chip(); a chip is the sign of (value - 0.5), i.e. bit 31
        x ^= (x << 13) & MASK32
        x ^= x >> 17
        x ^= (x << 5) & MASK32
        out[i] = 1 if x & 0x8000_0000 else -1
    return out, x


def chip_train(seed: int, count: int) -> np.ndarray:
    """The first `count` chips of the sequence seeded by `seed`."""
    chips, _ = chip_block(seed, count)
    return chips


class ChipStream:
    """
    Sequential view of the chip sequence for one key.

    `precomputed` may hold the leading part of the same sequence (the tuner
    shares one train across all trials); chips beyond it are generated on
    demand from the threaded state.
    """

    def __init__(self, seed: int, precomputed: np.ndarray | None = None) -> None:
        self._state = seed
        self._pos = 0
        self._pre = precomputed

    @property
    def position(self) -> int:
        return self._pos

    def take(self, count: int) -> np.ndarray:
        if count <= 0:
            return np.empty(0, dtype=np.int8)
        if self._pre is not None:
            if self._pos + count <= self._pre.size:
                chips = self._pre[self._pos:self._pos + count]
                self._pos += count
                return chips
            # leaving the precomputed range: catch the state up once
            _, self._state = chip_block(self._state, self._pos)
            self._pre = None
        chips, self._state = chip_block(self._state, count)
        self._pos += count
        return chips


# ──────────────────────────────── Pearson hash ───────────────────────────
# Pearson permutation of 0..255; must stay bijective
PEARSON_TABLE: tuple[int, ...] = (
    251, 175, 119, 215, 81, 14, 79, 191, 103, 49, 181, 143, 186, 157, 0, 232,
    31, 239, 229, 55, 129, 28, 99, 69, 23, 165, 32, 145, 20, 87, 24, 96,
    253, 169, 109, 223, 50, 67, 130, 92, 152, 36, 208, 230, 206, 196, 71, 252,
    64, 91, 45, 190, 85, 12, 106, 240, 111, 211, 197, 101, 154, 53, 209, 217,
    112, 29, 247, 48, 249, 133, 113, 203, 238, 201, 227, 214, 136, 108, 16, 128,
    192, 156, 193, 218, 177, 245, 84, 6, 19, 107, 195, 167, 1, 95, 62, 52,
    187, 33, 116, 56, 13, 10, 221, 222, 125, 42, 17, 189, 58, 207, 144, 254,
    155, 199, 172, 162, 148, 117, 185, 118, 140, 124, 25, 171, 90, 233, 228, 131,
    122, 188, 77, 163, 153, 37, 237, 242, 3, 15, 246, 26, 134, 183, 158, 66,
    231, 150, 147, 86, 216, 220, 102, 224, 164, 204, 30, 126, 11, 22, 135, 100,
    57, 115, 93, 120, 159, 132, 114, 21, 210, 123, 72, 59, 243, 27, 7, 8,
    40, 236, 68, 73, 63, 198, 225, 76, 255, 41, 38, 18, 88, 65, 105, 139,
    9, 127, 226, 78, 160, 5, 235, 46, 74, 39, 2, 248, 142, 205, 47, 241,
    146, 180, 250, 149, 138, 212, 121, 166, 104, 89, 137, 194, 219, 70, 244, 184,
    60, 4, 170, 213, 176, 80, 234, 173, 168, 200, 178, 97, 141, 94, 75, 43,
    83, 35, 161, 202, 110, 61, 174, 82, 34, 179, 151, 44, 98, 182, 51, 54,
)


def pearson_update(h: int, data: bytes) -> int:
    """Continue an 8-bit Pearson hash over `data`."""
    table = PEARSON_TABLE
    for b in data:
        h = table[h ^ b]
    return h


def pearson_hash(data: bytes) -> int:
    return pearson_update(0, data)


# ──────────────────────────── dB/linear helpers ──────────────────────────
def db_to_lin(db: float) -> float:
    """dB → linear (amplitude)"""
    return 10.0 ** (db / 20.0)


# ───────────────────────────── DSP utilities ─────────────────────────────
def resample_to(
    fs_target: int, audio: np.ndarray, fs_orig: int
) -> tuple[np.ndarray, int]:
    """Fast integer-ratio polyphase resampling to `fs_target`."""
    if fs_orig == fs_target:
        return audio, fs_orig
    gcd = math.gcd(fs_orig, fs_target)
    up, down = fs_target // gcd, fs_orig // gcd
    return resample_poly(audio, up, down), fs_target


def downmix(samples: np.ndarray, channels: int) -> np.ndarray:
    """Interleaved PCM → mono float64 (mean over channels)."""
    x = np.asarray(samples, dtype=np.float64)
    if channels == 1:
        return x
    frames = x.size // channels
    return x[:frames * channels].reshape(frames, channels).mean(axis=1)
