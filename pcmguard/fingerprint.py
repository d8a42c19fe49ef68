"""
Landmark fingerprinting and identification.

Spectral peaks of a mono 11 kHz STFT are paired into (anchor, target, Δt)
landmarks; each landmark hashes to 32 bits and is tagged with the anchor's
frame index. Identification votes on the offset between stored and query
frames: a true match piles up votes on a single (track, delta) bin.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy.signal import find_peaks, get_window

from pcmguard.audioio import SampleSource, read_all
from pcmguard.config import FingerprintParams
from pcmguard.errors import ErrorKind, Result
from pcmguard.utils import downmix, resample_to

if TYPE_CHECKING:
    from pcmguard.store import FingerprintStore

log = logging.getLogger(__name__)

F1_SHIFT = 22
F2_SHIFT = 12
DT_MASK = 0xFFF
BIN_MASK = 0x3FF
LOOKUP_BATCH = 2_048  # hashes per store round trip


# ────────────────────────────────── models ───────────────────────────────
@dataclass(frozen=True, slots=True)
class FingerprintHash:
    hash: int
    time_offset: int  # anchor frame index


@dataclass(slots=True)
class AudioFingerprint:
    track_id: str
    hashes: list[FingerprintHash] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class FingerprintMatchCandidate:
    track_id: str
    track_time_offset: int


@dataclass(frozen=True, slots=True)
class FingerprintResult:
    track_id: str
    confidence: int
    match_time_seconds: float
    processing_time: float  # seconds


def pack_hash(f1: int, f2: int, dt: int) -> int:
    return ((f1 & BIN_MASK) << F1_SHIFT) | ((f2 & BIN_MASK) << F2_SHIFT) | (dt & DT_MASK)


# ───────────────────────────────── generator ─────────────────────────────
class FingerprintGenerator:
    def __init__(self, params: FingerprintParams | None = None) -> None:
        self.p = params or FingerprintParams()
        self._window = get_window("hann", self.p.window_size).astype(np.float64)

    def generate(
        self,
        samples: np.ndarray,
        channels: int,
        sample_rate: int,
        track_id: str = "",
    ) -> AudioFingerprint:
        mono = downmix(samples, channels)
        duration = mono.size / float(sample_rate) if sample_rate else 0.0
        mono, _ = resample_to(self.p.sample_rate, mono, sample_rate)
        peaks = self.spectral_peaks(mono)
        hashes = self.landmarks(peaks)
        log.debug("[FP] %s: %d frames with peaks, %d hashes",
                  track_id or "<query>", sum(1 for p in peaks if p.size), len(hashes))
        return AudioFingerprint(track_id, hashes, duration)

    def from_source(self, source: SampleSource, track_id: str = "") -> AudioFingerprint:
        return self.generate(read_all(source), source.channels, source.sample_rate, track_id)

    # ------------------------------------------------------------------ analysis
    def spectral_peaks(self, mono: np.ndarray) -> list[np.ndarray]:
        """Per analysis frame, the (ascending) bins of its strongest peaks."""
        p = self.p
        if mono.size < p.window_size:
            return []
        frames = np.lib.stride_tricks.sliding_window_view(mono, p.window_size)[::p.hop_size]
        rms = np.sqrt(np.mean(frames * frames, axis=1))
        mag = np.abs(np.fft.rfft(frames * self._window, axis=1))
        db = 20.0 * np.log10(mag + 1e-12)

        out: list[np.ndarray] = []
        for i in range(frames.shape[0]):
            if rms[i] < p.silence_rms:
                out.append(np.empty(0, dtype=np.int64))
                continue
            row = db[i]
            idx, _ = find_peaks(row)
            idx = idx[idx >= p.min_freq_bin]
            idx = idx[row[idx] >= row.max() - p.dynamic_range_db]
            if idx.size > p.peaks_per_frame:
                idx = idx[np.argsort(row[idx])[::-1][:p.peaks_per_frame]]
            out.append(np.sort(idx))
        return out

    def landmarks(self, peaks: list[np.ndarray]) -> list[FingerprintHash]:
        p = self.p
        hashes: list[FingerprintHash] = []
        n = len(peaks)
        for t1 in range(n):
            for f1 in peaks[t1].tolist():
                paired = 0
                for dt in range(p.target_min_frames, p.target_max_frames + 1):
                    t2 = t1 + dt
                    if t2 >= n or paired >= p.fan_out:
                        break
                    for f2 in peaks[t2].tolist():
                        if abs(f2 - f1) > p.target_max_bins:
                            continue
                        hashes.append(FingerprintHash(pack_hash(f1, f2, dt), t1))
                        paired += 1
                        if paired >= p.fan_out:
                            break
        return hashes


# ───────────────────────────────── identifier ────────────────────────────
class AudioIdentifier:
    """Fingerprints query audio and looks it up in a :class:`FingerprintStore`."""

    def __init__(self, store: "FingerprintStore", params: FingerprintParams | None = None) -> None:
        self.store = store
        self.p = params or FingerprintParams()
        self.generator = FingerprintGenerator(self.p)

    async def register(
        self, track_id: str, samples: np.ndarray, channels: int, sample_rate: int
    ) -> AudioFingerprint:
        fp = await asyncio.to_thread(
            self.generator.generate, samples, channels, sample_rate, track_id
        )
        await self.store.insert(fp)
        return fp

    async def identify(
        self, samples: np.ndarray, channels: int, sample_rate: int
    ) -> Result[FingerprintResult]:
        t0 = time.perf_counter()
        query = await asyncio.to_thread(self.generator.generate, samples, channels, sample_rate)
        if not query.hashes:
            return Result.fail(ErrorKind.NOT_DETECTED, "no hashes in query audio")

        by_hash: dict[int, list[int]] = {}
        for h in query.hashes:
            by_hash.setdefault(h.hash, []).append(h.time_offset)
        distinct = list(by_hash)
        batches = [distinct[i:i + LOOKUP_BATCH] for i in range(0, len(distinct), LOOKUP_BATCH)]
        answers = await asyncio.gather(*(self.store.query_many(b) for b in batches))

        votes: Counter[tuple[str, int]] = Counter()
        for found in answers:
            for h, candidates in found.items():
                for q_off in by_hash[h]:
                    for c in candidates:
                        votes[(c.track_id, c.track_time_offset - q_off)] += 1

        elapsed = time.perf_counter() - t0
        if not votes:
            return Result.fail(ErrorKind.NOT_DETECTED, "no matching hashes in store")
        (track_id, delta), score = votes.most_common(1)[0]
        if score < self.p.min_confidence:
            log.info("[FP] best candidate %s scored %d (< %d)", track_id, score, self.p.min_confidence)
            return Result.fail(
                ErrorKind.NOT_DETECTED,
                f"best score {score} below minimum confidence {self.p.min_confidence}",
            )
        # long queries collect stray aligned collisions; demand a share of all hashes
        relative = score / len(query.hashes)
        if relative < self.p.min_relative_confidence:
            log.info("[FP] rejected %s: score %d is %.2f%% of %d query hashes",
                     track_id, score, 100.0 * relative, len(query.hashes))
            return Result.fail(
                ErrorKind.NOT_DETECTED,
                f"relative score {relative:.2%} below {self.p.min_relative_confidence:.0%}",
            )
        match_time = delta * self.p.frame_seconds
        log.info("[FP] match %s | score %d | t=%.2fs | %.3fs", track_id, score, match_time, elapsed)
        return Result.success(FingerprintResult(track_id, score, match_time, elapsed))

    async def identify_source(self, source: SampleSource) -> Result[FingerprintResult]:
        samples = await asyncio.to_thread(read_all, source)
        return await self.identify(samples, source.channels, source.sample_rate)
