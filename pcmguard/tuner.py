"""
Search for the weakest ownership watermark that survives a volume attack.
"""
from __future__ import annotations

import asyncio
import logging
import threading

import numpy as np

from pcmguard import bitcodec
from pcmguard.config import TunerParams, WatermarkConfig
from pcmguard.detector import OwnershipExtractor
from pcmguard.embedder import SILENCE_FLOOR, OwnershipEmbedder
from pcmguard.errors import TuningCancelledError
from pcmguard.utils import chip_train, seed_from_key

log = logging.getLogger(__name__)

DENSITY_CANDIDATES = 5
DENSITY_STRIDE = 200  # samples between silence probes


def simulate_volume_change(samples: np.ndarray, factor: float) -> np.ndarray:
    """Scaled copy of `samples` (the tuner's attack model)."""
    return (np.asarray(samples, dtype=np.float32) * np.float32(factor)).astype(np.float32)


def safety_margin(strength: float) -> float:
    if strength <= 0.04 + 1e-9:
        return 1.4
    if strength <= 0.08 + 1e-9:
        return 1.2
    return 1.1


class WatermarkTuner:
    """
    Tries spread factors from most to least robust and strengths from
    weakest to strongest on a few regions of the host; the first
    configuration whose payload comes back exactly after the attack wins.
    """

    def __init__(self, params: TunerParams | None = None) -> None:
        self.p = params or TunerParams()

    # ------------------------------------------------------------------ API
    def tune(
        self,
        samples: np.ndarray,
        channels: int,
        sample_rate: int,
        text: str,
        key: str,
        cancel_event: threading.Event | None = None,
    ) -> WatermarkConfig:
        p = self.p
        audio = np.ascontiguousarray(samples, dtype=np.float32).reshape(-1)
        total_frames = audio.size // channels
        payload = bitcodec.encode_text(text)
        margin = int(sample_rate * p.margin_seconds)

        fitting = [sf for sf in p.spread_factors
                   if payload.size * sf + margin <= total_frames]
        if not fitting:
            log.warning("[TUNE] %.1f s host too short for any spread factor; using fallback",
                        total_frames / sample_rate)
            return self._fallback(key)

        # one chip train serves every trial
        chips = chip_train(seed_from_key(key), payload.size * max(fitting))
        log.info("[TUNE] %d bits, spread factors %s", payload.size, fitting)

        for sf in fitting:
            needed = payload.size * sf + margin
            regions = self.candidate_regions(audio, channels, sample_rate, needed)
            for s in p.strengths:
                cfg = WatermarkConfig(key, strength=s, spread_factor=sf)
                for start in regions:
                    if cancel_event is not None and cancel_event.is_set():
                        raise TuningCancelledError("tuning cancelled")
                    if self._trial(audio, channels, start, needed, payload, text, cfg, chips):
                        return self._accept(cfg, s, start / sample_rate)
            log.debug("[TUNE] spread %d failed everywhere", sf)

        log.warning("[TUNE] no robust configuration found; using fallback")
        return self._fallback(key)

    async def tune_async(
        self,
        samples: np.ndarray,
        channels: int,
        sample_rate: int,
        text: str,
        key: str,
    ) -> WatermarkConfig:
        """Run :meth:`tune` in a worker thread; cancelling the task stops the search."""
        event = threading.Event()
        try:
            return await asyncio.to_thread(
                self.tune, samples, channels, sample_rate, text, key, event
            )
        except asyncio.CancelledError:
            event.set()
            raise

    # ------------------------------------------------------------------ regions
    def candidate_regions(
        self, audio: np.ndarray, channels: int, sample_rate: int, frames: int
    ) -> list[int]:
        """Start frames to test: file start, past the intro, densest slice."""
        total = audio.size // channels
        valid = total - frames
        if valid <= 0:
            return [0]
        out = [0]
        skip = min(valid, int(sample_rate * self.p.skip_intro_seconds))
        if skip > sample_rate:
            out.append(skip)
        dense = self._densest_start(audio, channels, frames, valid)
        if dense > sample_rate * self.p.margin_seconds:
            out.append(dense)
        return list(dict.fromkeys(out))

    def _densest_start(self, audio: np.ndarray, channels: int, frames: int, valid: int) -> int:
        stride = max(1, valid // DENSITY_CANDIDATES)
        best, best_quiet = 0, None
        for start in range(0, valid, stride):
            probe = audio[start * channels:(start + frames) * channels:DENSITY_STRIDE]
            quiet = int(np.count_nonzero(np.abs(probe) < SILENCE_FLOOR))
            if best_quiet is None or quiet < best_quiet:
                best, best_quiet = start, quiet
                if quiet == 0:
                    break
        return best

    # ------------------------------------------------------------------ trials
    def _trial(
        self,
        audio: np.ndarray,
        channels: int,
        start: int,
        frames: int,
        payload: np.ndarray,
        text: str,
        cfg: WatermarkConfig,
        chips: np.ndarray,
    ) -> bool:
        host = audio[start * channels:(start + frames) * channels].copy()
        OwnershipEmbedder(cfg, payload, chips=chips).process(host, channels)
        attacked = simulate_volume_change(host, self.p.attack_gain)

        ex = OwnershipExtractor(cfg, chips=chips)
        res = ex.process(attacked, channels) or ex.finish()
        ok = res is not None and res.ok and res.value == text
        log.debug("[TUNE] sf=%d s=%.2f @%d → %s", cfg.spread_factor, cfg.strength, start,
                  "ok" if ok else (res.error if res is not None else "pending"))
        return ok

    def _accept(self, cfg: WatermarkConfig, base: float, at_seconds: float) -> WatermarkConfig:
        strength = base
        if self.p.apply_safety_margin:
            strength = round(base * safety_margin(base), 3)
        strength = min(strength, self.p.strength_ceiling)
        log.info("[TUNE] spread=%d base=%.3f final=%.3f (region at %.1f s)",
                 cfg.spread_factor, base, strength, at_seconds)
        return WatermarkConfig(cfg.key, strength=strength, spread_factor=cfg.spread_factor,
                               integrity_block_size=cfg.integrity_block_size)

    def _fallback(self, key: str) -> WatermarkConfig:
        return WatermarkConfig(key, strength=self.p.fallback_strength,
                               spread_factor=self.p.fallback_spread_factor)
