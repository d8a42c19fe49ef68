"""
Ownership watermark embedder (direct-sequence spread spectrum).
"""
from __future__ import annotations

import logging

import numpy as np

from pcmguard import bitcodec
from pcmguard.config import MAX_ADAPTIVE_FACTOR, WatermarkConfig
from pcmguard.utils import ChipStream, db_to_lin, seed_from_key

log = logging.getLogger(__name__)

SILENCE_FLOOR = db_to_lin(-50.0)  # ≈ 0.003; quieter samples carry no watermark


def adaptive_strength(magnitude: np.ndarray, strength: float) -> np.ndarray:
    """
    Per-sample watermark amplitude.

    Quadratic in the host magnitude up to full scale, never above
    ``strength``; zero below the silence floor.
    """
    eff = strength * np.minimum(MAX_ADAPTIVE_FACTOR, magnitude * magnitude)
    eff[magnitude < SILENCE_FLOOR] = 0.0
    return eff


class OwnershipEmbedder:
    """
    Adds a payload to interleaved float PCM as low-level keyed noise.

    Every frame (all channels) receives one chip of the key's sequence; a
    payload bit spans exactly ``spread_factor`` frames. Counters only move
    forward; once the last bit is written the embedder passes audio through.
    """

    def __init__(
        self,
        config: WatermarkConfig,
        payload_bits: np.ndarray,
        *,
        chips: np.ndarray | None = None,
    ) -> None:
        self.cfg = config
        self.bits = np.asarray(payload_bits, dtype=np.uint8)
        if self.bits.size == 0:
            raise ValueError("payload must contain at least one bit")
        self._bit_sy = 2.0 * self.bits.astype(np.float64) - 1.0
        self._chips = ChipStream(seed_from_key(config.key), chips)
        self.frame_ctr = 0
        self.complete = False

    @classmethod
    def from_text(cls, config: WatermarkConfig, text: str, **kw) -> "OwnershipEmbedder":
        return cls(config, bitcodec.encode_text(text), **kw)

    @property
    def required_frames(self) -> int:
        """Frames needed to carry the whole payload."""
        return int(self.bits.size) * self.cfg.spread_factor

    # ------------------------------------------------------------------ API
    def process(self, buffer: np.ndarray, channels: int) -> np.ndarray:
        """Watermark `buffer` in place; returns the same array."""
        if self.complete:
            return buffer
        frames = buffer.size // channels
        n = min(frames, self.required_frames - self.frame_ctr)
        if n <= 0:
            return buffer

        chips = self._chips.take(n).astype(np.float64)
        bit_idx = (self.frame_ctr + np.arange(n)) // self.cfg.spread_factor
        carrier = chips * self._bit_sy[bit_idx]

        view = buffer[:n * channels].reshape(n, channels)
        eff = adaptive_strength(np.abs(view.astype(np.float64)), self.cfg.strength)
        view += (eff * carrier[:, None]).astype(buffer.dtype, copy=False)

        self.frame_ctr += n
        log.debug("[EMBED] frames=%d bit=%d/%d", self.frame_ctr, int(bit_idx[-1]), self.bits.size)
        if self.frame_ctr >= self.required_frames:
            self.complete = True
            log.info("[EMBED] payload of %d bits complete after %d frames",
                     self.bits.size, self.frame_ctr)
        return buffer
