"""
Immutable configuration records shared between matching codecs.
"""
from __future__ import annotations

from dataclasses import dataclass

from pcmguard.errors import CipherMisuseError, InvalidConfigurationError

MAX_ADAPTIVE_FACTOR = 1.0
MIN_INTEGRITY_BLOCK = 16  # must hold the 8 check samples plus content

AES_KEY_BYTES = 32
IV_LENGTHS = (12, 16)


@dataclass(frozen=True, slots=True)
class WatermarkConfig:
    """
    Settings of one ownership/integrity watermark.

    The embedder and the extractor (or verifier) of a stream must be built
    from equal configurations: the key seeds the chip generator, the spread
    factor fixes the bit period and the block size fixes the integrity chain.
    """

    key: str
    strength: float = 0.05
    spread_factor: int = 4096
    integrity_block_size: int = 8192

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise InvalidConfigurationError("key must be a non-empty string")
        if not 0.0 < self.strength <= 1.0:
            raise InvalidConfigurationError(
                f"strength must be in (0, 1], got {self.strength}"
            )
        if int(self.spread_factor) != self.spread_factor or self.spread_factor < 1:
            raise InvalidConfigurationError(
                f"spread_factor must be a positive integer, got {self.spread_factor}"
            )
        if self.integrity_block_size < MIN_INTEGRITY_BLOCK:
            raise InvalidConfigurationError(
                f"integrity_block_size must be >= {MIN_INTEGRITY_BLOCK}"
            )


@dataclass(frozen=True, slots=True)
class EncryptionConfig:
    key: bytes
    iv: bytes

    def __post_init__(self) -> None:
        if len(self.key) != AES_KEY_BYTES:
            raise CipherMisuseError("key must be 32 bytes (256 bit)")
        if len(self.iv) not in IV_LENGTHS:
            raise CipherMisuseError("iv must be 12 or 16 bytes")


@dataclass(frozen=True, slots=True)
class FingerprintParams:
    """Spectral analysis and landmark pairing parameters."""

    sample_rate: int = 11_025
    window_size: int = 1_024
    hop_size: int = 512
    peaks_per_frame: int = 5
    dynamic_range_db: float = 40.0
    silence_rms: float = 1e-4
    min_freq_bin: int = 3
    target_min_frames: int = 1
    target_max_frames: int = 64
    target_max_bins: int = 256
    fan_out: int = 10
    min_confidence: int = 25
    min_relative_confidence: float = 0.05

    def __post_init__(self) -> None:
        if self.hop_size < 1 or self.window_size < self.hop_size:
            raise InvalidConfigurationError("need 1 <= hop_size <= window_size")
        if self.window_size // 2 + 1 > 1 << 10:
            raise InvalidConfigurationError("frequency bins must fit into 10 bits")
        if self.target_max_frames >= 1 << 12:
            raise InvalidConfigurationError("target zone must fit into 12 bits")

    @property
    def frame_seconds(self) -> float:
        return self.hop_size / self.sample_rate


@dataclass(frozen=True, slots=True)
class TunerParams:
    spread_factors: tuple[int, ...] = (16_384, 8_192, 4_096, 2_048)
    strengths: tuple[float, ...] = (0.02, 0.04, 0.06, 0.08, 0.10, 0.12)
    attack_gain: float = 0.75
    margin_seconds: float = 5.0
    skip_intro_seconds: float = 10.0
    strength_ceiling: float = 0.14
    apply_safety_margin: bool = False
    fallback_strength: float = 0.10
    fallback_spread_factor: int = 16_384
