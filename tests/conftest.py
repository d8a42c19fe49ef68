import numpy as np
import pytest

from pcmguard.config import WatermarkConfig

FS = 44_100


def tone(seconds: float, freq: float = 440.0, amp: float = 0.5, fs: int = FS,
         channels: int = 1, phase: float = 0.0) -> np.ndarray:
    """Interleaved float32 sine; stereo channels carry the same signal."""
    t = np.arange(int(seconds * fs)) / fs
    x = (amp * np.sin(2 * np.pi * freq * t + phase)).astype(np.float32)
    if channels > 1:
        x = np.repeat(x, channels)
    return x


def tone_sequence(seconds: float, fs: int, seed: int, lo: float = 300.0,
                  hi: float = 1500.0, segment: float = 0.1) -> np.ndarray:
    """Two random simultaneous tones per segment (phase-continuous), plus a little noise."""
    rng = np.random.default_rng(seed)
    seg_len = int(segment * fs)
    n_seg = int(seconds / segment)
    freqs = rng.uniform(lo, hi, (n_seg, 2))
    inst = np.repeat(freqs, seg_len, axis=0)
    phase = 2 * np.pi * np.cumsum(inst, axis=0) / fs
    x = 0.4 * np.sin(phase[:, 0]) + 0.2 * np.sin(phase[:, 1])
    x += 0.005 * rng.standard_normal(x.size)
    return x.astype(np.float32)


@pytest.fixture
def key():
    return "s3cret-owner-key"


@pytest.fixture
def cfg(key):
    # short bit period keeps the tests quick
    return WatermarkConfig(key, strength=0.05, spread_factor=256)


@pytest.fixture
def noise():
    rng = np.random.default_rng(1234)
    return (rng.standard_normal(FS * 2) * 0.2).astype(np.float32)
