import numpy as np
import pytest

from conftest import tone
from pcmguard import bitcodec
from pcmguard.embedder import SILENCE_FLOOR, OwnershipEmbedder, adaptive_strength


def test_required_frames(cfg):
    tx = OwnershipEmbedder.from_text(cfg, "hi")
    assert tx.required_frames == (bitcodec.HEADER_BITS + 16) * cfg.spread_factor


def test_silence_passes_through_untouched(cfg):
    tx = OwnershipEmbedder.from_text(cfg, "hi")
    silence = np.zeros(50_000, dtype=np.float32)
    out = tx.process(silence.copy(), 1)
    assert np.array_equal(out, silence)


def test_quiet_samples_carry_nothing(cfg):
    quiet = np.full(10_000, SILENCE_FLOOR * 0.5, dtype=np.float32)
    out = OwnershipEmbedder.from_text(cfg, "hi").process(quiet.copy(), 1)
    assert np.array_equal(out, quiet)


def test_adaptive_strength_is_quadratic_and_capped():
    mag = np.array([0.001, 0.1, 0.5, 1.0, 8.0])
    eff = adaptive_strength(mag, 0.05)
    assert eff[0] == 0.0
    assert eff[1] == pytest.approx(0.05 * 0.01)
    assert eff[2] == pytest.approx(0.05 * 0.25)
    assert np.all(eff <= 0.05)


def test_hot_samples_never_exceed_strength():
    eff = adaptive_strength(np.array([1.0, 2.0, 3.0]), 0.1)
    assert np.allclose(eff, [0.1, 0.1, 0.1])


def test_hot_float_host_bounded_by_strength(cfg):
    host = tone(0.5, amp=3.0)
    out = OwnershipEmbedder.from_text(cfg, "hi").process(host.copy(), 1)
    assert np.max(np.abs(out - host)) <= cfg.strength + 1e-6


def test_chunked_equals_one_shot(cfg):
    host = tone(1.0)
    whole = OwnershipEmbedder.from_text(cfg, "hi").process(host.copy(), 1)

    tx = OwnershipEmbedder.from_text(cfg, "hi")
    parts = []
    for chunk in np.array_split(host.copy(), [1, 777, 5000, 20_000]):
        parts.append(tx.process(chunk, 1).copy())
    assert np.array_equal(np.concatenate(parts), whole)


def test_complete_after_payload_then_passthrough(cfg):
    tx = OwnershipEmbedder.from_text(cfg, "hi")
    host = tone(1.0)
    out = tx.process(host.copy(), 1)
    assert tx.complete
    assert tx.frame_ctr == tx.required_frames
    tail = slice(tx.required_frames, None)
    assert np.array_equal(out[tail], host[tail])
    assert not np.array_equal(out[:tx.required_frames], host[:tx.required_frames])


def test_stereo_channels_get_same_carrier(cfg):
    host = tone(0.5, channels=2)
    out = OwnershipEmbedder.from_text(cfg, "hi").process(host.copy(), 2)
    delta = (out - host).reshape(-1, 2)
    assert np.allclose(delta[:, 0], delta[:, 1])


def test_watermark_is_quiet(cfg):
    host = tone(1.0)
    out = OwnershipEmbedder.from_text(cfg, "hi").process(host.copy(), 1)
    assert np.max(np.abs(out - host)) <= cfg.strength * 0.25 + 1e-6
