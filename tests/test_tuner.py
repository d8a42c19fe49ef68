import asyncio
import threading

import numpy as np
import pytest

from conftest import FS, tone
from pcmguard.config import TunerParams, WatermarkConfig
from pcmguard.detector import OwnershipExtractor
from pcmguard.embedder import OwnershipEmbedder
from pcmguard.errors import TuningCancelledError
from pcmguard.tuner import WatermarkTuner, safety_margin, simulate_volume_change

KEY = "tuner-key"


@pytest.fixture(scope="module")
def host():
    return tone(10.0)


@pytest.fixture(scope="module")
def tuned(host):
    return WatermarkTuner().tune(host, 1, FS, "TEST", KEY)


def test_simulate_volume_change_copies():
    x = np.ones(8, dtype=np.float32)
    y = simulate_volume_change(x, 0.75)
    assert y.dtype == np.float32
    assert np.allclose(y, 0.75)
    assert np.all(x == 1.0)


def test_safety_margin_steps():
    assert safety_margin(0.02) == 1.4
    assert safety_margin(0.04) == 1.4
    assert safety_margin(0.06) == 1.2
    assert safety_margin(0.08) == 1.2
    assert safety_margin(0.12) == 1.1


def test_tuned_config_within_bounds(tuned):
    assert tuned.key == KEY
    assert tuned.spread_factor in TunerParams().spread_factors
    # no margin unless asked for: the winning grid strength is returned as is
    assert tuned.strength in TunerParams().strengths


@pytest.mark.parametrize("base, final", [(0.02, 0.028), (0.06, 0.072), (0.12, 0.132), (0.14, 0.14)])
def test_margin_applied_when_enabled(base, final):
    tuner = WatermarkTuner(TunerParams(apply_safety_margin=True))
    cfg = tuner._accept(WatermarkConfig(KEY, strength=base, spread_factor=2_048), base, 0.0)
    assert cfg.strength == pytest.approx(final)
    assert cfg.spread_factor == 2_048


def test_margin_off_by_default():
    cfg = WatermarkTuner()._accept(WatermarkConfig(KEY, strength=0.04, spread_factor=2_048), 0.04, 0.0)
    assert cfg.strength == 0.04


def test_tuned_config_survives_attack(host, tuned):
    wm = OwnershipEmbedder.from_text(tuned, "TEST").process(host.copy(), 1)
    attacked = simulate_volume_change(wm, 0.75)
    rx = OwnershipExtractor(tuned)
    res = rx.process(attacked, 1) or rx.finish()
    assert res.ok and res.value == "TEST"


def test_short_host_falls_back():
    cfg = WatermarkTuner().tune(tone(2.0), 1, FS, "TEST", KEY)
    assert cfg == WatermarkConfig(KEY, strength=0.10, spread_factor=16_384)


def test_cancellation(host):
    ev = threading.Event()
    ev.set()
    with pytest.raises(TuningCancelledError):
        WatermarkTuner().tune(host, 1, FS, "TEST", KEY, cancel_event=ev)


def test_async_matches_sync(host, tuned):
    cfg = asyncio.run(WatermarkTuner().tune_async(host, 1, FS, "TEST", KEY))
    assert cfg == tuned


def test_candidate_regions_on_long_host():
    tuner = WatermarkTuner()
    audio = np.concatenate((np.zeros(FS * 12, dtype=np.float32), tone(30.0)))
    regions = tuner.candidate_regions(audio, 1, FS, FS * 10)
    assert regions[0] == 0
    assert FS * 10 in regions
    assert len(regions) == 3
    # the densest slice avoids the silent intro
    assert regions[-1] >= FS * 12
