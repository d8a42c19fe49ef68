import numpy as np
import soundfile as sf

from pcmguard.live import AudioLoop


def _halve(buffer, channels):
    buffer *= 0.5
    return buffer


def test_callback_runs_process_and_fills_output():
    loop = AudioLoop(_halve, fs=8000, block=64, channels=2)
    indata = np.random.default_rng(0).uniform(-1, 1, (64, 2)).astype(np.float32)
    outdata = np.zeros_like(indata)
    loop._callback(indata, outdata, 64, None, None)
    assert np.allclose(outdata, indata * 0.5)


def test_status_counts_xruns():
    loop = AudioLoop(_halve, fs=8000, block=16)
    buf = np.zeros((16, 1), dtype=np.float32)
    loop._callback(buf, buf.copy(), 16, None, "input overflow")
    assert loop.xruns == 1


def test_output_saved_on_stop(tmp_path):
    path = str(tmp_path / "live.wav")
    loop = AudioLoop(_halve, fs=8000, block=100, save_path=path, save_seconds=0.05)
    for _ in range(6):
        indata = np.ones((100, 1), dtype=np.float32)
        loop._callback(indata, np.zeros_like(indata), 100, None, None)
    loop.stop()
    data, fs = sf.read(path, dtype="float32")
    assert fs == 8000
    assert data.shape[0] == 400
    assert np.allclose(data, 0.5)
