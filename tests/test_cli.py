import numpy as np
import soundfile as sf

import rx_app
import tx_app
from conftest import FS, tone

HEX_KEY = "11" * 32


def test_watermark_then_extract(tmp_path, capsys):
    src, out = str(tmp_path / "in.wav"), str(tmp_path / "out.wav")
    sf.write(src, tone(1.0), FS, subtype="FLOAT")
    assert tx_app.main(["watermark", src, out, "--key", "k", "--text", "hi", "--spread", "256"]) == 0
    assert rx_app.main(["extract", out, "--key", "k", "--spread", "256"]) == 0
    assert "payload: hi" in capsys.readouterr().out


def test_integrity_then_verify(tmp_path, capsys):
    src, out = str(tmp_path / "in.wav"), str(tmp_path / "out.wav")
    sf.write(src, tone(1.0, freq=1000.0), FS, subtype="FLOAT")
    assert tx_app.main(["integrity", src, out]) == 0
    assert rx_app.main(["verify", out]) == 0
    assert "authentic" in capsys.readouterr().out


def test_encrypt_then_decrypt(tmp_path):
    src, enc, dec = (str(tmp_path / n) for n in ("in.wav", "x.pgec", "dec.wav"))
    audio = tone(0.5, channels=2).reshape(-1, 2)
    sf.write(src, audio, FS, subtype="FLOAT")
    assert tx_app.main(["encrypt", src, enc, "--key", HEX_KEY]) == 0
    assert rx_app.main(["decrypt", enc, dec, "--key", HEX_KEY]) == 0
    data, fs = sf.read(dec, dtype="float32")
    assert fs == FS
    assert np.array_equal(data, audio)
