import io

import numpy as np
import soundfile as sf

from conftest import FS, tone
from pcmguard.audioio import ArraySource, SoundFileSource
from pcmguard.config import WatermarkConfig
from pcmguard.errors import ErrorKind
from pcmguard.watermarker import (
    embed_integrity,
    embed_ownership,
    extract_ownership,
    tamper_bytes,
    verify_integrity,
)


def test_ownership_file_roundtrip(cfg, tmp_path):
    path = str(tmp_path / "marked.wav")
    src = ArraySource(tone(1.0, channels=2), FS, 2)
    with open(path, "wb") as fh:
        res = embed_ownership(src, fh, "hello", cfg)
    assert res.ok and res.value == FS

    data, fs = sf.read(path, dtype="float32", always_2d=True)
    assert fs == FS and data.shape == (FS, 2)

    with SoundFileSource(path) as marked:
        got = extract_ownership(marked, cfg)
    assert got.ok and got.value == "hello"


def test_payload_too_large_for_source(cfg):
    src = ArraySource(tone(0.1), FS)
    res = embed_ownership(src, io.BytesIO(), "a much longer payload than fits", cfg)
    assert not res.ok
    assert res.error.kind is ErrorKind.PAYLOAD_TOO_LARGE


def test_extract_from_unmarked_file(cfg):
    res = extract_ownership(ArraySource(tone(1.0), FS), cfg)
    assert res.error.kind is ErrorKind.NOT_DETECTED


def test_integrity_survives_file_roundtrip_and_catches_tamper(noise, tmp_path):
    cfg = WatermarkConfig("integrity")          # 8192-sample blocks
    audio = np.tile(noise, 2)[:FS * 3]          # 132300 samples ≈ 16 blocks
    chained = str(tmp_path / "chained.wav")
    with open(chained, "wb") as fh:
        assert embed_integrity(ArraySource(audio, FS), fh, cfg).ok

    with SoundFileSource(chained) as src:
        clean = verify_integrity(src, cfg)
    assert clean.intact and clean.failure is None
    assert clean.blocks_checked == audio.size // 8192

    broken = str(tmp_path / "broken.wav")
    point = tamper_bytes(chained, broken)
    block = (point - 44) // 4 // 8192
    with SoundFileSource(broken) as src:
        report = verify_integrity(src, cfg)
    assert not report.intact
    assert report.violations[0].block_index == block + 1
    assert report.failure.kind is ErrorKind.INTEGRITY_VIOLATION
    assert report.failure.block_index == block + 1

    with SoundFileSource(broken) as src:
        first = verify_integrity(src, cfg, stop_at_first=True)
    assert len(first.violations) == 1


def test_tamper_tiny_file_copies(tmp_path):
    src = tmp_path / "tiny.wav"
    src.write_bytes(b"RIFF")
    dst = tmp_path / "copy.wav"
    assert tamper_bytes(str(src), str(dst)) == -1
    assert dst.read_bytes() == b"RIFF"
