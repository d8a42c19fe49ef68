import asyncio

import numpy as np
import pytest

from conftest import tone_sequence
from pcmguard.audioio import ArraySource
from pcmguard.config import FingerprintParams
from pcmguard.errors import ErrorKind
from pcmguard.fingerprint import LOOKUP_BATCH, AudioIdentifier, FingerprintGenerator, pack_hash
from pcmguard.store import InMemoryFingerprintStore

FP_FS = 11_025
P = FingerprintParams()


@pytest.fixture(scope="module")
def tracks():
    return {
        "alpha": tone_sequence(20.0, FP_FS, seed=1),
        "beta": tone_sequence(20.0, FP_FS, seed=2),
    }


def _identifier(tracks):
    ident = AudioIdentifier(InMemoryFingerprintStore(), P)

    async def index():
        for name, audio in tracks.items():
            await ident.register(name, audio, 1, FP_FS)

    asyncio.run(index())
    return ident


def test_hash_layout():
    h = pack_hash(513, 7, 64)
    assert h >> 22 == 513
    assert (h >> 12) & 0x3FF == 7
    assert h & 0xFFF == 64


def test_generator_is_deterministic(tracks):
    gen = FingerprintGenerator(P)
    a = gen.generate(tracks["alpha"], 1, FP_FS, "alpha")
    b = gen.generate(tracks["alpha"].copy(), 1, FP_FS, "alpha")
    assert a.hashes and a.hashes == b.hashes
    assert a.duration_seconds == pytest.approx(tracks["alpha"].size / FP_FS)
    offsets = [h.time_offset for h in a.hashes]
    assert offsets == sorted(offsets)


def test_silence_yields_no_hashes():
    fp = FingerprintGenerator(P).generate(np.zeros(FP_FS * 3, dtype=np.float32), 1, FP_FS)
    assert fp.hashes == []


def test_sub_clip_identified(tracks):
    ident = _identifier(tracks)
    start = 150 * P.hop_size                      # ≈ 6.97 s
    clip = tracks["beta"][start:start + 5 * FP_FS]
    res = asyncio.run(ident.identify(clip, 1, FP_FS))
    assert res.ok, res.error
    m = res.value
    assert m.track_id == "beta"
    assert m.confidence >= P.min_confidence
    assert abs(m.match_time_seconds - start / FP_FS) <= P.frame_seconds
    assert m.processing_time >= 0.0


def test_resampled_stereo_query(tracks):
    ident = _identifier(tracks)
    # 44.1 kHz stereo copy of a slice of alpha, starting on an analysis frame
    start = 200 * P.hop_size
    mono = tracks["alpha"][start:start + 5 * FP_FS]
    up = np.repeat(np.interp(np.arange(mono.size * 4) / 4.0, np.arange(mono.size), mono), 2)
    res = asyncio.run(ident.identify_source(ArraySource(up.astype(np.float32), 44_100, 2)))
    assert res.ok, res.error
    assert res.value.track_id == "alpha"
    assert abs(res.value.match_time_seconds - start / FP_FS) <= 2 * P.frame_seconds


def test_unknown_audio_not_detected(tracks):
    ident = _identifier(tracks)
    # far above the band the indexed tracks use
    other = tone_sequence(5.0, FP_FS, seed=9, lo=3500.0, hi=5000.0)
    res = asyncio.run(ident.identify(other, 1, FP_FS))
    assert not res.ok
    assert res.error.kind is ErrorKind.NOT_DETECTED


def test_long_unrelated_query_rejected_by_relative_floor():
    library = {f"t{i}": tone_sequence(30.0, FP_FS, seed=100 + i) for i in range(8)}
    ident = _identifier(library)
    query = tone_sequence(60.0, FP_FS, seed=999)
    res = asyncio.run(ident.identify(query, 1, FP_FS))
    assert not res.ok
    assert res.error.kind is ErrorKind.NOT_DETECTED


def test_relative_floor_applies_after_absolute_floor(tracks):
    strict = FingerprintParams(min_relative_confidence=1.01)
    ident = AudioIdentifier(InMemoryFingerprintStore(), strict)
    asyncio.run(ident.register("beta", tracks["beta"], 1, FP_FS))
    clip = tracks["beta"][100 * P.hop_size:100 * P.hop_size + 3 * FP_FS]
    res = asyncio.run(ident.identify(clip, 1, FP_FS))
    assert not res.ok
    assert "relative score" in res.error.message


class _CountingStore(InMemoryFingerprintStore):
    def __init__(self):
        super().__init__()
        self.batches = []

    async def query_many(self, hash_values):
        self.batches.append(len(hash_values))
        return await super().query_many(hash_values)


def test_identify_looks_up_hashes_in_batches(tracks):
    store = _CountingStore()
    ident = AudioIdentifier(store, P)
    asyncio.run(ident.register("alpha", tracks["alpha"], 1, FP_FS))
    clip = tracks["alpha"][:10 * FP_FS]
    res = asyncio.run(ident.identify(clip, 1, FP_FS))
    assert res.ok and res.value.track_id == "alpha"
    distinct = {h.hash for h in ident.generator.generate(clip, 1, FP_FS).hashes}
    assert sum(store.batches) == len(distinct)
    assert len(store.batches) == -(-len(distinct) // LOOKUP_BATCH)
