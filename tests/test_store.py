import asyncio

import pytest

from pcmguard.errors import StoreUnavailableError
from pcmguard.fingerprint import AudioFingerprint, FingerprintHash, FingerprintMatchCandidate
from pcmguard.store import InMemoryFingerprintStore, SqliteFingerprintStore


def _fps():
    a = AudioFingerprint("track-a", [FingerprintHash(0xABC, 3), FingerprintHash(0x123, 7)], 1.0)
    b = AudioFingerprint("track-b", [FingerprintHash(0xABC, 11)], 1.0)
    return a, b


async def _exercise(store):
    a, b = _fps()
    await store.insert(a)
    await store.insert(b)
    shared, single, missing = await asyncio.gather(
        store.query(0xABC), store.query(0x123), store.query(0xFFF)
    )
    return shared, single, missing


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_collisions_kept_side_by_side(kind, tmp_path):
    if kind == "memory":
        store = InMemoryFingerprintStore()
    else:
        store = SqliteFingerprintStore(str(tmp_path / "fp.sqlite"))
    shared, single, missing = asyncio.run(_exercise(store))
    assert sorted(shared, key=lambda c: c.track_id) == [
        FingerprintMatchCandidate("track-a", 3),
        FingerprintMatchCandidate("track-b", 11),
    ]
    assert single == [FingerprintMatchCandidate("track-a", 7)]
    assert missing == []


def test_sqlite_persists_between_instances(tmp_path):
    path = str(tmp_path / "fp.sqlite")
    asyncio.run(SqliteFingerprintStore(path).insert(_fps()[0]))
    again = SqliteFingerprintStore(path)
    assert again.track_ids() == ["track-a"]
    assert asyncio.run(again.query(0x123)) == [FingerprintMatchCandidate("track-a", 7)]


def test_sqlite_unavailable(tmp_path):
    with pytest.raises(StoreUnavailableError):
        SqliteFingerprintStore(str(tmp_path / "missing" / "fp.sqlite"))


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_query_many_matches_single_lookups(kind, tmp_path):
    if kind == "memory":
        store = InMemoryFingerprintStore()
    else:
        store = SqliteFingerprintStore(str(tmp_path / "fp.sqlite"))
    big = AudioFingerprint("track-c", [FingerprintHash(h, h % 50) for h in range(1, 2_001)], 5.0)

    async def run():
        for fp in (*_fps(), big):
            await store.insert(fp)
        return await store.query_many([0xABC, 0xFFFFF, *range(1, 2_001)])

    found = asyncio.run(run())
    assert 0xFFFFF not in found
    assert sorted(found[0xABC], key=lambda c: c.track_id) == [
        FingerprintMatchCandidate("track-a", 3),
        FingerprintMatchCandidate("track-b", 11),
    ]
    assert found[1_999] == [FingerprintMatchCandidate("track-c", 1_999 % 50)]
    assert len(found) == 2_001


def test_sqlite_batch_lookup_uses_one_connection(tmp_path, monkeypatch):
    store = SqliteFingerprintStore(str(tmp_path / "fp.sqlite"))
    asyncio.run(store.insert(_fps()[0]))
    opened = []
    real = store._get_connection

    def counting():
        opened.append(1)
        return real()

    monkeypatch.setattr(store, "_get_connection", counting)
    found = asyncio.run(store.query_many(list(range(5_000))))
    assert len(opened) == 1
    assert found[0x123] == [FingerprintMatchCandidate("track-a", 7)]
