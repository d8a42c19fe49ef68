"""
Fingerprint stores: an inverted index hash → (track, frame offset).
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections import defaultdict
from typing import Protocol, Sequence

from pcmguard.errors import StoreUnavailableError
from pcmguard.fingerprint import AudioFingerprint, FingerprintMatchCandidate

log = logging.getLogger(__name__)


class FingerprintStore(Protocol):
    async def insert(self, fingerprint: AudioFingerprint) -> None:
        ...

    async def query(self, hash_value: int) -> list[FingerprintMatchCandidate]:
        ...

    async def query_many(
        self, hash_values: Sequence[int]
    ) -> dict[int, list[FingerprintMatchCandidate]]:
        ...


class InMemoryFingerprintStore:
    """Dict-backed index; colliding hashes keep every candidate."""

    def __init__(self) -> None:
        self._index: dict[int, list[FingerprintMatchCandidate]] = defaultdict(list)
        self._lock = threading.Lock()

    async def insert(self, fingerprint: AudioFingerprint) -> None:
        with self._lock:
            for h in fingerprint.hashes:
                self._index[h.hash].append(
                    FingerprintMatchCandidate(fingerprint.track_id, h.time_offset)
                )

    async def query(self, hash_value: int) -> list[FingerprintMatchCandidate]:
        with self._lock:
            return list(self._index.get(hash_value, ()))

    async def query_many(
        self, hash_values: Sequence[int]
    ) -> dict[int, list[FingerprintMatchCandidate]]:
        with self._lock:
            return {h: list(self._index[h]) for h in hash_values if h in self._index}

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())


class SqliteFingerprintStore:
    """
    SQLite-backed index (WAL journal). Every call opens its own connection
    and runs in a worker thread, so queries can overlap.
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS fingerprints (
            hash        INTEGER NOT NULL,
            track_id    TEXT    NOT NULL,
            time_offset INTEGER NOT NULL
        )
    """

    MAX_IN_PARAMS = 900  # below SQLITE_MAX_VARIABLE_NUMBER on old builds

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot open {self.db_path}: {exc}") from exc
        return conn

    def _init_db(self) -> None:
        conn = self._get_connection()
        try:
            with conn:
                conn.execute(self._SCHEMA)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_hash ON fingerprints(hash)")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot initialise {self.db_path}: {exc}") from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------ sync
    def _insert(self, fingerprint: AudioFingerprint) -> None:
        rows = [(h.hash, fingerprint.track_id, h.time_offset) for h in fingerprint.hashes]
        conn = self._get_connection()
        try:
            with conn:
                conn.executemany(
                    "INSERT INTO fingerprints (hash, track_id, time_offset) VALUES (?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"database write failure: {exc}") from exc
        finally:
            conn.close()
        log.info("[STORE] %s: %d hashes", fingerprint.track_id, len(rows))

    def _query(self, hash_value: int) -> list[FingerprintMatchCandidate]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT track_id, time_offset FROM fingerprints WHERE hash = ?",
                (hash_value,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"database read failure: {exc}") from exc
        finally:
            conn.close()
        return [FingerprintMatchCandidate(t, o) for t, o in rows]

    def _query_many(self, hash_values: Sequence[int]) -> dict[int, list[FingerprintMatchCandidate]]:
        found: dict[int, list[FingerprintMatchCandidate]] = defaultdict(list)
        values = list(hash_values)
        conn = self._get_connection()
        try:
            for i in range(0, len(values), self.MAX_IN_PARAMS):
                chunk = values[i:i + self.MAX_IN_PARAMS]
                marks = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT hash, track_id, time_offset FROM fingerprints WHERE hash IN ({marks})",
                    chunk,
                ).fetchall()
                for h, t, o in rows:
                    found[h].append(FingerprintMatchCandidate(t, o))
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"database read failure: {exc}") from exc
        finally:
            conn.close()
        return dict(found)

    # ------------------------------------------------------------------ API
    async def insert(self, fingerprint: AudioFingerprint) -> None:
        await asyncio.to_thread(self._insert, fingerprint)

    async def query(self, hash_value: int) -> list[FingerprintMatchCandidate]:
        return await asyncio.to_thread(self._query, hash_value)

    async def query_many(
        self, hash_values: Sequence[int]
    ) -> dict[int, list[FingerprintMatchCandidate]]:
        return await asyncio.to_thread(self._query_many, hash_values)

    def track_ids(self) -> list[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT DISTINCT track_id FROM fingerprints ORDER BY track_id"
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"database read failure: {exc}") from exc
        finally:
            conn.close()
        return [r[0] for r in rows]
