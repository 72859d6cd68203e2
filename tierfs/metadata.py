"""Per-file metadata and the key-value store that keeps it."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Iterator

from tierfs.popularity import INITIAL_POPULARITY

# Serialises every update of the metadata store.
_db_lock = threading.Lock()


class MetadataStore:
    """Persistent string-to-string map, iterated in key order."""

    def __init__(self, path: str | os.PathLike = ":memory:") -> None:
        self.path = os.fspath(path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ValueError("metadata store is closed")
        return self._conn

    def __enter__(self) -> "MetadataStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""
        with self._lock:
            row = self._connection().execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._connection().execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value)
            )

    def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is ignored."""
        with self._lock:
            self._connection().execute("DELETE FROM kv WHERE key = ?", (key,))

    def _replace(self, old_key: str, key: str, value: str) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN")
            try:
                conn.execute("DELETE FROM kv WHERE key = ?", (old_key,))
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value)
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def items(self) -> Iterator[tuple[str, str]]:
        """Yield ``(key, value)`` pairs in key order."""
        with self._lock:
            rows = self._connection().execute(
                "SELECT key, value FROM kv ORDER BY key"
            ).fetchall()
        yield from rows

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


@dataclass
class Metadata:
    """What is remembered about one file between tiering runs."""

    tier_path: str = ""
    access_count: int = 0
    popularity: float = INITIAL_POPULARITY
    pinned: bool = False
    not_found: bool = field(default=False, compare=False)

    def serialize(self) -> str:
        return json.dumps(
            {
                "tier_path": self.tier_path,
                "access_count": self.access_count,
                "popularity": self.popularity,
                "pinned": self.pinned,
            }
        )

    @classmethod
    def deserialize(cls, serialized: str) -> "Metadata":
        """Rebuild metadata from :meth:`serialize` output; raise ValueError if malformed."""
        try:
            data = json.loads(serialized)
            return cls(
                tier_path=str(data["tier_path"]),
                access_count=int(data["access_count"]),
                popularity=float(data["popularity"]),
                pinned=bool(data["pinned"]),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as exc:
            raise ValueError(f"invalid metadata record: {serialized!r}") from exc

    @classmethod
    def load(
        cls, path: str, store: MetadataStore, tier_path: str | None = None
    ) -> "Metadata":
        """Fetch metadata for ``path``.

        If absent and ``tier_path`` is given, a fresh record is created and stored.
        If absent and ``tier_path`` is None, the result has ``not_found`` set.
        """
        stored = store.get(path)
        if stored is not None:
            return cls.deserialize(stored)
        if tier_path is None:
            return cls(not_found=True)
        meta = cls(tier_path=str(tier_path))
        meta.update(path, store)
        return meta

    def update(
        self, relative_path: str, store: MetadataStore, old_key: str | None = None
    ) -> None:
        """Store under ``relative_path``, removing ``old_key`` first if given."""
        with _db_lock:
            if old_key is not None:
                store._replace(old_key, relative_path, self.serialize())
            else:
                store.put(relative_path, self.serialize())

    def touch(self) -> None:
        """Count one more access."""
        self.access_count += 1

    def dump_stats(self) -> str:
        return (
            f"Tier path: {self.tier_path}\n"
            f"Access count: {self.access_count}\n"
            f"Popularity: {self.popularity}\n"
            f"Pinned: {'true' if self.pinned else 'false'}\n"
        )