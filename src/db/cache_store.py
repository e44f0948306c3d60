# db/cache_store.py
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from typing import Dict, Iterable, Optional

from core.errors import CacheError
from core.models import CacheEntry, SongRecord

logger = logging.getLogger(__name__)

CURRENT_CACHE_VERSION = 1


def open_cache_database(db_path: str) -> sqlite3.Connection:
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    db = sqlite3.connect(db_path)
    db.row_factory = sqlite3.Row

    try:
        existing_version = int(db.execute("PRAGMA user_version").fetchone()[0])
        upgrade_cache_if_needed(db, existing_version)
    except sqlite3.Error:
        db.close()
        raise
    return db


def upgrade_cache_if_needed(db: sqlite3.Connection, existing_version: int) -> None:
    if existing_version >= CURRENT_CACHE_VERSION:
        return

    # v1
    if existing_version <= 0:
        logger.debug("Migrate cache database version 1...")
        db.execute("PRAGMA user_version=1")
        db.executescript("""
            CREATE TABLE IF NOT EXISTS song_cache (
                path TEXT PRIMARY KEY,
                mod_time REAL NOT NULL,
                data TEXT NOT NULL
            );
        """)
        db.commit()


def _is_under(path: str, root: str) -> bool:
    root = os.path.abspath(root)
    path = os.path.abspath(path)
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # different drives on Windows
        return False


class CacheStore:
    """
    path -> {mod_time, record}, loaded once per scan and flushed at the end.

    Workers call get()/put() concurrently; writes go through a lock.
    flush() writes only what changed during this scan (upserts and
    prunes) in a single transaction.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._entries: Dict[str, CacheEntry] = {}
        self._dirty: set[str] = set()
        self._removed: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    # --- load ---
    def load(self) -> "CacheStore":
        with self._lock:
            self._entries = {}
            self._dirty.clear()
            self._removed.clear()

        if not os.path.isfile(self.db_path):
            return self

        try:
            db = open_cache_database(self.db_path)
            try:
                rows = db.execute("SELECT path, mod_time, data FROM song_cache").fetchall()
            finally:
                db.close()
        except sqlite3.DatabaseError as e:
            logger.warning("Songs cache at %s is unreadable, starting empty: %s", self.db_path, e)
            self._move_aside()
            return self

        entries: Dict[str, CacheEntry] = {}
        skipped = 0
        for row in rows:
            entry = self._entry_from_row(row["path"], row["mod_time"], row["data"])
            if entry is None:
                skipped += 1
                continue
            entries[entry.path] = entry

        if skipped:
            logger.warning("Ignored %d malformed cache rows in %s", skipped, self.db_path)

        with self._lock:
            self._entries = entries
        logger.debug("Loaded %d cached songs from %s", len(entries), self.db_path)
        return self

    @staticmethod
    def _entry_from_row(path, mod_time, data) -> Optional[CacheEntry]:
        if not isinstance(path, str) or isinstance(mod_time, bool) or not isinstance(mod_time, (int, float)):
            return None
        try:
            record = SongRecord.from_dict(json.loads(data))
        except (TypeError, ValueError):
            return None
        if record is None or record.path != path:
            return None
        return CacheEntry(path=path, mod_time=float(mod_time), data=record)

    def _move_aside(self) -> None:
        target = self.db_path + ".corrupt"
        try:
            os.replace(self.db_path, target)
            logger.warning("Moved corrupt cache to %s", target)
        except OSError as e:
            logger.warning("Could not move corrupt cache %s aside: %s", self.db_path, e)

    # --- access ---
    def get(self, path: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(path)

    def put(self, path: str, mod_time: float, record: SongRecord) -> None:
        entry = CacheEntry(path=path, mod_time=mod_time, data=record)
        with self._lock:
            self._entries[path] = entry
            self._dirty.add(path)
            self._removed.discard(path)

    def snapshot(self) -> Dict[str, CacheEntry]:
        with self._lock:
            return dict(self._entries)

    def prune(self, root: str, keep_paths: Iterable[str], protected: Iterable[str] = ()) -> int:
        """
        Drop entries under `root` that are not in `keep_paths`.
        Entries under any of `protected` (paths the scan could not read)
        are left alone.
        """
        keep = set(keep_paths)
        protected = list(protected)
        with self._lock:
            stale = [
                p for p in self._entries
                if p not in keep and _is_under(p, root) and not any(_is_under(p, q) for q in protected)
            ]
            for p in stale:
                del self._entries[p]
                self._dirty.discard(p)
                self._removed.add(p)
        if stale:
            logger.info("Pruned %d stale cache entries under %s", len(stale), root)
        return len(stale)

    @property
    def pending_writes(self) -> int:
        with self._lock:
            return len(self._dirty) + len(self._removed)

    # --- flush ---
    def flush(self) -> None:
        with self._lock:
            upserts = [
                (e.path, e.mod_time, json.dumps(e.data.to_dict(), ensure_ascii=False))
                for e in (self._entries[p] for p in self._dirty)
            ]
            deletes = [(p,) for p in self._removed]

        if not upserts and not deletes:
            return

        try:
            db = open_cache_database(self.db_path)
            try:
                with db:
                    db.executemany("DELETE FROM song_cache WHERE path = ?", deletes)
                    db.executemany(
                        "INSERT OR REPLACE INTO song_cache (path, mod_time, data) VALUES (?, ?, ?)",
                        upserts,
                    )
            finally:
                db.close()
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"Failed to save songs cache to {self.db_path}: {e}") from e

        with self._lock:
            self._dirty.difference_update(p for p, _, _ in upserts)
            self._removed.difference_update(p for (p,) in deletes)
        logger.debug("Saved %d cache entries (%d removed) to %s", len(upserts), len(deletes), self.db_path)
