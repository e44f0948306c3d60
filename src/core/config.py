# core/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from PySide6.QtCore import QStandardPaths

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "songs_cache.sqlite3"

AUDIO_EXTS = (".mp3", ".m4a", ".flac", ".wav")


@dataclass(frozen=True)
class ScanConfig:
    concurrency: int = 15
    chunk_size: int = 50
    audio_extensions: tuple[str, ...] = AUDIO_EXTS
    sidecar_extension: str = ".lrc"
    prune_missing: bool = True
    traversal_workers: int = 4
    cache_path: Optional[str] = None

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.traversal_workers < 1:
            raise ValueError("traversal_workers must be >= 1")

    @staticmethod
    def from_env(base: Optional["ScanConfig"] = None) -> "ScanConfig":
        """
        Overrides:
          - LYRIDX_CONCURRENCY   (int)
          - LYRIDX_CHUNK_SIZE    (int)
          - LYRIDX_PRUNE_MISSING (1/0, true/false)
          - LYRIDX_CACHE_PATH    (path)
        Bad values are ignored with a warning.
        """
        cfg = base or ScanConfig()
        changes: dict = {}

        for env_key, attr in (("LYRIDX_CONCURRENCY", "concurrency"), ("LYRIDX_CHUNK_SIZE", "chunk_size")):
            raw = os.getenv(env_key)
            if raw is None:
                continue
            try:
                value = int(raw)
                if value < 1:
                    raise ValueError(raw)
                changes[attr] = value
            except ValueError:
                logger.warning("Ignoring %s=%r (expected a positive integer)", env_key, raw)

        raw = os.getenv("LYRIDX_PRUNE_MISSING")
        if raw is not None:
            flag = _parse_bool(raw)
            if flag is None:
                logger.warning("Ignoring LYRIDX_PRUNE_MISSING=%r", raw)
            else:
                changes["prune_missing"] = flag

        raw = os.getenv("LYRIDX_CACHE_PATH")
        if raw:
            changes["cache_path"] = raw

        return replace(cfg, **changes) if changes else cfg


def _parse_bool(raw: str) -> Optional[bool]:
    s = raw.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return None


def get_app_data_dir() -> str:
    base = QStandardPaths.writableLocation(QStandardPaths.AppDataLocation)
    os.makedirs(base, exist_ok=True)
    return base


def default_cache_path() -> str:
    return os.path.join(get_app_data_dir(), CACHE_FILE_NAME)


def resolve_cache_path(config: ScanConfig) -> str:
    return config.cache_path or default_cache_path()
