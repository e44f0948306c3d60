# library/resolver.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional, Sequence

from core.models import UNKNOWN_ALBUM, UNKNOWN_ARTIST, AudioCandidate, SongRecord, TagInfo
from db.cache_store import CacheStore
from library.tag_reader import MutagenTagReader, TagReader

logger = logging.getLogger(__name__)

LyricsSource = Callable[[str, TagInfo], Optional[str]]


def _non_empty(s: Optional[str]) -> Optional[str]:
    if s is None or not s.strip():
        return None
    return s


def lyrics_from_common(path: str, tags: TagInfo) -> Optional[str]:
    return _non_empty(tags.common_lyrics[0]) if tags.common_lyrics else None


def lyrics_from_native_frames(path: str, tags: TagInfo) -> Optional[str]:
    for frame_id in ("USLT", "SYLT"):
        for text in tags.native_frames.get(frame_id, ()):
            if _non_empty(text):
                return text
    return None


def sidecar_source(extension: str = ".lrc") -> LyricsSource:
    def lyrics_from_sidecar(path: str, tags: TagInfo) -> Optional[str]:
        sidecar = Path(path).with_suffix(extension)
        if not sidecar.is_file():
            return None
        try:
            with open(sidecar, "r", encoding="utf-8", errors="replace") as f:
                return _non_empty(f.read())
        except OSError as e:
            logger.warning("Failed to read sidecar lyrics %s: %s", sidecar, e)
            return None

    return lyrics_from_sidecar


def base_name(path: str) -> str:
    return os.path.basename(path)


def degraded_record(path: str) -> SongRecord:
    return SongRecord(
        id=path,
        path=path,
        title=base_name(path),
        artist=UNKNOWN_ARTIST,
        album=UNKNOWN_ALBUM,
        duration=0.0,
        lyrics=None,
        has_cover=False,
    )


class MetadataResolver:
    """
    Turns a discovered file into a SongRecord, reusing the cache when the
    stored mod_time matches exactly. Never raises.
    """

    def __init__(
        self,
        store: CacheStore,
        tag_reader: Optional[TagReader] = None,
        sidecar_extension: str = ".lrc",
        lyrics_sources: Optional[Sequence[LyricsSource]] = None,
    ):
        self.store = store
        self.tag_reader = tag_reader or MutagenTagReader()
        if lyrics_sources is None:
            lyrics_sources = (
                lyrics_from_common,
                lyrics_from_native_frames,
                sidecar_source(sidecar_extension),
            )
        self.lyrics_sources = tuple(lyrics_sources)

    def resolve(self, candidate: AudioCandidate) -> SongRecord:
        path = candidate.path

        cached = self.store.get(path)
        if cached is not None and cached.mod_time == candidate.mod_time:
            return cached.data

        try:
            tags = self.tag_reader.extract(path)
        except Exception as e:
            logger.warning("Failed to read tags from %s: %s", path, e)
            return degraded_record(path)

        record = SongRecord(
            id=path,
            path=path,
            title=tags.title or base_name(path),
            artist=tags.artist or UNKNOWN_ARTIST,
            album=tags.album or UNKNOWN_ALBUM,
            duration=float(tags.duration or 0.0),
            lyrics=self.resolve_lyrics(path, tags),
            has_cover=tags.picture_count > 0,
        )
        self.store.put(path, candidate.mod_time, record)
        return record

    def resolve_lyrics(self, path: str, tags: TagInfo) -> Optional[str]:
        for source in self.lyrics_sources:
            lyrics = source(path, tags)
            if lyrics is not None:
                return lyrics
        return None
