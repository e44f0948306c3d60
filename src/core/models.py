# core/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


@dataclass(frozen=True)
class SongRecord:
    id: str             # same as path
    path: str
    title: str
    artist: str
    album: str
    duration: float     # seconds
    lyrics: str | None
    has_cover: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "lyrics": self.lyrics,
            "hasCover": self.has_cover,
        }

    @staticmethod
    def from_dict(data: Any) -> Optional["SongRecord"]:
        """
        Rebuild a record from its stored form.
        Returns None for anything that doesn't look like a record we wrote.
        """
        if not isinstance(data, dict):
            return None

        path = data.get("path")
        title = data.get("title")
        artist = data.get("artist")
        album = data.get("album")
        duration = data.get("duration", 0)
        lyrics = data.get("lyrics")
        has_cover = data.get("hasCover", False)

        if not isinstance(path, str) or not path:
            return None
        if not all(isinstance(v, str) for v in (title, artist, album)):
            return None
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            return None
        if lyrics is not None and not isinstance(lyrics, str):
            return None

        return SongRecord(
            id=path,
            path=path,
            title=title,
            artist=artist,
            album=album,
            duration=float(duration),
            lyrics=lyrics,
            has_cover=bool(has_cover),
        )


@dataclass(frozen=True)
class CacheEntry:
    path: str
    mod_time: float     # ms since epoch, compared exactly
    data: SongRecord


@dataclass(frozen=True)
class AudioCandidate:
    path: str
    mod_time: float


@dataclass(frozen=True)
class ScanChunk:
    songs: tuple[SongRecord, ...]
    is_complete: bool
    progress: int       # 0..100


@dataclass(frozen=True)
class ScanSummary:
    total: int
    cancelled: bool = False
    pruned: int = 0


@dataclass(frozen=True)
class TagInfo:
    """What the tag reader hands back; every field is optional."""
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    duration: float | None = None
    picture_count: int = 0
    common_lyrics: tuple[str, ...] = ()
    native_frames: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class LyricLine:
    time: float         # seconds
    text: str
    translation: str | None = None
