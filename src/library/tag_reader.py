# library/tag_reader.py
from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Protocol, Tuple

from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import Picture
from mutagen.id3 import ID3
from mutagen.mp4 import MP4Cover, MP4Tags

from core.errors import TagReadError
from core.models import TagInfo
from lyrics.timeline import format_timestamp

logger = logging.getLogger(__name__)

# Vorbis comment keys, synced first
VORBIS_LYRICS_KEYS = ("LYRICS", "UNSYNCEDLYRICS")
VORBIS_PICTURE_KEY = "metadata_block_picture"

MP4_LYRICS_KEY = "\xa9lyr"
MP4_COVER_KEY = "covr"

ID3_NATIVE_VERSIONS = ((2, 3), (2, 4))

SYLT_FORMAT_MS = 2


class TagReader(Protocol):
    def extract(self, path: str) -> TagInfo: ...


def _first(tags, key: str) -> str | None:
    v = tags.get(key)
    if not v:
        return None
    if isinstance(v, list):
        return (str(v[0]).strip() if v else None) or None
    s = str(v).strip()
    return s or None


def _id3_text(tags: ID3, frame_id: str) -> str | None:
    frame = tags.get(frame_id)
    if frame is None or not getattr(frame, "text", None):
        return None
    s = str(frame.text[0]).strip()
    return s or None


def _sylt_to_text(frame) -> str:
    entries = getattr(frame, "text", None) or []
    if getattr(frame, "format", None) == SYLT_FORMAT_MS:
        return "\n".join(f"[{format_timestamp(int(t) / 1000)}]{text}" for text, t in entries)
    return "\n".join(text for text, _ in entries)


def _id3_native_frames(tags: ID3) -> dict[str, tuple[str, ...]]:
    version = tuple(getattr(tags, "version", ())[:2])
    if version not in ID3_NATIVE_VERSIONS:
        return {}

    frames: dict[str, tuple[str, ...]] = {}
    uslt = tuple(f.text for f in tags.getall("USLT") if getattr(f, "text", None))
    if uslt:
        frames["USLT"] = uslt
    sylt = tuple(t for t in (_sylt_to_text(f) for f in tags.getall("SYLT")) if t)
    if sylt:
        frames["SYLT"] = sylt
    return frames


def _vorbis_pictures(tags) -> list:
    return list(tags.get(VORBIS_PICTURE_KEY) or [])


class MutagenTagReader:
    """
    Reads the handful of fields the library needs from any format mutagen
    understands. Raises TagReadError when the file can't be parsed.
    """

    def extract(self, path: str) -> TagInfo:
        try:
            audio = MutagenFile(path)
        except (MutagenError, OSError) as e:
            raise TagReadError(path, str(e) or type(e).__name__) from e
        if audio is None:
            raise TagReadError(path)

        duration = None
        info = getattr(audio, "info", None)
        if info is not None and getattr(info, "length", None):
            duration = float(info.length)

        tags = audio.tags
        title = artist = album = None
        pictures = 0
        common_lyrics: tuple[str, ...] = ()
        native: dict[str, tuple[str, ...]] = {}

        if isinstance(tags, ID3):
            title = _id3_text(tags, "TIT2")
            artist = _id3_text(tags, "TPE1")
            album = _id3_text(tags, "TALB")
            pictures = len(tags.getall("APIC"))
            native = _id3_native_frames(tags)
        elif isinstance(tags, MP4Tags):
            title = _first(tags, "\xa9nam")
            artist = _first(tags, "\xa9ART")
            album = _first(tags, "\xa9alb")
            pictures = len(tags.get(MP4_COVER_KEY) or [])
            lyr = _first(tags, MP4_LYRICS_KEY)
            common_lyrics = (lyr,) if lyr else ()
        elif tags is not None:
            # Vorbis comments (FLAC, Ogg): case-insensitive keys
            title = _first(tags, "title")
            artist = _first(tags, "artist")
            album = _first(tags, "album")
            pictures = len(_vorbis_pictures(tags))
            common_lyrics = tuple(
                s for s in (_first(tags, k) for k in VORBIS_LYRICS_KEYS) if s
            )

        pictures += len(getattr(audio, "pictures", None) or [])

        return TagInfo(
            title=title,
            artist=artist,
            album=album,
            duration=duration,
            picture_count=pictures,
            common_lyrics=common_lyrics,
            native_frames=native,
        )


def read_cover(path: str) -> Optional[Tuple[str, bytes]]:
    """
    First embedded image as (mime_type, data), or None.
    Only called on demand for songs flagged has_cover.
    """
    try:
        audio = MutagenFile(path)
    except (MutagenError, OSError) as e:
        logger.warning("Failed to get cover for %s: %s", path, e)
        return None
    if audio is None:
        return None

    tags = audio.tags
    if isinstance(tags, ID3):
        apic = tags.getall("APIC")
        if apic:
            return apic[0].mime or "image/jpeg", bytes(apic[0].data)
    elif isinstance(tags, MP4Tags):
        covers = tags.get(MP4_COVER_KEY) or []
        if covers:
            cover = covers[0]
            mime = "image/png" if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG else "image/jpeg"
            return mime, bytes(cover)
    elif tags is not None:
        for raw in _vorbis_pictures(tags):
            try:
                pic = Picture(base64.b64decode(raw))
            except (binascii.Error, ValueError, MutagenError) as e:
                logger.warning("Bad embedded picture in %s: %s", path, e)
                continue
            return pic.mime or "image/jpeg", bytes(pic.data)

    pictures = getattr(audio, "pictures", None) or []
    if pictures:
        return pictures[0].mime or "image/jpeg", bytes(pictures[0].data)
    return None
