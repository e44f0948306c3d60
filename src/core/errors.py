from __future__ import annotations


class LyridxError(Exception):
    """Base class for errors raised inside the indexing pipeline."""


class TagReadError(LyridxError):
    """The tag reader could not make sense of an audio file."""

    def __init__(self, path: str, reason: str = "unsupported or unreadable file"):
        super().__init__(f"{reason}: {path}")
        self.path = path


class CacheError(LyridxError):
    """The cache store could not be opened or written."""
