from __future__ import annotations

from typing import Dict, Iterable, List

from core.models import ScanChunk, SongRecord


class SongLibrary:
    """
    What a listener accumulates from ScanChunks. Songs are keyed by id, so
    chunks from overlapping scans don't produce duplicates; a later record
    for the same id replaces the earlier one.
    """

    def __init__(self, songs: Iterable[SongRecord] = ()):
        self._songs: Dict[str, SongRecord] = {}
        self.progress: int = 0
        self.complete: bool = False
        for song in songs:
            self._songs[song.id] = song

    def __len__(self) -> int:
        return len(self._songs)

    def __contains__(self, song_id: object) -> bool:
        return song_id in self._songs

    def clear(self) -> None:
        self._songs.clear()
        self.progress = 0
        self.complete = False

    def add_chunk(self, chunk: ScanChunk) -> int:
        """Merge a chunk; returns how many songs were new."""
        added = 0
        for song in chunk.songs:
            if song.id not in self._songs:
                added += 1
            self._songs[song.id] = song
        self.progress = chunk.progress
        self.complete = chunk.is_complete
        return added

    def get(self, song_id: str) -> SongRecord | None:
        return self._songs.get(song_id)

    def songs(self) -> List[SongRecord]:
        return list(self._songs.values())
