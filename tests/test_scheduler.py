"""Tests for the extraction scheduler and the index pipeline"""

import os
import shutil
import threading
import time

import pytest

from core.config import ScanConfig
from core.errors import CacheError
from core.models import AudioCandidate, TagInfo
from db.cache_store import CacheStore
from helpers import FakeTagReader, set_mtime_ms, write_file
import library.scheduler as scheduler_module
from library.resolver import MetadataResolver
from library.scanner import scan_audio_files
from library.scheduler import ExtractionScheduler, index_library, progress_percent


def candidates(n, prefix="/music"):
    return [AudioCandidate(path=f"{prefix}/{i:04d}.mp3", mod_time=float(i)) for i in range(n)]


def make_scheduler(cache_path, reader=None, concurrency=4, chunk_size=10):
    store = CacheStore(cache_path).load()
    resolver = MetadataResolver(store, reader or FakeTagReader())
    return ExtractionScheduler(store, resolver, concurrency=concurrency, chunk_size=chunk_size), store


class SlowReader(FakeTagReader):
    """Tracks how many extractions run at the same time."""

    def __init__(self, delay=0.01):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.peak = 0

    def extract(self, path):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return super().extract(path)
        finally:
            with self._lock:
                self.active -= 1


class TestProgressPercent:

    @pytest.mark.parametrize("processed, total, expected", [
        (0, 10, 0),
        (1, 3, 33),
        (2, 3, 66),
        (3, 3, 100),
        (5, None, 0),
        (5, 0, 0),
    ])
    def test_floor(self, processed, total, expected):
        assert progress_percent(processed, total) == expected


class TestChunking:

    @pytest.mark.parametrize("n", [0, 1, 9, 10, 11, 25, 30])
    def test_every_candidate_exactly_once(self, cache_path, n):
        scheduler, _ = make_scheduler(cache_path)
        chunks = []
        summary = scheduler.run(candidates(n), chunks.append)

        ids = [s.id for c in chunks for s in c.songs]
        assert len(ids) == n
        assert len(set(ids)) == n
        assert summary.total == n
        assert chunks[-1].is_complete
        assert chunks[-1].progress == 100
        assert all(not c.is_complete for c in chunks[:-1])

    def test_chunk_sizes(self, cache_path):
        scheduler, _ = make_scheduler(cache_path, chunk_size=10)
        chunks = []
        scheduler.run(candidates(25), chunks.append)
        assert [len(c.songs) for c in chunks] == [10, 10, 5]
        assert [c.progress for c in chunks] == [40, 80, 100]

    def test_exact_multiple_has_no_trailing_empty_chunk(self, cache_path):
        scheduler, _ = make_scheduler(cache_path, chunk_size=10)
        chunks = []
        scheduler.run(candidates(20), chunks.append)
        assert [len(c.songs) for c in chunks] == [10, 10]
        assert chunks[-1].is_complete

    def test_empty_input_still_completes(self, cache_path):
        scheduler, _ = make_scheduler(cache_path)
        chunks = []
        scheduler.run([], chunks.append)
        assert len(chunks) == 1
        assert chunks[0].songs == ()
        assert chunks[0].is_complete and chunks[0].progress == 100

    def test_streaming_input_reports_zero_until_done(self, cache_path):
        scheduler, _ = make_scheduler(cache_path, chunk_size=5)
        chunks = []
        summary = scheduler.run((c for c in candidates(12)), chunks.append)
        assert [c.progress for c in chunks] == [0, 0, 100]
        assert summary.total == 12

    def test_duplicate_candidates_are_resolved_once(self, cache_path):
        scheduler, _ = make_scheduler(cache_path)
        chunks = []
        dupes = candidates(3) + candidates(3)
        scheduler.run(iter(dupes), chunks.append)
        assert sorted(s.id for c in chunks for s in c.songs) == [c.path for c in candidates(3)]

    def test_consumer_errors_do_not_stop_the_scan(self, cache_path):
        scheduler, _ = make_scheduler(cache_path, chunk_size=2)
        seen = []

        def consumer(chunk):
            seen.append(chunk)
            if len(seen) == 1:
                raise RuntimeError("ui went away")

        scheduler.run(candidates(5), consumer)
        assert seen[-1].is_complete


class TestConcurrency:

    def test_bounded_in_flight(self, cache_path):
        reader = SlowReader()
        scheduler, _ = make_scheduler(cache_path, reader, concurrency=3)
        scheduler.run(candidates(20), lambda c: None)
        assert 1 <= reader.peak <= 3
        assert len(reader.calls) == 20

    def test_cancel_stops_delivery(self, cache_path):
        reader = SlowReader(delay=0.02)
        scheduler, store = make_scheduler(cache_path, reader, concurrency=2, chunk_size=1)
        cancel = threading.Event()
        chunks = []

        def consumer(chunk):
            chunks.append(chunk)
            if len(chunks) == 2:
                cancel.set()

        summary = scheduler.run(candidates(50), consumer, cancel_event=cancel, prune_root="/music")
        assert summary.cancelled
        assert len(chunks) == 2
        assert not any(c.is_complete for c in chunks)
        assert summary.total < 50
        assert summary.pruned == 0
        # work that did finish still warmed the cache
        assert len(CacheStore(cache_path).load()) == summary.total


class TestPersistence:

    def test_rescan_uses_cache(self, cache_path):
        reader = FakeTagReader(default=TagInfo(title="T"))
        scheduler, _ = make_scheduler(cache_path, reader)
        first = []
        scheduler.run(candidates(12), first.append)
        assert len(reader.calls) == 12

        reader2 = FakeTagReader(default=TagInfo(title="changed"))
        scheduler2, _ = make_scheduler(cache_path, reader2)
        second = []
        scheduler2.run(candidates(12), second.append)

        assert reader2.calls == []
        songs1 = sorted((s for c in first for s in c.songs), key=lambda s: s.id)
        songs2 = sorted((s for c in second for s in c.songs), key=lambda s: s.id)
        assert songs1 == songs2

    def test_flush_failure_is_not_fatal(self, cache_path, monkeypatch):
        scheduler, store = make_scheduler(cache_path)

        def fail():
            raise CacheError("disk full")

        monkeypatch.setattr(store, "flush", fail)
        chunks = []
        summary = scheduler.run(candidates(3), chunks.append)
        assert summary.total == 3
        assert chunks[-1].is_complete


class TestIndexLibrary:

    def _config(self, cache_path, **kw):
        return ScanConfig(concurrency=4, chunk_size=2, cache_path=cache_path, **kw)

    def test_full_pipeline(self, music_tree, cache_path):
        reader = FakeTagReader({"one.mp3": TagInfo(title="One")})
        chunks = []
        store = CacheStore(cache_path)
        summary = index_library(str(music_tree), chunks.append, self._config(cache_path), store, reader)

        songs = {s.title: s for c in chunks for s in c.songs}
        assert summary.total == 5
        assert set(songs) == {"intro.mp3", "One", "two.FLAC", "three.m4a", "four.wav"}
        assert songs["One"].lyrics == "[00:01.00]Hello"
        assert chunks[-1].is_complete

    def test_touching_a_file_triggers_reextraction(self, music_tree, cache_path):
        config = self._config(cache_path)
        target = music_tree / "A" / "one.mp3"
        set_mtime_ms(target, 1_600_000_000_000)

        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())

        reader = FakeTagReader()
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), reader)
        assert reader.calls == []

        set_mtime_ms(target, 1_600_000_000_001)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), reader)
        assert reader.calls == [str(target)]

    def test_removed_files_are_pruned(self, music_tree, cache_path):
        config = self._config(cache_path)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())

        (music_tree / "intro.mp3").unlink()
        summary = index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())

        assert summary.pruned == 1
        assert str(music_tree / "intro.mp3") not in CacheStore(cache_path).load()

    def test_pruning_can_be_disabled(self, music_tree, cache_path):
        config = self._config(cache_path, prune_missing=False)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())
        (music_tree / "intro.mp3").unlink()
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())
        assert str(music_tree / "intro.mp3") in CacheStore(cache_path).load()

    def test_new_file_is_picked_up(self, music_tree, cache_path):
        config = self._config(cache_path)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())
        write_file(music_tree / "C" / "new.mp3")

        reader = FakeTagReader()
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), reader)
        assert reader.calls == [str(music_tree / "C" / "new.mp3")]

    def test_missing_root_keeps_the_cache(self, music_tree, cache_path, tmp_path):
        config = self._config(cache_path)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())
        assert len(CacheStore(cache_path).load()) == 5

        # drive unmounted / folder renamed
        shutil.move(str(music_tree), str(tmp_path / "elsewhere"))
        chunks = []
        summary = index_library(str(music_tree), chunks.append, config, CacheStore(cache_path), FakeTagReader())

        assert summary.total == 0
        assert summary.pruned == 0
        assert chunks[-1].is_complete
        assert len(CacheStore(cache_path).load()) == 5

    def test_unreadable_subtree_keeps_its_entries(self, music_tree, cache_path, monkeypatch):
        config = self._config(cache_path)
        index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())

        unreadable = str(music_tree / "B")

        def scan_with_failure(root, extensions, workers, on_error):
            found = scan_audio_files(root, extensions=extensions, workers=workers, on_error=on_error)
            on_error(unreadable, PermissionError(13, "Permission denied", unreadable))
            return [c for c in found if not c.path.startswith(unreadable + os.sep)]

        monkeypatch.setattr(scheduler_module, "scan_audio_files", scan_with_failure)
        (music_tree / "intro.mp3").unlink()
        summary = index_library(str(music_tree), lambda c: None, config, CacheStore(cache_path), FakeTagReader())

        cached = CacheStore(cache_path).load()
        assert summary.pruned == 1
        assert str(music_tree / "intro.mp3") not in cached
        assert str(music_tree / "B" / "four.wav") in cached
        assert str(music_tree / "B" / "deep" / "three.m4a") in cached
