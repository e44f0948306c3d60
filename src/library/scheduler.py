# library/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional

from core.config import ScanConfig
from core.errors import CacheError
from core.models import AudioCandidate, ScanChunk, ScanSummary, SongRecord
from db.cache_store import CacheStore
from library.resolver import MetadataResolver, degraded_record
from library.scanner import scan_audio_files
from library.tag_reader import TagReader

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[ScanChunk], None]


def progress_percent(processed: int, total: Optional[int]) -> int:
    if not total:
        return 0
    return min(100, (processed * 100) // total)


class ExtractionScheduler:
    """
    Runs MetadataResolver over the candidates with at most `concurrency`
    resolutions in flight, handing finished records to `on_chunk` in
    batches of `chunk_size`. The last chunk always has is_complete=True
    and progress=100.
    """

    def __init__(
        self,
        store: CacheStore,
        resolver: MetadataResolver,
        concurrency: int = 15,
        chunk_size: int = 50,
    ):
        if concurrency < 1 or chunk_size < 1:
            raise ValueError("concurrency and chunk_size must be >= 1")
        self.store = store
        self.resolver = resolver
        self.concurrency = concurrency
        self.chunk_size = chunk_size

    def run(
        self,
        candidates: Iterable[AudioCandidate],
        on_chunk: ChunkCallback,
        total: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        prune_root: Optional[str] = None,
        prune_missing: bool = True,
        prune_protected: Iterable[str] = (),
    ) -> ScanSummary:
        start_time = time.time()
        if total is None and hasattr(candidates, "__len__"):
            total = len(candidates)  # type: ignore[arg-type]

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        def deliver(songs: List[SongRecord], is_complete: bool, progress: int) -> None:
            if cancelled():
                return
            try:
                on_chunk(ScanChunk(songs=tuple(songs), is_complete=is_complete, progress=progress))
            except Exception:
                logger.exception("Chunk consumer failed")

        processed = 0
        seen: set[str] = set()
        buffer: List[SongRecord] = []
        source = iter(candidates)
        exhausted = False
        pending: set[Future] = set()
        submitted: dict[Future, AudioCandidate] = {}

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            while True:
                while not exhausted and not cancelled() and len(pending) < self.concurrency:
                    try:
                        cand = next(source)
                    except StopIteration:
                        exhausted = True
                        break
                    if cand.path in seen:
                        continue
                    seen.add(cand.path)
                    fut = executor.submit(self.resolver.resolve, cand)
                    submitted[fut] = cand
                    pending.add(fut)

                if not pending:
                    break

                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    cand = submitted.pop(fut)
                    try:
                        record = fut.result()
                    except Exception:
                        logger.exception("Resolver crashed on %s", cand.path)
                        record = degraded_record(cand.path)

                    buffer.append(record)
                    processed += 1

                    # the last expected record rides in the final chunk
                    last_known = total is not None and processed >= total
                    if len(buffer) >= self.chunk_size and not last_known:
                        deliver(buffer, False, progress_percent(processed, total))
                        buffer = []

        was_cancelled = cancelled()
        if not was_cancelled:
            deliver(buffer, True, 100)

        pruned = 0
        if prune_root is not None and prune_missing and not was_cancelled:
            pruned = self.store.prune(prune_root, seen, prune_protected)

        try:
            self.store.flush()
        except CacheError as e:
            logger.warning("%s", e)

        logger.info(
            "==> Scanning %d files took: %dms%s",
            processed,
            int((time.time() - start_time) * 1000),
            " (superseded)" if was_cancelled else "",
        )
        return ScanSummary(total=processed, cancelled=was_cancelled, pruned=pruned)


def index_library(
    root: str,
    on_chunk: ChunkCallback,
    config: ScanConfig,
    store: CacheStore,
    tag_reader: Optional[TagReader] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ScanSummary:
    """Load cache -> scan -> extract -> prune/flush."""
    store.load()
    unreadable: List[str] = []
    candidates = scan_audio_files(
        root,
        extensions=config.audio_extensions,
        workers=config.traversal_workers,
        on_error=lambda path, err: unreadable.append(path),
    )
    logger.info("Files count: %d", len(candidates))

    # an unmounted or renamed root looks like an empty library
    prune_root: Optional[str] = root if os.path.isdir(root) else None
    if unreadable:
        logger.info("Keeping cached entries under %d unreadable paths", len(unreadable))

    resolver = MetadataResolver(store, tag_reader, sidecar_extension=config.sidecar_extension)
    scheduler = ExtractionScheduler(
        store,
        resolver,
        concurrency=config.concurrency,
        chunk_size=config.chunk_size,
    )
    return scheduler.run(
        candidates,
        on_chunk,
        total=len(candidates),
        cancel_event=cancel_event,
        prune_root=prune_root,
        prune_missing=config.prune_missing,
        prune_protected=unreadable,
    )
