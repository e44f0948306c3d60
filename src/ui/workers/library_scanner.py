# ui/workers/library_scanner.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from PySide6.QtCore import QObject, QThread, Signal

from core.config import ScanConfig, resolve_cache_path
from core.models import ScanChunk
from db.cache_store import CacheStore
from library.scheduler import index_library
from library.tag_reader import TagReader

logger = logging.getLogger(__name__)


class LibraryScanner(QThread):
    chunk_signal = Signal(int, object)          # generation, ScanChunk
    finished_signal = Signal(int, bool, str)    # generation, ok, message

    def __init__(
        self,
        generation: int,
        root: str,
        config: ScanConfig,
        tag_reader: Optional[TagReader] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.generation = generation
        self.root = root
        self.config = config
        self.tag_reader = tag_reader
        self.cancel_event = threading.Event()
        self.summary = None

    def supersede(self) -> None:
        self.cancel_event.set()

    def run(self):
        try:
            store = CacheStore(resolve_cache_path(self.config))
            self.summary = index_library(
                self.root,
                self._emit_chunk,
                self.config,
                store,
                tag_reader=self.tag_reader,
                cancel_event=self.cancel_event,
            )
            if self.summary.cancelled:
                self.finished_signal.emit(self.generation, False, "Scan superseded.")
            else:
                self.finished_signal.emit(
                    self.generation, True, f"Library scanning complete! ({self.summary.total} songs)"
                )
        except Exception as e:
            logger.exception("Scan of %s failed", self.root)
            self.finished_signal.emit(self.generation, False, f"Scan failed: {e}")

    def _emit_chunk(self, chunk: ScanChunk) -> None:
        self.chunk_signal.emit(self.generation, chunk)


class ScanCoordinator(QObject):
    """
    Owns the current scan. A new request supersedes the previous one; chunks
    that arrive from a superseded scan are dropped here, so listeners only
    ever see the current generation.
    """
    chunk_ready = Signal(object)        # ScanChunk
    scan_finished = Signal(bool, str)   # ok, message

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        tag_reader: Optional[TagReader] = None,
        scanner_factory: Optional[Callable[..., LibraryScanner]] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config or ScanConfig()
        self.tag_reader = tag_reader
        self._scanner_factory = scanner_factory or LibraryScanner
        self._generation = 0
        self._current: Optional[LibraryScanner] = None
        self._retired: list[LibraryScanner] = []

    @property
    def generation(self) -> int:
        return self._generation

    def is_scanning(self) -> bool:
        return self._current is not None and self._current.isRunning()

    def request_scan(self, root: str) -> int:
        if self._current is not None:
            self._current.supersede()
            self._retired.append(self._current)

        self._generation += 1
        scanner = self._scanner_factory(self._generation, root, self.config, self.tag_reader)
        scanner.chunk_signal.connect(self._on_chunk)
        scanner.finished_signal.connect(self._on_finished)
        scanner.finished.connect(self._on_thread_finished)
        self._current = scanner
        scanner.start()
        return self._generation

    def cancel(self) -> None:
        if self._current is not None:
            self._current.supersede()
            self._retired.append(self._current)
            self._current = None
            # nothing older than this may be delivered
            self._generation += 1

    def wait(self, msecs: int = -1) -> bool:
        ok = True
        for scanner in [*self._retired, *([self._current] if self._current else [])]:
            ok = (scanner.wait() if msecs < 0 else scanner.wait(msecs)) and ok
        return ok

    def _on_chunk(self, generation: int, chunk: ScanChunk) -> None:
        if generation != self._generation:
            return
        self.chunk_ready.emit(chunk)

    def _on_finished(self, generation: int, ok: bool, message: str) -> None:
        if generation != self._generation:
            logger.debug("Dropped result of superseded scan #%d: %s", generation, message)
            return
        # joined by wait() until the thread itself has finished
        if self._current is not None:
            self._retired.append(self._current)
        self._current = None
        self.scan_finished.emit(ok, message)

    def _on_thread_finished(self) -> None:
        scanner = self.sender()
        if scanner in self._retired:
            self._retired.remove(scanner)
