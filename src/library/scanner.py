# library/scanner.py
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, List, Optional

from core.config import AUDIO_EXTS
from core.models import AudioCandidate

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, OSError], None]


def _mod_time_ms(st: os.stat_result) -> float:
    return st.st_mtime_ns / 1_000_000


def _normalize_exts(extensions: Iterable[str]) -> frozenset[str]:
    return frozenset(e.lower() if e.startswith(".") else "." + e.lower() for e in extensions)


def _report(path: str, err: OSError, on_error: Optional[ErrorCallback]) -> None:
    logger.warning("Skipping unreadable path %s: %s", path, err)
    if on_error is not None:
        on_error(path, err)


def _candidate(path: str, on_error: Optional[ErrorCallback]) -> Optional[AudioCandidate]:
    try:
        st = os.stat(path)
    except OSError as e:
        _report(path, e, on_error)
        return None
    return AudioCandidate(path=path, mod_time=_mod_time_ms(st))


def iter_audio_files(
    root: str,
    extensions: Iterable[str] = AUDIO_EXTS,
    on_error: Optional[ErrorCallback] = None,
) -> Iterator[AudioCandidate]:
    """Walk `root` lazily; directories and names are visited in sorted order."""
    exts = _normalize_exts(extensions)

    def onerror(err: OSError):
        _report(getattr(err, "filename", None) or root, err, on_error)

    for dirpath, dirnames, filenames in os.walk(root, onerror=onerror):
        dirnames.sort()
        for fn in sorted(filenames):
            if os.path.splitext(fn)[1].lower() in exts:
                cand = _candidate(os.path.join(dirpath, fn), on_error)
                if cand is not None:
                    yield cand


def scan_audio_files(
    root: str,
    extensions: Iterable[str] = AUDIO_EXTS,
    workers: int = 4,
    on_error: Optional[ErrorCallback] = None,
) -> List[AudioCandidate]:
    """
    Collect every audio file under `root`.

    Files directly in `root` come first, then each top-level subdirectory
    in name order. The subdirectories are walked on a thread pool; the
    result order does not depend on which walk finishes first.
    """
    root = os.path.abspath(root)
    if not os.path.isdir(root):
        logger.warning("Library root is not a directory: %s", root)
        return []

    exts = _normalize_exts(extensions)

    try:
        with os.scandir(root) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        _report(root, e, on_error)
        return []

    found: List[AudioCandidate] = []
    subdirs: List[str] = []
    for entry in entries:
        try:
            if entry.is_dir():
                subdirs.append(entry.path)
            elif entry.is_file() and os.path.splitext(entry.name)[1].lower() in exts:
                cand = _candidate(entry.path, on_error)
                if cand is not None:
                    found.append(cand)
        except OSError as e:
            _report(entry.path, e, on_error)

    if not subdirs:
        return found

    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        branches = executor.map(lambda d: list(iter_audio_files(d, exts, on_error)), subdirs)
        for branch in branches:
            found.extend(branch)

    return found
