"""Shared test helpers"""

import os
import threading
from pathlib import Path

from core.models import TagInfo


class FakeTagReader:
    """Stands in for mutagen; returns canned TagInfo by file name and records calls."""

    def __init__(self, tags=None, default=None):
        self.tags = dict(tags or {})
        self.default = default if default is not None else TagInfo()
        self.calls = []
        self._lock = threading.Lock()

    def extract(self, path):
        with self._lock:
            self.calls.append(path)
        result = self.tags.get(os.path.basename(path), self.default)
        if isinstance(result, Exception):
            raise result
        return result


def write_file(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def set_mtime_ms(path: Path, ms: int) -> None:
    ns = ms * 1_000_000
    os.utime(path, ns=(ns, ns))
