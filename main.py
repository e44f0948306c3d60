import logging
import os
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from core.config import ScanConfig, resolve_cache_path
from core.state import SongLibrary
from ui.workers.library_scanner import ScanCoordinator

logger = logging.getLogger("lyridx")


def setup_logging() -> None:
    level = os.getenv("LYRIDX_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    setup_logging()

    if len(sys.argv) < 2:
        print("usage: main.py <music folder>", file=sys.stderr)
        return 2

    app = QCoreApplication(sys.argv)
    app.setApplicationName("lyridx")

    config = ScanConfig.from_env()
    logger.info("Songs cache: %s", resolve_cache_path(config))

    library = SongLibrary()
    coordinator = ScanCoordinator(config)
    exit_code = {"value": 0}

    def on_chunk(chunk):
        added = library.add_chunk(chunk)
        logger.info("%3d%%  +%d songs (%d total)", chunk.progress, added, len(library))

    def on_finished(ok, message):
        if ok:
            logger.info(message)
        else:
            logger.error(message)
        exit_code["value"] = 0 if ok else 1
        app.quit()

    coordinator.chunk_ready.connect(on_chunk)
    coordinator.scan_finished.connect(on_finished)
    coordinator.request_scan(sys.argv[1])

    app.exec()
    coordinator.wait()
    return exit_code["value"]


if __name__ == "__main__":
    raise SystemExit(main())
