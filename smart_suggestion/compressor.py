"""
Segment Compressor - Background gzip of sealed log segments
"""

import gzip
import logging
import os
import queue
import shutil
import threading
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

COMPRESSED_SUFFIX = ".gz"

_STOP = object()


def compress_segment(path: Union[str, Path]) -> Optional[Path]:
    """
    Replace a sealed segment with a gzip artifact of the same content.

    The artifact is written beside the segment under a temporary name and
    moved into place before the original is removed, so a reader always
    finds one complete copy. Returns the compressed path, or None when the
    segment disappeared (retention got to it first).
    """
    source = Path(path)
    target = source.with_name(source.name + COMPRESSED_SUFFIX)
    partial = source.with_name(source.name + COMPRESSED_SUFFIX + ".tmp")

    try:
        with open(source, "rb") as raw, gzip.open(partial, "wb") as packed:
            shutil.copyfileobj(raw, packed)
    except FileNotFoundError:
        logger.debug("Segment %s vanished before compression", source)
        _discard(partial)
        return None
    except OSError:
        _discard(partial)
        raise

    try:
        stat = source.stat()
    except FileNotFoundError:
        # Deleted by retention while we were reading it
        _discard(partial)
        return None

    # The artifact keeps the segment's mtime, which retention ages it by
    try:
        os.utime(partial, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        os.replace(partial, target)
    except OSError:
        _discard(partial)
        raise
    _discard(source)
    return target


def _discard(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class SegmentCompressor:
    """
    Compresses sealed segments on a daemon worker thread.

    Writers hand off a path with submit() and return immediately; the
    rotator only ever waits on the worker when a session is shutting down.
    """

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._compressed_count = 0
        self._failed_count = 0

    def start(self):
        """Start the worker thread (no-op when already running)."""
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run_loop, name="segment-compressor", daemon=True,
            )
            self._thread.start()

    def submit(self, path: Union[str, Path]):
        """Queue a sealed segment for compression, starting the worker lazily."""
        self.start()
        self._queue.put(Path(path))

    def wait_idle(self):
        """Block until every submitted segment has been processed."""
        self._queue.join()

    def stop(self, timeout: Optional[float] = None):
        """Finish pending work, then stop the worker."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout=timeout)

    def _run_loop(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._compress(item)
            finally:
                self._queue.task_done()

    def _compress(self, path: Path):
        try:
            target = compress_segment(path)
        except OSError as e:
            self._failed_count += 1
            logger.warning("Failed to compress %s: %s", path, e)
            return
        if target is not None:
            self._compressed_count += 1
            logger.debug("Compressed %s -> %s", path, target.name)

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return bool(thread and thread.is_alive())

    @property
    def compressed_count(self) -> int:
        return self._compressed_count

    @property
    def failed_count(self) -> int:
        return self._failed_count
