"""
Log Rotator - Bounded, rotating, compressed storage for captured session bytes
"""

import logging
import os
import re
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Union

from .compressor import COMPRESSED_SUFFIX, SegmentCompressor

logger = logging.getLogger(__name__)

SEGMENT_PREFIX = "segment-"
SEGMENT_SUFFIX = ".log"
SEGMENT_RE = re.compile(r"^segment-(\d{6,})\.log(\.gz)?$")

DEFAULT_MAX_SEGMENT_SIZE = 1024 * 1024
DEFAULT_MAX_SEGMENTS = 5
DEFAULT_MAX_AGE = 7 * 24 * 3600


@dataclass(frozen=True)
class RotationConfig:
    """
    Immutable rotation parameters.

    max_segments bounds the segments kept per session, the open one
    included, and max_age (seconds) bounds the age of sealed ones; 0
    disables either limit.
    """
    max_segment_size: int = DEFAULT_MAX_SEGMENT_SIZE
    max_segments: int = DEFAULT_MAX_SEGMENTS
    max_age: float = DEFAULT_MAX_AGE
    compress: bool = True

    def __post_init__(self):
        if self.max_segment_size <= 0:
            raise ValueError("max_segment_size must be positive")
        if self.max_segments < 0:
            raise ValueError("max_segments must not be negative")
        if self.max_age < 0:
            raise ValueError("max_age must not be negative")


@dataclass
class LogSegment:
    """One file of a session log."""
    path: Path
    sequence: int
    size_bytes: int = 0
    created_at: float = 0.0
    sealed: bool = False
    compressed: bool = False


def segment_name(sequence: int) -> str:
    return f"{SEGMENT_PREFIX}{sequence:06d}{SEGMENT_SUFFIX}"


def scan_segments(directory: Union[str, Path]) -> List[LogSegment]:
    """
    List the segments stored in a session directory, oldest first.

    When compression is in flight both the plain and the .gz file exist for
    one sequence; the plain file wins because it is the complete one.
    Segments found on disk carry their mtime as created_at.
    """
    directory = Path(directory)
    found: Dict[int, LogSegment] = {}
    try:
        entries = list(os.scandir(directory))
    except (FileNotFoundError, NotADirectoryError):
        return []

    for entry in entries:
        match = SEGMENT_RE.match(entry.name)
        if not match:
            continue
        sequence = int(match.group(1))
        compressed = match.group(2) is not None
        if sequence in found and compressed:
            continue
        try:
            stat = entry.stat()
        except FileNotFoundError:
            continue
        found[sequence] = LogSegment(
            path=Path(entry.path),
            sequence=sequence,
            size_bytes=stat.st_size,
            created_at=stat.st_mtime,
            sealed=compressed,
            compressed=compressed,
        )
    return [found[seq] for seq in sorted(found)]


class LogRotator:
    """
    Persists a continuous byte stream across bounded segment files.

    A single internal lock serializes every append against sealing, so a
    caller shutting the rotator down always waits for the in-flight write.
    Filesystem errors never propagate out of write(): the affected segment
    degrades and its bytes are dropped.

    Usage:
        rotator = LogRotator("/tmp/smart-suggestion/sessions/abc", RotationConfig())
        rotator.write(b"$ ls\\r\\n")
        rotator.close()
    """

    def __init__(
        self,
        directory: Union[str, Path],
        config: Optional[RotationConfig] = None,
        compressor: Optional[SegmentCompressor] = None,
    ):
        self.directory = Path(directory)
        self.config = config or RotationConfig()

        self._owns_compressor = compressor is None
        if self.config.compress:
            self._compressor = compressor or SegmentCompressor()
        else:
            self._compressor = None

        self._lock = threading.Lock()
        self._handle = None
        self._current: Optional[LogSegment] = None
        self._degraded = False
        self._closed = False
        self._dropped_bytes = 0

        try:
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Cannot create log directory %s: %s", self.directory, e)

        existing = scan_segments(self.directory)
        first = existing[-1].sequence + 1 if existing else 1
        self._open_segment(first)

    @property
    def current_segment(self) -> LogSegment:
        """Snapshot of the segment currently receiving writes."""
        with self._lock:
            return replace(self._current)

    @property
    def dropped_bytes(self) -> int:
        return self._dropped_bytes

    @property
    def closed(self) -> bool:
        return self._closed

    def segments(self) -> List[LogSegment]:
        """All segments of this session, oldest first, current one last."""
        with self._lock:
            current = self._current.sequence
            listed = scan_segments(self.directory)
        for segment in listed:
            segment.sealed = segment.sequence != current
        return listed

    def write(self, data: bytes):
        """
        Append data to the session log.

        If the data would overflow the current segment, that segment is
        sealed first. Data larger than a whole segment is spread over as
        many segments as it needs; a segment that ends up exactly full is
        sealed right away.
        """
        if not data:
            return

        with self._lock:
            if self._closed:
                logger.debug("Dropping %d bytes written after close", len(data))
                return

            limit = self.config.max_segment_size
            view = memoryview(data)

            if self._current.size_bytes and self._current.size_bytes + len(view) > limit:
                self._rotate()

            while len(view):
                room = limit - self._current.size_bytes
                chunk = view[:room]
                self._append(chunk)
                view = view[len(chunk):]
                if self._current.size_bytes >= limit:
                    self._rotate()

    def sweep(self):
        """Apply the retention limits to sealed segments."""
        with self._lock:
            current = self._current.sequence if not self._closed else None
            self._sweep(current)

    def close(self):
        """
        Seal the final segment and finish outstanding compression.

        An empty final segment is removed rather than sealed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            final = self._current
            self._close_handle()
            self._finish(final)

        if self._compressor is not None:
            if self._owns_compressor:
                self._compressor.stop()
            else:
                self._compressor.wait_idle()

        with self._lock:
            self._sweep(None)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # Everything below runs with self._lock held.

    def _append(self, chunk: memoryview):
        size = len(chunk)
        self._current.size_bytes += size

        if self._degraded or self._handle is None:
            self._dropped_bytes += size
            return

        try:
            self._handle.write(chunk)
            self._handle.flush()
        except OSError as e:
            self._degraded = True
            self._dropped_bytes += size
            logger.warning(
                "Write to %s failed, dropping further output for this segment: %s",
                self._current.path, e,
            )

    def _rotate(self):
        sealed = self._current
        self._close_handle()
        self._finish(sealed)
        self._open_segment(sealed.sequence + 1)
        self._sweep(self._current.sequence)

    def _finish(self, segment: LogSegment):
        # A degraded segment may hold nothing at all
        self._remove_if_empty(segment.path)
        if segment.path.exists():
            self._seal(segment)

    def _seal(self, segment: LogSegment):
        segment.sealed = True
        logger.debug("Sealed %s (%d bytes)", segment.path.name, segment.size_bytes)
        if self._compressor is not None and segment.path.exists():
            self._compressor.submit(segment.path)

    def _open_segment(self, sequence: int):
        path = self.directory / segment_name(sequence)
        self._current = LogSegment(path=path, sequence=sequence, created_at=time.time())
        self._degraded = False
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            self._handle = os.fdopen(fd, "ab")
        except OSError as e:
            self._handle = None
            self._degraded = True
            logger.warning("Cannot open segment %s, output will be dropped: %s", path, e)
            return
        logger.debug("Opened segment %s", path.name)

    def _close_handle(self):
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            logger.warning("Failed to flush %s: %s", self._current.path, e)
        finally:
            try:
                handle.close()
            except OSError as e:
                logger.warning("Failed to close %s: %s", self._current.path, e)

    def _remove_if_empty(self, path: Path):
        try:
            if path.exists() and path.stat().st_size == 0:
                path.unlink()
        except OSError as e:
            logger.warning("Failed to remove empty segment %s: %s", path, e)

    def _sweep(self, current: Optional[int]):
        sealed = [s for s in scan_segments(self.directory) if s.sequence != current]
        if not sealed:
            return

        doomed = set()
        if self.config.max_age:
            cutoff = time.time() - self.config.max_age
            doomed.update(s.sequence for s in sealed if s.created_at < cutoff)

        if self.config.max_segments:
            # An open current segment takes one place in the budget
            budget = self.config.max_segments - (1 if current is not None else 0)
            survivors = [s for s in sealed if s.sequence not in doomed]
            excess = len(survivors) - budget
            if excess > 0:
                doomed.update(s.sequence for s in survivors[:excess])

        for sequence in sorted(doomed):
            self._delete_sequence(sequence)

    def _delete_sequence(self, sequence: int):
        base = self.directory / segment_name(sequence)
        for path in (base, base.with_name(base.name + COMPRESSED_SUFFIX)):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Retention could not delete %s: %s", path, e)
                continue
            logger.debug("Retention deleted %s", path.name)
