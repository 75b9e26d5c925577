"""
Tests for rotator.py - Log Rotator

Rotation, retention and failure handling are checked against the files
that actually land in a temporary session directory.
"""

import errno
import gzip
import os
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from smart_suggestion.compressor import SegmentCompressor
from smart_suggestion.rotator import LogRotator, RotationConfig, scan_segments, segment_name

MIB = 1024 * 1024


def plain(max_segment_size, **kwargs) -> RotationConfig:
    return RotationConfig(max_segment_size=max_segment_size, compress=False, **kwargs)


def names(directory):
    return sorted(p.name for p in directory.iterdir())


class TestRotationConfig:
    """Tests for RotationConfig validation."""

    def test_defaults(self):
        config = RotationConfig()
        assert config.max_segment_size == MIB
        assert config.max_segments == 5
        assert config.max_age == 7 * 24 * 3600
        assert config.compress is True

    @pytest.mark.parametrize("kwargs", [
        {"max_segment_size": 0},
        {"max_segments": -1},
        {"max_age": -5},
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RotationConfig(**kwargs)


class TestScanSegments:
    """Tests for listing segments on disk."""

    def test_orders_by_sequence(self, tmp_path):
        for seq in (10, 2, 7):
            (tmp_path / segment_name(seq)).write_bytes(b"x")
        (tmp_path / "notes.txt").write_text("ignored")

        assert [s.sequence for s in scan_segments(tmp_path)] == [2, 7, 10]

    def test_plain_file_wins_over_gzip(self, tmp_path):
        (tmp_path / "segment-000001.log").write_bytes(b"abc")
        (tmp_path / "segment-000001.log.gz").write_bytes(b"partial")

        segments = scan_segments(tmp_path)

        assert len(segments) == 1
        assert segments[0].path.name == "segment-000001.log"
        assert not segments[0].compressed

    def test_missing_directory(self, tmp_path):
        assert scan_segments(tmp_path / "nope") == []


class TestRotation:
    """Tests for segment sealing and splitting."""

    def test_three_full_segments(self, tmp_path):
        compressor = SegmentCompressor()
        rotator = LogRotator(tmp_path, RotationConfig(max_segment_size=MIB, max_segments=0), compressor)
        chunks = [bytes([ord("a") + i]) * MIB for i in range(3)]

        rotator.write(b"".join(chunks))
        compressor.wait_idle()
        segments = rotator.segments()

        assert len(segments) == 4
        for segment, chunk in zip(segments[:3], chunks):
            assert segment.sealed
            assert segment.compressed
            assert gzip.decompress(segment.path.read_bytes()) == chunk
        current = segments[3]
        assert not current.sealed
        assert current.size_bytes == 0
        assert rotator.current_segment.sequence == current.sequence

        rotator.close()
        compressor.stop()
        assert names(tmp_path) == [
            "segment-000001.log.gz",
            "segment-000002.log.gz",
            "segment-000003.log.gz",
        ]

    def test_oversize_write_is_split(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(10, max_segments=0))
        rotator.write(b"a" * 25)

        assert [s.size_bytes for s in rotator.segments()] == [10, 10, 5]
        assert rotator.current_segment.sequence == 3

    def test_overflowing_write_seals_first(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(10, max_segments=0))
        rotator.write(b"x" * 6)
        rotator.write(b"y" * 6)
        rotator.close()

        assert (tmp_path / "segment-000001.log").read_bytes() == b"xxxxxx"
        assert (tmp_path / "segment-000002.log").read_bytes() == b"yyyyyy"

    def test_sealed_segments_never_exceed_limit(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(64, max_segments=0))
        for size in (1, 63, 64, 65, 200, 3, 61, 7):
            rotator.write(b"z" * size)
        rotator.close()

        segments = scan_segments(tmp_path)
        assert all(s.size_bytes <= 64 for s in segments)
        assert sum(s.size_bytes for s in segments) == 464

    def test_concurrent_writers(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(64, max_segments=0))

        def writer():
            for _ in range(100):
                rotator.write(b"0123456789")

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        rotator.close()

        segments = scan_segments(tmp_path)
        assert sum(s.size_bytes for s in segments) == 4000
        assert all(s.size_bytes <= 64 for s in segments)

    def test_resumes_after_existing_segments(self, tmp_path):
        (tmp_path / "segment-000007.log.gz").write_bytes(gzip.compress(b"old"))

        rotator = LogRotator(tmp_path, plain(10))

        assert rotator.current_segment.sequence == 8
        rotator.close()

    def test_empty_write_is_ignored(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(10))
        rotator.write(b"")
        assert rotator.current_segment.size_bytes == 0
        rotator.close()


class TestRetention:
    """Tests for the retention sweep."""

    def test_current_segment_counts_toward_limit(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(4, max_segments=2, max_age=0))
        for _ in range(5):
            rotator.write(b"abcd")
        rotator.write(b"ef")

        assert names(tmp_path) == ["segment-000005.log", "segment-000006.log"]
        rotator.close()
        assert names(tmp_path) == ["segment-000005.log", "segment-000006.log"]

    def test_limit_holds_while_recording(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(10, max_segments=2, max_age=0))

        for _ in range(11):
            rotator.write(b"x" * 5)
            assert len(scan_segments(tmp_path)) <= 2

        rotator.close()
        assert names(tmp_path) == ["segment-000005.log", "segment-000006.log"]

    def test_single_segment_limit(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(4, max_segments=1, max_age=0))
        rotator.write(b"abcd" * 3)

        assert names(tmp_path) == ["segment-000004.log"]
        rotator.write(b"z")
        rotator.close()
        assert names(tmp_path) == ["segment-000004.log"]

    def test_deletes_expired_segments(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(4, max_segments=0, max_age=60))
        rotator.write(b"abcd")
        rotator.write(b"ef")

        old = time.time() - 3600
        os.utime(tmp_path / "segment-000001.log", (old, old))
        rotator.sweep()

        assert names(tmp_path) == ["segment-000002.log"]
        rotator.close()
        assert names(tmp_path) == ["segment-000002.log"]

    def test_zero_limits_keep_everything(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(4, max_segments=0, max_age=0))
        for _ in range(8):
            rotator.write(b"abcd")
        rotator.close()

        assert len(names(tmp_path)) == 8

    def test_deletion_failure_is_logged(self, tmp_path, monkeypatch, caplog):
        rotator = LogRotator(tmp_path, plain(4, max_segments=1, max_age=0))
        real_unlink = Path.unlink

        def unlink(path, *args, **kwargs):
            if path.name == "segment-000001.log":
                raise PermissionError(errno.EACCES, "denied", str(path))
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", unlink)
        rotator.write(b"abcd")
        rotator.write(b"abcd")

        assert "Retention could not delete" in caplog.text
        monkeypatch.undo()
        rotator.close()


class TestFailures:
    """Write errors degrade capture instead of raising."""

    def test_write_error_drops_bytes(self, tmp_path, caplog):
        rotator = LogRotator(tmp_path, plain(10, max_segments=0))
        handle = MagicMock(wraps=rotator._handle)
        handle.write.side_effect = OSError(errno.ENOSPC, "No space left on device")
        rotator._handle = handle

        rotator.write(b"abc")

        assert rotator.dropped_bytes == 3
        assert rotator.current_segment.size_bytes == 3
        assert "dropping further output" in caplog.text

        rotator.write(b"12345678")
        rotator.close()

        assert rotator.dropped_bytes == 3
        assert names(tmp_path) == ["segment-000002.log"]
        assert (tmp_path / "segment-000002.log").read_bytes() == b"12345678"

    def test_unusable_directory(self, tmp_path):
        blocker = tmp_path / "session"
        blocker.write_text("not a directory")

        rotator = LogRotator(blocker, plain(10))
        rotator.write(b"output that cannot be stored")
        rotator.close()

        assert rotator.dropped_bytes == len(b"output that cannot be stored")


class TestClose:
    """Tests for LogRotator.close."""

    def test_empty_final_segment_removed(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(4))
        rotator.write(b"abcd")
        rotator.close()

        assert names(tmp_path) == ["segment-000001.log"]

    def test_final_segment_compressed(self, tmp_path):
        rotator = LogRotator(tmp_path, RotationConfig(max_segment_size=100))
        rotator.write(b"partial line")
        rotator.close()

        assert names(tmp_path) == ["segment-000001.log.gz"]
        with gzip.open(tmp_path / "segment-000001.log.gz", "rb") as f:
            assert f.read() == b"partial line"

    def test_write_after_close_dropped(self, tmp_path):
        rotator = LogRotator(tmp_path, plain(100))
        rotator.write(b"kept")
        rotator.close()
        rotator.write(b"late")
        rotator.close()

        assert rotator.closed
        assert (tmp_path / "segment-000001.log").read_bytes() == b"kept"

    def test_context_manager(self, tmp_path):
        with LogRotator(tmp_path, plain(100)) as rotator:
            rotator.write(b"hello")

        assert rotator.closed
        assert names(tmp_path) == ["segment-000001.log"]

    def test_creates_private_directory(self, tmp_path):
        session_dir = tmp_path / "sessions" / "abc"
        LogRotator(session_dir, plain(10)).close()

        assert session_dir.is_dir()
        assert (session_dir.stat().st_mode & 0o777) == 0o700
