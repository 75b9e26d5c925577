"""
Session Lock - Single-instance guard for proxy sessions

The lock is a plain file containing the owner's pid. Creation is one
atomic filesystem operation: the pid is written to a private temporary
file which is then hard-linked to the lock path, so the lock never exists
without its content and only one of several racing shells can win.

A lock whose owner is dead is removed by whoever holds the reclaim guard,
a second file created the same way, so two shells never both delete it.
"""

import logging
import os
import re
import socket
import time
import uuid
from pathlib import Path
from typing import Optional, Union

from .errors import SessionAlreadyActive

logger = logging.getLogger(__name__)

LOCK_PREFIX = "smart-suggestion-proxy-"
LOCK_SUFFIX = ".lock"
GUARD_SUFFIX = ".reclaim"

_MAX_ATTEMPTS = 20
_RETRY_DELAY = 0.05


def lock_path_for(lock_dir: Union[str, Path], scope: str = "default", hostname: Optional[str] = None) -> Path:
    """Deterministic lock path for a host and lock scope."""
    host = hostname or socket.gethostname()
    key = re.sub(r"[^A-Za-z0-9._-]", "_", f"{host}-{scope}")
    return Path(lock_dir) / f"{LOCK_PREFIX}{key}{LOCK_SUFFIX}"


def pid_alive(pid: int) -> bool:
    """True when a process with this pid exists (signal 0 check)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


def read_lock_pid(path: Union[str, Path]) -> Optional[int]:
    """Pid recorded in a lock file, or None when missing or unreadable."""
    try:
        content = Path(path).read_text().strip()
    except (OSError, UnicodeDecodeError):
        return None
    try:
        return int(content)
    except ValueError:
        return None


def _unlink_quietly(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class SessionLock:
    """
    Exclusive lock for one proxy session per scope.

    Usage:
        lock = SessionLock(lock_path_for("/tmp", "default"))
        lock.acquire()      # raises SessionAlreadyActive if a live owner exists
        ...
        lock.release()
    """

    def __init__(self, path: Union[str, Path], pid: Optional[int] = None):
        self.path = Path(path)
        self.pid = pid or os.getpid()
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @property
    def guard_path(self) -> Path:
        return self.path.with_name(self.path.name + GUARD_SUFFIX)

    def holder(self) -> Optional[int]:
        """Pid of the live process holding the lock, if any."""
        owner = read_lock_pid(self.path)
        if owner is not None and pid_alive(owner):
            return owner
        return None

    def acquire(self):
        """
        Take the lock, reclaiming it if the recorded owner is dead.

        Raises:
            SessionAlreadyActive: a live process already owns the lock.
        """
        if self._held:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)

        owner = None
        for _ in range(_MAX_ATTEMPTS):
            if self._create(self.path):
                self._held = True
                logger.debug("Acquired lock %s as pid %d", self.path, self.pid)
                return

            owner = read_lock_pid(self.path)
            if owner == self.pid:
                self._held = True
                return
            if owner is not None and pid_alive(owner):
                raise SessionAlreadyActive(owner, str(self.path))

            if not self._reclaim(owner):
                time.sleep(_RETRY_DELAY)

        raise SessionAlreadyActive(owner or 0, str(self.path))

    def release(self):
        """Remove the lock file, but only while it still names this process."""
        if not self._held:
            return
        self._held = False

        owner = read_lock_pid(self.path)
        if owner != self.pid:
            logger.warning("Lock %s now names pid %s, leaving it in place", self.path, owner)
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove lock %s: %s", self.path, e)
            return
        logger.debug("Released lock %s", self.path)

    def _create(self, target: Path) -> bool:
        """Atomically create target holding our pid; False if it exists."""
        staging = target.with_name(f".{target.name}.{self.pid}.{uuid.uuid4().hex[:8]}")
        try:
            fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.pid}\n")
            try:
                os.link(staging, target)
            except FileExistsError:
                return False
            except OSError:
                # Filesystems without hard links: fall back to exclusive create
                return self._create_exclusive(target)
            return True
        finally:
            _unlink_quietly(staging)

    def _create_exclusive(self, target: Path) -> bool:
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{self.pid}\n")
        return True

    def _reclaim(self, stale_owner: Optional[int]) -> bool:
        """
        Delete a stale lock while holding the reclaim guard.

        Nobody can create the lock while the stale file is in place, so
        re-reading it under the guard and finding the same dead owner makes
        the unlink safe. Returns False when another process holds the
        guard; the caller backs off and retries.
        """
        guard = self.guard_path
        if not self._create(guard):
            guard_owner = read_lock_pid(guard)
            if guard_owner is not None and not pid_alive(guard_owner):
                logger.info("Removing abandoned reclaim guard %s (dead pid %d)", guard, guard_owner)
                _unlink_quietly(guard)
            return False

        try:
            if read_lock_pid(self.path) != stale_owner:
                # Released or replaced since we looked
                return True
            try:
                self.path.unlink()
            except FileNotFoundError:
                return True
            logger.info("Reclaimed stale lock %s (dead pid %s)", self.path, stale_owner)
            return True
        finally:
            _unlink_quietly(guard)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
