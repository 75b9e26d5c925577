"""
Proxy Session - Records an interactive shell through a pseudo-terminal

The proxy sits between the user's terminal and a child shell. Everything
the shell prints is forwarded to the terminal untouched and duplicated
into the session's LogRotator; keystrokes go the other way. Nothing is
interpreted, so the shell behaves as it would without the proxy.
"""

import errno
import fcntl
import logging
import os
import pty
import select
import signal
import termios
import threading
import tty
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import ProxySpawnError, SessionAlreadyActive
from .lock import SessionLock, pid_alive
from .rotator import LogRotator, RotationConfig

logger = logging.getLogger(__name__)

SESSION_ENV = "SMART_SUGGESTION_SESSION_ID"
PROXY_PID_ENV = "SMART_SUGGESTION_PROXY_PID"

READ_SIZE = 4096
POLL_INTERVAL = 0.1
MAX_PENDING_INPUT = 64 * 1024
# How long the copy loop waits for a child that closed its pty to exit
EXIT_GRACE = 2.0

EXEC_FAILED = 127


class SessionState(Enum):
    """Lifecycle of a proxy session."""
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    TERMINATING = "terminating"


def new_session_id() -> str:
    """Time-based session id, unique per process."""
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{os.getpid()}"


def default_shell() -> List[str]:
    return [os.environ.get("SHELL") or "/bin/sh"]


def exit_code_from_status(status: int) -> int:
    """Shell convention: exit status, or 128 + signal number."""
    if os.WIFSIGNALED(status):
        return 128 + os.WTERMSIG(status)
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    return 1


@dataclass
class SessionInfo:
    """What a proxy session recorded and how it ended."""
    session_id: str
    log_dir: str
    lock_path: str
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    bytes_recorded: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "log_dir": self.log_dir,
            "lock_path": self.lock_path,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "bytes_recorded": self.bytes_recorded,
            "started_at": self.started_at.isoformat(),
        }


class ProxySession:
    """
    One recording lifetime: lock, spawn, record, terminate.

    Usage:
        session = ProxySession(
            log_dir="/tmp/smart-suggestion/sessions",
            lock_path=lock_path_for("/tmp", "default"),
        )
        exit_code = session.run()   # blocks until the shell exits

    input_fd/output_fd default to the process's stdin/stdout; pass None to
    disable input forwarding or terminal output (useful for tests and for
    headless recording).
    """

    def __init__(
        self,
        log_dir: Union[str, Path],
        lock_path: Union[str, Path],
        command: Optional[List[str]] = None,
        rotation: Optional[RotationConfig] = None,
        session_id: Optional[str] = None,
        input_fd: Optional[int] = 0,
        output_fd: Optional[int] = 1,
        env: Optional[Dict[str, str]] = None,
    ):
        self.session_id = session_id or new_session_id()
        self.log_dir = Path(log_dir)
        self.session_dir = self.log_dir / self.session_id
        self.command = list(command) if command else default_shell()
        self.rotation = rotation or RotationConfig()
        self.env = dict(os.environ if env is None else env)

        self.input_fd = input_fd
        self.output_fd = output_fd

        self._lock = SessionLock(lock_path)
        self._rotator: Optional[LogRotator] = None
        self._master_fd: Optional[int] = None
        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._exited = threading.Event()
        self._stop_requested = False

        self.info = SessionInfo(
            session_id=self.session_id,
            log_dir=str(self.session_dir),
            lock_path=str(self._lock.path),
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self.info.pid

    @property
    def lock(self) -> SessionLock:
        return self._lock

    def _set_state(self, state: SessionState):
        with self._state_lock:
            logger.debug("Session %s: %s -> %s", self.session_id, self._state.value, state.value)
            self._state = state

    def run(self) -> int:
        """
        Record the shell until it exits.

        Returns:
            The shell's exit code.

        Raises:
            SessionAlreadyActive: another live session holds the lock, or
                this process already runs inside a recorded shell.
            ProxySpawnError: the pty or the child could not be created.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"session {self.session_id} is {self._state.value}")

        self._check_nesting()
        self._set_state(SessionState.STARTING)

        try:
            self._lock.acquire()
        except SessionAlreadyActive:
            self._set_state(SessionState.IDLE)
            raise
        except OSError as e:
            self._set_state(SessionState.IDLE)
            raise ProxySpawnError(f"cannot create lock {self._lock.path}: {e}") from e

        try:
            self._rotator = LogRotator(self.session_dir, self.rotation)
            self._spawn()
            self._set_state(SessionState.RECORDING)
            logger.info(
                "Recording session %s (shell pid %d) into %s",
                self.session_id, self.info.pid, self.session_dir,
            )
            return self._record()
        finally:
            self._terminate()

    def stop(self):
        """Ask the shell to hang up; the copy loop drains and the session ends."""
        self._stop_requested = True
        pid = self.info.pid
        if pid and not self._exited.is_set():
            try:
                os.kill(pid, signal.SIGHUP)
            except ProcessLookupError:
                pass

    def _kill_child(self):
        logger.warning("Shell pid %d ignored SIGHUP, killing it", self.info.pid)
        try:
            os.kill(self.info.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _check_nesting(self):
        outer = self.env.get(PROXY_PID_ENV, "")
        if outer.isdigit():
            outer_pid = int(outer)
            if outer_pid != os.getpid() and pid_alive(outer_pid):
                raise SessionAlreadyActive(outer_pid, str(self._lock.path))

    def _spawn(self):
        manager_pid = os.getpid()
        env = dict(self.env)
        env[SESSION_ENV] = self.session_id
        env[PROXY_PID_ENV] = str(manager_pid)

        try:
            pid, master_fd = pty.fork()
        except OSError as e:
            raise ProxySpawnError(f"cannot allocate pseudo-terminal: {e}") from e

        if pid == 0:
            self._exec_child(env)

        self.info.pid = pid
        self._master_fd = master_fd

    def _exec_child(self, env: Dict[str, str]):
        # Runs in the forked child and never returns
        try:
            os.execvpe(self.command[0], self.command, env)
        except BaseException as e:
            try:
                os.write(2, f"smart-suggestion: cannot run {self.command[0]}: {e}\r\n".encode())
            finally:
                os._exit(EXEC_FAILED)

    def _record(self) -> int:
        watcher = threading.Thread(target=self._watch_exit, name="proxy-exit-watcher", daemon=True)
        watcher.start()

        saved_tty = self._enter_raw_mode()
        saved_handlers = self._install_signal_handlers()
        try:
            self._sync_window_size()
            self._copy_loop()
        finally:
            self._restore_signal_handlers(saved_handlers)
            self._restore_tty(saved_tty)

            if not self._exited.wait(EXIT_GRACE):
                self.stop()
                if not self._exited.wait(EXIT_GRACE):
                    self._kill_child()
            watcher.join()

        return self.info.exit_code if self.info.exit_code is not None else 1

    def _watch_exit(self):
        try:
            _, status = os.waitpid(self.info.pid, 0)
        except ChildProcessError:
            status = 0
        self.info.exit_code = exit_code_from_status(status)
        logger.debug("Shell pid %d exited with %d", self.info.pid, self.info.exit_code)
        self._exited.set()

    def _copy_loop(self):
        master = self._master_fd
        os.set_blocking(master, False)
        input_fd = self.input_fd
        pending = bytearray()

        while True:
            # Input is written only when the pty accepts it; output is read
            # on every pass
            readers = [master]
            if input_fd is not None and len(pending) < MAX_PENDING_INPUT:
                readers.append(input_fd)
            writers = [master] if pending else []
            try:
                readable, writable, _ = select.select(readers, writers, [], POLL_INTERVAL)
            except InterruptedError:
                continue

            if master in readable:
                try:
                    data = os.read(master, READ_SIZE)
                except BlockingIOError:
                    data = None
                except OSError as e:
                    # EIO is how Linux reports that the pty's follower side closed
                    if e.errno != errno.EIO:
                        logger.warning("Reading the pty failed: %s", e)
                    break
                if data == b"":
                    break
                if data:
                    self._forward_output(data)
            elif self._exited.is_set():
                # Shell is gone and the pty is drained, even if a stray
                # background job still holds the follower side open
                break

            if master in writable:
                try:
                    written = os.write(master, pending)
                except BlockingIOError:
                    written = 0
                except OSError as e:
                    logger.debug("Dropping %d bytes of input: %s", len(pending), e)
                    written = len(pending)
                del pending[:written]

            if input_fd is not None and input_fd in readable:
                try:
                    data = os.read(input_fd, 1024)
                except OSError:
                    data = b""
                if not data:
                    input_fd = None
                    continue
                pending += data

    def _forward_output(self, data: bytes):
        if self.output_fd is not None:
            try:
                self._write_all(self.output_fd, data)
            except OSError as e:
                logger.warning("Terminal output failed, continuing to record only: %s", e)
                self.output_fd = None
        self._rotator.write(data)
        self.info.bytes_recorded += len(data)

    @staticmethod
    def _write_all(fd: int, data: bytes):
        view = memoryview(data)
        while view:
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                select.select([], [fd], [])
                continue
            view = view[written:]

    def _enter_raw_mode(self):
        fd = self.input_fd
        if fd is None or not os.isatty(fd):
            return None
        try:
            saved = termios.tcgetattr(fd)
            tty.setraw(fd)
        except termios.error as e:
            logger.debug("Could not switch terminal to raw mode: %s", e)
            return None
        return saved

    def _restore_tty(self, saved):
        if saved is None:
            return
        try:
            termios.tcsetattr(self.input_fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            logger.warning("Could not restore terminal settings: %s", e)

    def _sync_window_size(self):
        fd = self.input_fd
        if fd is None or self._master_fd is None or not os.isatty(fd):
            return
        try:
            size = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * 8)
            fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, size)
        except OSError as e:
            logger.debug("Window size sync failed: %s", e)

    def _install_signal_handlers(self) -> Dict[int, object]:
        # Handlers can only be installed from the main thread
        if threading.current_thread() is not threading.main_thread():
            return {}

        saved = {}
        handlers = {
            signal.SIGTERM: self._on_stop_signal,
            signal.SIGHUP: self._on_stop_signal,
            signal.SIGWINCH: self._on_resize_signal,
        }
        for signum, handler in handlers.items():
            saved[signum] = signal.signal(signum, handler)
        return saved

    @staticmethod
    def _restore_signal_handlers(saved: Dict[int, object]):
        for signum, handler in saved.items():
            signal.signal(signum, handler)

    def _on_stop_signal(self, signum, frame):
        logger.info("Received signal %d, stopping session %s", signum, self.session_id)
        self.stop()

    def _on_resize_signal(self, signum, frame):
        self._sync_window_size()

    def _terminate(self):
        self._set_state(SessionState.TERMINATING)

        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None

        if self._rotator is not None:
            self._rotator.close()
            if self._rotator.dropped_bytes:
                logger.warning(
                    "Session %s dropped %d bytes of output", self.session_id, self._rotator.dropped_bytes,
                )

        self._lock.release()
        logger.info(
            "Session %s finished: %d bytes recorded, exit code %s",
            self.session_id, self.info.bytes_recorded, self.info.exit_code,
        )
        self._set_state(SessionState.IDLE)
