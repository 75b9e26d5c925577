"""
Context Assembler - Builds the redacted context handed to an AI provider

Reads what the proxy has recorded so far plus the shell history, runs both
through the privacy filter and returns one string. The proxy and this
module only meet on the filesystem.
"""

import gzip
import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Protocol, Union

from .filter import PrivacyFilter
from .proxy import SESSION_ENV
from .rotator import LogSegment, scan_segments

logger = logging.getLogger(__name__)

DEFAULT_LOG_LINES = 100
DEFAULT_HISTORY_LINES = 50

# Escape sequences are dropped, not interpreted
ANSI_RE = re.compile(
    r"\x1b\[[\x20-\x3f]*[\x40-\x7e]"       # CSI, including private modes
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC, BEL or ST terminated
    r"|\x1b[()][A-Za-z0-9]"                # charset selection
    r"|\x1b[\x40-\x5f=>]"                  # two-byte sequences
)
# Everything below 0x20 except tab and newline, plus DEL
CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
ZSH_EXTENDED_RE = re.compile(r"^: \d+:\d+;")


class ProviderClient(Protocol):
    """What the assembler needs from an AI provider client."""

    def suggest(self, user_input: str, context: str) -> str:
        ...


def clean_terminal_text(text: str) -> str:
    """Strip escape sequences and control characters from captured output."""
    return CONTROL_RE.sub("", ANSI_RE.sub("", text))


def read_segment_bytes(segment: Union[LogSegment, str, Path]) -> bytes:
    """Raw content of a segment, decompressing sealed .gz segments."""
    path = segment.path if isinstance(segment, LogSegment) else Path(segment)
    try:
        if path.suffix == ".gz":
            with gzip.open(path, "rb") as f:
                return f.read()
        return path.read_bytes()
    except FileNotFoundError:
        # Compressed between listing and reading
        packed = path.with_name(path.name + ".gz")
        if path.suffix != ".gz" and packed.exists():
            with gzip.open(packed, "rb") as f:
                return f.read()
        return b""


def tail_session_lines(session_dir: Union[str, Path], count: int) -> List[str]:
    """
    The last count lines recorded in a session, oldest first.

    Walks back from the newest segment through older sealed ones until
    enough lines are collected, so a freshly rotated session still has
    context.
    """
    if count <= 0:
        return []

    chunks = []
    newlines = 0
    for segment in reversed(scan_segments(session_dir)):
        try:
            data = read_segment_bytes(segment)
        except OSError as e:
            logger.warning("Skipping unreadable segment %s: %s", segment.path, e)
            continue
        chunks.append(data)
        newlines += data.count(b"\n")
        if newlines > count:
            break

    raw = b"".join(reversed(chunks))
    text = clean_terminal_text(raw.decode("utf-8", errors="replace"))
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines[-count:]


def resolve_session_dir(log_dir: Union[str, Path], session_id: Optional[str] = None) -> Optional[Path]:
    """
    Session directory to read from.

    An explicit id wins, then the id the proxy exported into the shell's
    environment, then the most recently modified session.
    """
    log_dir = Path(log_dir)
    session_id = session_id or os.environ.get(SESSION_ENV)
    if session_id:
        candidate = log_dir / session_id
        return candidate if candidate.is_dir() else None

    try:
        sessions = [p for p in log_dir.iterdir() if p.is_dir()]
    except FileNotFoundError:
        return None
    if not sessions:
        return None
    return max(sessions, key=lambda p: p.stat().st_mtime)


def read_history(path: Union[str, Path], count: int) -> List[str]:
    """Last count commands of a shell history file (bash or zsh format)."""
    if count <= 0:
        return []
    try:
        raw = Path(path).expanduser().read_bytes()
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("Cannot read history %s: %s", path, e)
        return []

    commands = []
    for line in raw.decode("utf-8", errors="replace").splitlines():
        line = ZSH_EXTENDED_RE.sub("", line)
        if line.strip():
            commands.append(line)
    return commands[-count:]


class ContextAssembler:
    """
    Assembles redacted context for one suggestion request.

    Usage:
        assembler = ContextAssembler(PrivacyFilter(), "/tmp/smart-suggestion/sessions")
        context = assembler.assemble(history_lines=["git status", "ls"])
    """

    def __init__(
        self,
        privacy_filter: PrivacyFilter,
        log_dir: Union[str, Path],
        session_id: Optional[str] = None,
        max_log_lines: int = DEFAULT_LOG_LINES,
        max_history_lines: int = DEFAULT_HISTORY_LINES,
        history_path: Optional[Union[str, Path]] = None,
    ):
        self.privacy_filter = privacy_filter
        self.log_dir = Path(log_dir)
        self.session_id = session_id
        self.max_log_lines = max_log_lines
        self.max_history_lines = max_history_lines
        self.history_path = history_path

    def recent_log_lines(self, count: Optional[int] = None) -> List[str]:
        session_dir = resolve_session_dir(self.log_dir, self.session_id)
        if session_dir is None:
            logger.debug("No recorded session under %s", self.log_dir)
            return []
        return tail_session_lines(session_dir, self.max_log_lines if count is None else count)

    def history(self) -> List[str]:
        if not self.history_path:
            return []
        return read_history(self.history_path, self.max_history_lines)

    def assemble(self, history_lines: Optional[List[str]] = None) -> str:
        """
        Redacted context string: shell history first, then terminal output.

        history_lines overrides the history file when given (the shell
        plugin usually passes its own in-memory history).
        """
        if history_lines is None:
            history_lines = self.history()
        else:
            history_lines = list(history_lines)[-self.max_history_lines:] if self.max_history_lines else []

        sections = []
        if history_lines:
            safe_history = self.privacy_filter.filter_lines(history_lines)
            sections.append("# Shell history:\n" + "\n".join(safe_history))

        log_lines = self.recent_log_lines()
        if log_lines:
            safe_output = self.privacy_filter.filter_multiline_text("\n".join(log_lines))
            sections.append("# Terminal output:\n" + safe_output)

        if logger.isEnabledFor(logging.DEBUG):
            found = self.privacy_filter.detect_sensitive_patterns("\n".join(history_lines + log_lines))
            if found:
                logger.debug("Redacted patterns in context: %s", ", ".join(sorted(found)))

        return "\n\n".join(sections)

    def request_suggestion(self, client: ProviderClient, user_input: str, history_lines: Optional[List[str]] = None) -> str:
        """Assemble context and ask the provider client for a suggestion."""
        context = self.assemble(history_lines)
        logger.debug("Requesting suggestion with %d chars of context", len(context))
        return client.suggest(user_input, context)
