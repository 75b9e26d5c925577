"""
Errors - Exception types raised by the capture and redaction core
"""

from typing import List, Tuple


class SmartSuggestionError(Exception):
    """Base class for every error raised by smart_suggestion."""


class SessionAlreadyActive(SmartSuggestionError):
    """Another live proxy session already holds the lock for this scope."""

    def __init__(self, pid: int, lock_path: str = ""):
        self.pid = pid
        self.lock_path = lock_path
        where = f" ({lock_path})" if lock_path else ""
        super().__init__(f"session already active: pid {pid}{where}")


class ProxySpawnError(SmartSuggestionError):
    """The pseudo-terminal or the child shell could not be created."""


class ConfigValidationError(SmartSuggestionError, ValueError):
    """
    One or more configuration fields are invalid.

    All problems are collected before raising so the user can fix them
    in a single pass.
    """

    def __init__(self, problems: List[Tuple[str, str]]):
        self.problems = list(problems)
        super().__init__(self._format())

    def _format(self) -> str:
        if not self.problems:
            return "no validation errors"
        messages = [f"validation error in {field}: {message}" for field, message in self.problems]
        if len(messages) == 1:
            return messages[0]
        return "multiple validation errors: " + "; ".join(messages)
