"""
smart-suggestion - Terminal capture and privacy redaction for AI command suggestions

Records an interactive shell through a pseudo-terminal into rotating,
compressed session logs, and scrubs that output and the shell history of
secrets before it is used as model context.
"""

__version__ = "1.0.0"

from .compressor import SegmentCompressor
from .config import AppConfig
from .context import ContextAssembler, ProviderClient
from .errors import ConfigValidationError, ProxySpawnError, SessionAlreadyActive, SmartSuggestionError
from .filter import FilterConfig, FilterLevel, PrivacyFilter, SensitivePattern
from .lock import SessionLock, lock_path_for
from .proxy import ProxySession, SessionState
from .rotator import LogRotator, LogSegment, RotationConfig

__all__ = [
    "AppConfig",
    "ConfigValidationError",
    "ContextAssembler",
    "FilterConfig",
    "FilterLevel",
    "LogRotator",
    "LogSegment",
    "PrivacyFilter",
    "ProviderClient",
    "ProxySession",
    "ProxySpawnError",
    "RotationConfig",
    "SegmentCompressor",
    "SensitivePattern",
    "SessionAlreadyActive",
    "SessionLock",
    "SessionState",
    "SmartSuggestionError",
    "lock_path_for",
]
