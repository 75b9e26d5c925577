"""
Configuration - Settings for capture, rotation, redaction and diagnostics
"""

import json
import os
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigValidationError
from .filter import DEFAULT_REPLACEMENT, FilterConfig, FilterLevel
from .lock import lock_path_for
from .rotator import DEFAULT_MAX_AGE, DEFAULT_MAX_SEGMENT_SIZE, DEFAULT_MAX_SEGMENTS, RotationConfig

CONFIG_ENV = "SMART_SUGGESTION_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/smart-suggestion/config.yaml")

DEFAULT_LOCK_DIR = "/tmp"
DEFAULT_LOG_DIR = "/tmp/smart-suggestion/sessions"
DEFAULT_DEBUG_LOG = "/tmp/smart-suggestion.log"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigValidationError([(name, "must be a mapping")])
    return section


@dataclass
class AppConfig:
    """
    Configuration for smart-suggestion.

    Can be loaded from:
    - YAML file (config.yaml)
    - JSON file (config.json)
    - Environment variables (SMART_SUGGESTION_*)
    - Programmatic defaults
    """

    # Privacy settings
    privacy_level: str = "basic"
    privacy_enabled: bool = True
    custom_patterns: List[str] = field(default_factory=list)
    replacement_text: str = DEFAULT_REPLACEMENT

    # Rotation settings
    max_segment_size: int = DEFAULT_MAX_SEGMENT_SIZE
    max_segments: int = DEFAULT_MAX_SEGMENTS
    max_age: float = DEFAULT_MAX_AGE  # seconds
    compress: bool = True

    # Proxy settings
    shell: str = ""  # empty: $SHELL, then /bin/sh
    lock_dir: str = DEFAULT_LOCK_DIR
    lock_scope: str = "default"
    log_dir: str = DEFAULT_LOG_DIR

    # Context settings
    max_log_lines: int = 100
    max_history_lines: int = 50
    history_file: str = ""

    # Debug settings
    debug: bool = False
    debug_log_file: str = DEFAULT_DEBUG_LOG

    @classmethod
    def from_file(cls, path: str) -> "AppConfig":
        """Load configuration from YAML or JSON file."""
        path = Path(path).expanduser()

        if not path.exists():
            return cls()

        content = path.read_text()

        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(content) or {}
        elif path.suffix == '.json':
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        """Create config from the nested file structure."""
        if not isinstance(data, dict):
            raise ConfigValidationError([('config', f"top level must be a mapping, not {type(data).__name__}")])
        defaults = cls()
        flat = {}

        privacy = _section(data, 'privacy')
        if privacy:
            flat['privacy_level'] = privacy.get('level', defaults.privacy_level)
            flat['privacy_enabled'] = privacy.get('enabled', defaults.privacy_enabled)
            patterns = privacy.get('custom_patterns')
            # Kept as given so validate() can reject a scalar
            flat['custom_patterns'] = [] if patterns is None else patterns
            flat['replacement_text'] = privacy.get('replacement_text', defaults.replacement_text)

        rotation = _section(data, 'rotation')
        if rotation:
            flat['max_segment_size'] = rotation.get('max_segment_size', defaults.max_segment_size)
            flat['max_segments'] = rotation.get('max_segments', defaults.max_segments)
            flat['max_age'] = rotation.get('max_age', defaults.max_age)
            flat['compress'] = rotation.get('compress', defaults.compress)

        proxy = _section(data, 'proxy')
        if proxy:
            flat['shell'] = proxy.get('shell', defaults.shell)
            flat['lock_dir'] = proxy.get('lock_dir', defaults.lock_dir)
            flat['lock_scope'] = proxy.get('lock_scope', defaults.lock_scope)
            flat['log_dir'] = proxy.get('log_dir', defaults.log_dir)

        context = _section(data, 'context')
        if context:
            flat['max_log_lines'] = context.get('max_log_lines', defaults.max_log_lines)
            flat['max_history_lines'] = context.get('max_history_lines', defaults.max_history_lines)
            flat['history_file'] = context.get('history_file', defaults.history_file)

        debug = _section(data, 'debug')
        if debug:
            flat['debug'] = debug.get('enabled', defaults.debug)
            flat['debug_log_file'] = debug.get('log_file', defaults.debug_log_file)

        return cls(**flat)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Load configuration from environment variables."""
        return cls().apply_env(environ)

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Overlay SMART_SUGGESTION_* variables onto this config."""
        env = os.environ if environ is None else environ

        if 'SMART_SUGGESTION_DEBUG' in env:
            self.debug = _env_bool(env['SMART_SUGGESTION_DEBUG'])
        if env.get('SMART_SUGGESTION_LOG_FILE'):
            self.debug_log_file = env['SMART_SUGGESTION_LOG_FILE']
        if env.get('SMART_SUGGESTION_PRIVACY_LEVEL'):
            self.privacy_level = env['SMART_SUGGESTION_PRIVACY_LEVEL']
        if 'SMART_SUGGESTION_PRIVACY_ENABLED' in env:
            self.privacy_enabled = _env_bool(env['SMART_SUGGESTION_PRIVACY_ENABLED'])
        if env.get('SMART_SUGGESTION_LOCK_SCOPE'):
            self.lock_scope = env['SMART_SUGGESTION_LOCK_SCOPE']
        if env.get('SMART_SUGGESTION_LOG_DIR'):
            self.log_dir = env['SMART_SUGGESTION_LOG_DIR']
        if env.get('SMART_SUGGESTION_SHELL'):
            self.shell = env['SMART_SUGGESTION_SHELL']
        return self

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """
        Resolve the effective configuration.

        File (explicit path, then $SMART_SUGGESTION_CONFIG, then the default
        location), overlaid with the environment, then validated.
        """
        env = os.environ if environ is None else environ
        path = path or env.get(CONFIG_ENV) or str(DEFAULT_CONFIG_PATH)
        config = cls.from_file(path).apply_env(env)
        config.validate()
        return config

    def validate(self):
        """Raise ConfigValidationError listing every invalid field."""
        problems = []

        try:
            FilterLevel.parse(self.privacy_level)
        except ValueError:
            problems.append((
                'privacy.level',
                f"invalid level '{self.privacy_level}', must be one of: none, basic, moderate, strict",
            ))

        if not isinstance(self.custom_patterns, list) or not all(isinstance(p, str) for p in self.custom_patterns):
            problems.append(('privacy.custom_patterns', "must be a list of regular expression strings"))

        if not isinstance(self.max_segment_size, int) or self.max_segment_size <= 0:
            problems.append(('rotation.max_segment_size', "must be a positive number of bytes"))
        if not isinstance(self.max_segments, int) or self.max_segments < 0:
            problems.append(('rotation.max_segments', "must be zero (unlimited) or a positive count"))
        if not isinstance(self.max_age, (int, float)) or self.max_age < 0:
            problems.append(('rotation.max_age', "must be zero (unlimited) or a positive number of seconds"))

        if not self.lock_scope:
            problems.append(('proxy.lock_scope', "must not be empty"))
        if not self.lock_dir:
            problems.append(('proxy.lock_dir', "must not be empty"))
        if not self.log_dir:
            problems.append(('proxy.log_dir', "must not be empty"))

        if not isinstance(self.max_log_lines, int) or self.max_log_lines < 0:
            problems.append(('context.max_log_lines', "must not be negative"))
        if not isinstance(self.max_history_lines, int) or self.max_history_lines < 0:
            problems.append(('context.max_history_lines', "must not be negative"))

        if problems:
            raise ConfigValidationError(problems)

    def filter_config(self) -> FilterConfig:
        return FilterConfig(
            level=FilterLevel.parse(self.privacy_level),
            enabled=self.privacy_enabled,
            custom_patterns=tuple(self.custom_patterns),
            replacement_text=self.replacement_text,
        )

    def rotation_config(self) -> RotationConfig:
        return RotationConfig(
            max_segment_size=self.max_segment_size,
            max_segments=self.max_segments,
            max_age=self.max_age,
            compress=self.compress,
        )

    def lock_path(self) -> Path:
        return lock_path_for(self.lock_dir, self.lock_scope)

    def shell_command(self) -> List[str]:
        return [self.shell or os.environ.get("SHELL") or "/bin/sh"]

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            'privacy': {
                'level': self.privacy_level,
                'enabled': self.privacy_enabled,
                'custom_patterns': list(self.custom_patterns),
                'replacement_text': self.replacement_text,
            },
            'rotation': {
                'max_segment_size': self.max_segment_size,
                'max_segments': self.max_segments,
                'max_age': self.max_age,
                'compress': self.compress,
            },
            'proxy': {
                'shell': self.shell,
                'lock_dir': self.lock_dir,
                'lock_scope': self.lock_scope,
                'log_dir': self.log_dir,
            },
            'context': {
                'max_log_lines': self.max_log_lines,
                'max_history_lines': self.max_history_lines,
                'history_file': self.history_file,
            },
            'debug': {
                'enabled': self.debug,
                'log_file': self.debug_log_file,
            },
        }

    def save(self, path: str):
        """Save configuration to file, readable by the owner only."""
        path = Path(path).expanduser()
        data = self.to_dict()

        if path.suffix in ('.yaml', '.yml'):
            content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        path.write_text(content)
        os.chmod(path, 0o600)


# Default config file template
DEFAULT_CONFIG_YAML = """# smart-suggestion configuration

privacy:
  level: "basic"          # none, basic, moderate, strict
  enabled: true
  custom_patterns: []
  replacement_text: "[REDACTED]"

rotation:
  max_segment_size: 1048576
  max_segments: 5
  max_age: 604800         # seconds
  compress: true

proxy:
  shell: ""               # defaults to $SHELL
  lock_dir: "/tmp"
  lock_scope: "default"
  log_dir: "/tmp/smart-suggestion/sessions"

context:
  max_log_lines: 100
  max_history_lines: 50
  history_file: ""

debug:
  enabled: false
  log_file: "/tmp/smart-suggestion.log"
"""
