"""
smart-suggestion - Command line entry point for the capture and redaction core

Usage:
    # Record the interactive shell (run from the shell plugin at startup)
    smart-suggestion proxy

    # Print redacted context for a suggestion request
    fc -ln -50 | smart-suggestion context --history-stdin

    # Redact arbitrary text
    cat session.txt | smart-suggestion filter --level strict
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import yaml

from . import diagnostics
from .config import AppConfig, DEFAULT_CONFIG_PATH, DEFAULT_CONFIG_YAML
from .context import ContextAssembler, resolve_session_dir
from .errors import ProxySpawnError, SessionAlreadyActive
from .filter import FilterLevel, PrivacyFilter
from .lock import SessionLock, lock_path_for
from .proxy import ProxySession
from .rotator import scan_segments

logger = logging.getLogger(__name__)

LEVEL_CHOICES = [level.name.lower() for level in FilterLevel]


def load_config(args) -> AppConfig:
    config = AppConfig.load(args.config)
    if args.debug:
        config.debug = True
    diagnostics.configure(config.debug, config.debug_log_file)
    return config


def run_proxy(args, config: AppConfig) -> int:
    """CLI: Record an interactive shell until it exits."""
    scope = args.scope or config.lock_scope
    command = [args.shell] if args.shell else config.shell_command()

    session = ProxySession(
        log_dir=config.log_dir,
        lock_path=lock_path_for(config.lock_dir, scope),
        command=command,
        rotation=config.rotation_config(),
        session_id=args.session_id,
    )
    try:
        return session.run()
    except SessionAlreadyActive as e:
        # Benign: the shell is already being recorded
        logger.info("Not starting proxy: %s", e)
        return 0
    except ProxySpawnError as e:
        logger.error("Proxy failed to start: %s", e)
        print(f"smart-suggestion: {e}", file=sys.stderr)
        return 1


def run_context(args, config: AppConfig) -> int:
    """CLI: Print the redacted context for a suggestion request."""
    history_lines = None
    if args.history_stdin:
        history_lines = sys.stdin.read().splitlines()

    assembler = ContextAssembler(
        PrivacyFilter(config.filter_config()),
        log_dir=config.log_dir,
        session_id=args.session,
        max_log_lines=args.lines if args.lines is not None else config.max_log_lines,
        max_history_lines=config.max_history_lines,
        history_path=args.history_file or config.history_file or None,
    )
    context = assembler.assemble(history_lines)
    if context:
        print(context)
    return 0


def _filter_for(args, config: AppConfig) -> PrivacyFilter:
    filter_config = config.filter_config()
    if args.level:
        filter_config = replace(filter_config, level=FilterLevel.parse(args.level))
    return PrivacyFilter(filter_config)


def run_filter(args, config: AppConfig) -> int:
    """CLI: Redact stdin to stdout."""
    privacy = _filter_for(args, config)
    sys.stdout.write(privacy.filter_multiline_text(sys.stdin.read()))
    return 0


def run_detect(args, config: AppConfig) -> int:
    """
    CLI: Name the sensitive patterns found in stdin.

    Returns exit code 0 if anything was found, 1 if not.
    """
    privacy = _filter_for(args, config)
    found = privacy.detect_sensitive_patterns(sys.stdin.read())
    for name in sorted(found):
        print(name)
    return 0 if found else 1


def run_init(args) -> int:
    """CLI: Write a default configuration file."""
    config_path = Path(args.config or DEFAULT_CONFIG_PATH).expanduser()

    if config_path.exists() and not args.force:
        print(f"Config already exists: {config_path}")
        print("Use --force to overwrite")
        return 1

    if config_path.suffix in ('.yaml', '.yml'):
        config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        config_path.write_text(DEFAULT_CONFIG_YAML)
        config_path.chmod(0o600)
    else:
        AppConfig().save(str(config_path))

    print(f"Created: {config_path}")
    return 0


def run_status(args, config: AppConfig) -> int:
    """CLI: Show the lock holder and the latest session's segments."""
    lock = SessionLock(lock_path_for(config.lock_dir, args.scope or config.lock_scope))
    holder = lock.holder()

    print(f"Lock: {lock.path}")
    print(f"Holder: {holder if holder else 'none'}")

    session_dir = resolve_session_dir(config.log_dir, args.session)
    if session_dir is None:
        print("No recorded sessions.")
        return 0

    print(f"\nSession: {session_dir.name}")
    for segment in scan_segments(session_dir):
        state = "compressed" if segment.compressed else "plain"
        print(f"  {segment.path.name}  {segment.size_bytes} bytes  ({state})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-suggestion",
        description="Terminal capture and privacy redaction for AI command suggestions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  smart-suggestion init                    Write ~/.config/smart-suggestion/config.yaml
  smart-suggestion proxy                   Record this shell
  smart-suggestion context --lines 50      Print redacted context
  echo "$line" | smart-suggestion detect   Name sensitive patterns in a line
        """,
    )

    parser.add_argument("--config", "-c", help="Config file (default: ~/.config/smart-suggestion/config.yaml)")
    parser.add_argument("--debug", "-d", action="store_true", help="Append diagnostics to the debug log")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    proxy_parser = subparsers.add_parser("proxy", help="Record an interactive shell")
    proxy_parser.add_argument("--scope", help="Lock scope (default from config)")
    proxy_parser.add_argument("--session-id", help="Session id (default: time-based)")
    proxy_parser.add_argument("--shell", help="Shell to run (default: $SHELL)")
    proxy_parser.set_defaults(func=run_proxy)

    context_parser = subparsers.add_parser("context", help="Print redacted context")
    context_parser.add_argument("--session", help="Session id (default: $SMART_SUGGESTION_SESSION_ID or latest)")
    context_parser.add_argument("--lines", "-n", type=int, help="Terminal lines to include")
    context_parser.add_argument("--history-file", help="Shell history file to read")
    context_parser.add_argument("--history-stdin", action="store_true", help="Read history lines from stdin")
    context_parser.set_defaults(func=run_context)

    filter_parser = subparsers.add_parser("filter", help="Redact stdin to stdout")
    filter_parser.add_argument("--level", "-l", choices=LEVEL_CHOICES, help="Override the configured level")
    filter_parser.set_defaults(func=run_filter)

    detect_parser = subparsers.add_parser("detect", help="Name sensitive patterns found in stdin")
    detect_parser.add_argument("--level", "-l", choices=LEVEL_CHOICES, help="Override the configured level")
    detect_parser.set_defaults(func=run_detect)

    init_parser = subparsers.add_parser("init", help="Write a default configuration file")
    init_parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")
    init_parser.set_defaults(func=run_init)

    status_parser = subparsers.add_parser("status", help="Show lock and session status")
    status_parser.add_argument("--scope", help="Lock scope (default from config)")
    status_parser.add_argument("--session", help="Session id (default: latest)")
    status_parser.set_defaults(func=run_status)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "init":
        return run_init(args)

    try:
        config = load_config(args)
    except (ValueError, OSError, yaml.YAMLError) as e:
        print(f"smart-suggestion: {e}", file=sys.stderr)
        return 2

    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
