#!/usr/bin/env python3
"""
CLI for watching a directory and re-running a command on change.

Usage:
    fmon -c "go run ."
    fmon -c "pytest -x" -E '\\.py$' -n 500ms
    fmon -c "make" Makefile config.yaml
"""

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import DEFAULT_IGNORE_FILE, WatchConfig, build_matcher, parse_duration
from .exceptions import ConfigError, ProcessControlError
from .loop import WatchLoop


logger = logging.getLogger("fmon")


class GracefulShutdown:
    """Stop a watch loop on SIGINT/SIGTERM."""

    def __init__(self, loop: WatchLoop):
        self.loop = loop
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, stopping...")
        self.loop.request_stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmon",
        description="Run a command and restart it whenever watched files change",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Restart a server when anything not in .gitignore changes
  fmon -c "python server.py"

  # Only watch Go sources, poll every 500ms
  fmon -c "go test ./..." -E '\\.go$' -n 500ms

  # Also track files outside the matcher
  fmon -c "make" -E '\\.c$' Makefile

Environment (also read from .env):
  FMON_COMMAND, FMON_REGEX, FMON_INTERVAL, FMON_GRACE
        """,
    )
    parser.add_argument("-c", "--command", default=None, help="Command to run (or FMON_COMMAND env)")
    parser.add_argument("-E", "--regex", default=None, help="Only watch paths matching this regex (or FMON_REGEX env)")
    parser.add_argument("-n", "--interval", default=None, help="Poll interval, seconds or duration like 500ms (default: 1s)")
    parser.add_argument("-g", "--grace", default=None, help="Wait before SIGKILL after SIGTERM (default: 5s)")
    parser.add_argument("-C", "--root", default=".", help="Directory to watch (default: .)")
    parser.add_argument("--ignore-file", default=DEFAULT_IGNORE_FILE, help="Ignore file relative to root (default: .gitignore)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("files", nargs="*", help="Files always included in the fingerprint")
    return parser


def build_config(args: argparse.Namespace) -> WatchConfig:
    """
    Turn parsed arguments into a WatchConfig.

    Flags take precedence over FMON_* environment variables.

    Raises:
        ConfigError: If any setting is invalid
    """
    command = args.command or os.environ.get("FMON_COMMAND", "")
    if not command.strip():
        raise ConfigError("No command given, use -c or set FMON_COMMAND")

    root = Path(args.root)
    if not root.is_dir():
        raise ConfigError(f"Root is not a directory: {root}")

    regex = args.regex if args.regex is not None else os.environ.get("FMON_REGEX")
    matcher = build_matcher(regex, root / args.ignore_file)

    interval = parse_duration(args.interval or os.environ.get("FMON_INTERVAL", "1s"))
    if interval <= 0:
        raise ConfigError(f"Poll interval must be positive: {interval}")
    grace = parse_duration(args.grace or os.environ.get("FMON_GRACE", "5s"))

    return WatchConfig(
        command_line=command,
        matcher=matcher,
        poll_interval=interval,
        extra_files=[Path(f).resolve() for f in args.files],
        root=root,
        grace_period=grace,
    )


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    load_dotenv(Path.cwd() / ".env")

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    loop = WatchLoop(config)
    GracefulShutdown(loop)

    logger.info(f"Watching {config.root.resolve()} every {config.poll_interval}s")
    try:
        loop.start()
    except ProcessControlError as e:
        logger.error(f"Stopping: {e}")
        return 1

    logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
