"""
fmon

Polls a directory tree, fingerprints the tracked files and restarts a
command whenever the fingerprint changes.

Features:
- Ignore-file (literal prefix) or regex file selection
- Content fingerprint over all tracked files
- Process-group termination with SIGKILL escalation
- Restart serialized against interrupt-driven shutdown
"""

from .models import DirState, WatchState

from .config import WatchConfig, parse_duration, build_matcher

from .exceptions import (
    FmonError,
    ConfigError,
    IgnoreFileError,
    InvalidPatternError,
    InvalidDurationError,
    SupervisorError,
    SpawnError,
    ProcessControlError,
    WatchLoopError,
    WatchLoopAlreadyRunningError,
)

from .matcher import Matcher, IgnoreList, Pattern, load_ignore_file
from .fingerprint import compute_state, collect_paths, iter_files
from .supervisor import ProcessSupervisor, ManagedProcess, split_command
from .loop import WatchLoop


__all__ = [
    # Models
    "DirState",
    "WatchState",
    # Config
    "WatchConfig",
    "parse_duration",
    "build_matcher",
    # Exceptions
    "FmonError",
    "ConfigError",
    "IgnoreFileError",
    "InvalidPatternError",
    "InvalidDurationError",
    "SupervisorError",
    "SpawnError",
    "ProcessControlError",
    "WatchLoopError",
    "WatchLoopAlreadyRunningError",
    # Components
    "Matcher",
    "IgnoreList",
    "Pattern",
    "load_ignore_file",
    "compute_state",
    "collect_paths",
    "iter_files",
    "ProcessSupervisor",
    "ManagedProcess",
    "split_command",
    # Main loop
    "WatchLoop",
]

__version__ = "0.1.0"
