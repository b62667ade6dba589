"""Configuration for the fmon package."""

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .exceptions import InvalidDurationError
from .matcher import IgnoreList, Matcher, Pattern, load_ignore_file


DEFAULT_IGNORE_FILE = ".gitignore"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a poll interval or grace period into seconds.

    Accepts plain numbers of seconds (``2``, ``0.5``) as well as
    Go-style durations made of one or more unit parts
    (``500ms``, ``2s``, ``1m30s``, ``1h``).

    Raises:
        InvalidDurationError: If the value is malformed or negative
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_unit_duration(text)

    if not math.isfinite(seconds):
        raise InvalidDurationError(f"Duration must be finite: {value!r}")
    if seconds < 0:
        raise InvalidDurationError(f"Duration must not be negative: {value!r}")
    return seconds


def _parse_unit_duration(text: str) -> float:
    pos = 0
    total = 0.0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise InvalidDurationError(f"Invalid duration: {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise InvalidDurationError(f"Invalid duration: {text!r}")
    return total


def build_matcher(regex: Optional[str], ignore_file: Union[str, Path]) -> Matcher:
    """
    Choose the matcher for a run.

    A non-empty ``regex`` selects regex mode, otherwise the ignore file
    is loaded.

    Raises:
        InvalidPatternError: If the regex is malformed
        IgnoreFileError: If the ignore file cannot be read
    """
    if regex:
        return Pattern.compile(regex)
    return load_ignore_file(ignore_file)


@dataclass
class WatchConfig:
    """
    Configuration options for a watch run.

    Attributes:
        command_line: Command to run and restart, split on whitespace
        matcher: Predicate for files found under root
        poll_interval: Seconds between fingerprint recomputations
        extra_files: Paths always included in the fingerprint
        root: Directory to walk
        grace_period: Seconds to wait after SIGTERM before SIGKILL,
            None to wait indefinitely
    """
    command_line: str
    matcher: Matcher = field(default_factory=lambda: IgnoreList.from_lines([]))
    poll_interval: float = 1.0
    extra_files: List[Path] = field(default_factory=list)
    root: Path = field(default_factory=lambda: Path("."))
    grace_period: Optional[float] = 5.0

    def __post_init__(self):
        if not self.command_line.strip():
            raise ValueError("command_line must not be empty")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive: {self.poll_interval}")
        if self.grace_period is not None and self.grace_period < 0:
            raise ValueError(f"grace_period must not be negative: {self.grace_period}")
        self.root = Path(self.root)
        self.extra_files = [Path(p) for p in self.extra_files]
