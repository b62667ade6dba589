"""Predicates deciding which files take part in the fingerprint."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple, Union

from .exceptions import IgnoreFileError, InvalidPatternError


GIT_DIR = ".git"


class Matcher(ABC):
    """
    Decides whether a path counts toward the fingerprint.

    Paths are relative to the watched root and use forward slashes,
    e.g. ``src/main.go``.
    """

    @abstractmethod
    def matches(self, path: str) -> bool:
        """Return True if the path should be included."""

    def __call__(self, path: str) -> bool:
        return self.matches(path)


@dataclass(frozen=True)
class IgnoreList(Matcher):
    """
    Excludes every path starting with one of a list of literal prefixes.

    Attributes:
        prefixes: Ordered literal prefixes, ``.git`` always included
    """
    prefixes: Tuple[str, ...]

    def matches(self, path: str) -> bool:
        for prefix in self.prefixes:
            if path.startswith(prefix):
                return False
        return True

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "IgnoreList":
        """
        Build an ignore list from raw ignore-file lines.

        Blank lines are dropped, ``.git`` is appended and a leading ``./``
        is stripped from every entry.
        """
        entries = [line for line in lines if line.strip()]
        entries.append(GIT_DIR)
        return cls(prefixes=tuple(_strip_dot_slash(entry) for entry in entries))

    @classmethod
    def from_text(cls, text: str) -> "IgnoreList":
        """Build an ignore list from the contents of an ignore file."""
        return cls.from_lines(text.splitlines())


@dataclass(frozen=True)
class Pattern(Matcher):
    """
    Includes every path the regular expression matches anywhere.

    Attributes:
        regex: Compiled expression
    """
    regex: re.Pattern

    def matches(self, path: str) -> bool:
        return self.regex.search(path) is not None

    @classmethod
    def compile(cls, expression: str) -> "Pattern":
        """
        Compile an expression into a matcher.

        Raises:
            InvalidPatternError: If the expression is malformed
        """
        try:
            return cls(regex=re.compile(expression))
        except re.error as e:
            raise InvalidPatternError(f"Invalid regular expression {expression!r}: {e}") from e


def _strip_dot_slash(entry: str) -> str:
    if entry.startswith("./"):
        return entry[2:]
    return entry


def load_ignore_file(path: Union[str, Path]) -> IgnoreList:
    """
    Read an ignore file into an IgnoreList.

    Args:
        path: Path to the ignore file, usually ``.gitignore``

    Returns:
        The parsed ignore list

    Raises:
        IgnoreFileError: If the file is missing or unreadable
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise IgnoreFileError(f"Cannot read ignore file {path}: {e}") from e
    return IgnoreList.from_text(text)
