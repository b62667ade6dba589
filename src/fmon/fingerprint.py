"""Content fingerprinting of a directory tree."""

import hashlib
import logging
import os
from pathlib import Path
from typing import Iterator, List, Sequence, Union

from .matcher import Matcher
from .models import DirState


logger = logging.getLogger(__name__)

HASH_ALGORITHM = "sha1"
CHUNK_SIZE = 65536


def iter_files(root: Union[str, Path]) -> Iterator[str]:
    """
    Walk a tree depth-first in lexicographic order.

    Yields the root-relative, forward-slash path of every non-directory
    entry. Directory symlinks are not followed. Entries that cannot be
    listed or inspected are skipped.

    Args:
        root: Directory to walk

    Yields:
        Relative paths such as ``src/main.go``
    """
    yield from _walk(os.fspath(root), "")


def _walk(directory: str, prefix: str) -> Iterator[str]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return

    for entry in entries:
        rel_path = prefix + entry.name
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError as e:
            logger.debug(f"Skipping {rel_path}: {e}")
            continue

        if is_dir:
            yield from _walk(entry.path, rel_path + "/")
        else:
            yield rel_path


def collect_paths(
    root: Union[str, Path],
    matcher: Matcher,
    extra_files: Sequence[Union[str, Path]] = (),
) -> List[str]:
    """
    Resolve the ordered set of paths that make up the fingerprint.

    Extra files come first, in the given order, and bypass the matcher.
    They are followed by every matched file found under ``root``.

    Returns:
        Paths relative to ``root`` (extra files exactly as given)
    """
    paths = [os.fspath(p) for p in extra_files]
    for rel_path in iter_files(root):
        if matcher.matches(rel_path):
            paths.append(rel_path)
    return paths


def compute_state(
    root: Union[str, Path],
    matcher: Matcher,
    extra_files: Sequence[Union[str, Path]] = (),
) -> DirState:
    """
    Compute the fingerprint of the tracked file set.

    The bytes of every path are streamed, in path order, into a single
    running hash. A path that cannot be opened or read is skipped but
    still counted, so ``file_count`` is the number of paths considered
    rather than the number of files actually hashed.

    Args:
        root: Directory to walk
        matcher: Predicate for files found under ``root``
        extra_files: Paths always included, relative to ``root`` unless absolute

    Returns:
        DirState for this poll
    """
    root = Path(root)
    paths = collect_paths(root, matcher, extra_files)
    hasher = hashlib.new(HASH_ALGORITHM)

    for rel_path in paths:
        try:
            with open(root / rel_path, "rb") as f:
                for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                    hasher.update(chunk)
        except OSError as e:
            logger.debug(f"Skipping {rel_path}: {e}")

    return DirState(digest=hasher.digest(), file_count=len(paths))
