"""Data models for the fmon package."""

from dataclasses import dataclass
from enum import Enum


class WatchState(Enum):
    """States of the watch loop."""
    IDLE = "idle"
    RUNNING = "running"
    RESTARTING = "restarting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DirState:
    """
    Fingerprint of the tracked file set at one point in time.
    
    Attributes:
        digest: Hash of the concatenated contents of all tracked files
        file_count: Number of paths considered for hashing
    """
    digest: bytes
    file_count: int

    def __post_init__(self):
        if self.file_count < 0:
            raise ValueError(f"file_count must be non-negative: {self.file_count}")

    @property
    def hexdigest(self) -> str:
        """Hex representation of the digest."""
        return self.digest.hex()

    def __str__(self) -> str:
        return f"{self.hexdigest[:12]} ({self.file_count} files)"
