"""Custom exceptions for the fmon package."""


class FmonError(Exception):
    """Base exception for all fmon errors."""
    pass


class ConfigError(FmonError):
    """Invalid or unusable configuration."""
    pass


class IgnoreFileError(ConfigError):
    """Ignore file is missing or unreadable."""
    pass


class InvalidPatternError(ConfigError):
    """Regular expression could not be compiled."""
    pass


class InvalidDurationError(ConfigError):
    """Duration string could not be parsed."""
    pass


class SupervisorError(FmonError):
    """Error related to the managed child process."""
    pass


class SpawnError(SupervisorError):
    """Command could not be started."""
    pass


class ProcessControlError(SupervisorError):
    """
    The supervisor lost the ability to signal its child.

    Raised when the process group lookup fails for any reason other than
    the process already being gone.
    """
    pass


class WatchLoopError(FmonError):
    """Error related to the watch loop."""
    pass


class WatchLoopAlreadyRunningError(WatchLoopError):
    """Watch loop is already running."""
    pass
