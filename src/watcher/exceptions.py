"""Custom exceptions for the watch engine."""


class WatcherError(Exception):
    """Base exception for all watcher errors."""
    pass


class RootNotFoundError(WatcherError):
    """Specified watch directory does not exist."""
    pass


class WatcherNotRunningError(WatcherError):
    """Watch process is not running."""
    pass


class WatcherAlreadyRunningError(WatcherError):
    """Watch process is already running."""
    pass
