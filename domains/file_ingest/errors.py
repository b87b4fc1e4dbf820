"""Exceptions raised inside the file ingestion domain."""


class ClerkError(Exception):
    """Base error for the project."""


class WatcherSetupError(ClerkError):
    """The watcher could not attach to its directory. Never retried internally."""


class RelocationError(ClerkError):
    """A move, directory creation or hash step failed."""


class ClassifierError(ClerkError):
    """The primary classifier is unavailable or returned an error."""


class StorageError(ClerkError):
    """Rules or activity could not be loaded or saved."""
