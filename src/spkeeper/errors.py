"""Exception types raised by the sync engine and its collaborators."""

from __future__ import annotations


class SpKeeperError(Exception):
    """Base class for every failure the CLI knows how to report."""


class ConfigError(SpKeeperError):
    """Configuration is missing a required value or points at a bad location."""


class ConnectionFailedError(SpKeeperError):
    """The database server could not be reached or rejected the login."""


class QueryError(SpKeeperError):
    """Listing stored procedures failed."""


class FetchError(SpKeeperError):
    """Reading one procedure's definition failed."""

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name


class MalformedRowError(FetchError):
    """A definition row did not have the expected single text column."""


class OutputDirError(SpKeeperError):
    """The per-database output directory could not be created."""


class SaveBatchError(SpKeeperError):
    """One or more procedures could not be saved."""

    def __init__(self, failure_count: int):
        super().__init__(f"{failure_count} errors occurred while saving stored procedures")
        self.failure_count = failure_count


class RepoError(SpKeeperError):
    """A git operation on the output repository failed."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode
