"""Exceptions raised by the storage engine."""

from __future__ import annotations


class TermstoreError(Exception):
    """Base class for all storage engine errors."""


class InvalidUserError(TermstoreError):
    """User id is missing or not a positive integer."""


class SeedMissingError(TermstoreError):
    """The packaged seed database could not be found."""


class SchemaStepError(TermstoreError):
    """A schema migration step failed."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class BridgeError(TermstoreError):
    """Fetching legacy data from the UI process failed."""


class BridgeTimeoutError(BridgeError):
    """The UI process did not answer in time."""


class BridgeRemoteError(BridgeError):
    """The UI process answered with an error marker."""


class MigrationValidationError(TermstoreError):
    """Post-migration check of a legacy data source failed."""

    def __init__(self, data_source: str) -> None:
        super().__init__(f"Migration validation failed for {data_source}")
        self.data_source = data_source
