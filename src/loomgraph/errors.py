"""Error taxonomy and the single classification point for failure handling.

Every component that decides between aborting, logging-and-continuing, or
quietly continuing asks `classify()` instead of inspecting exception types
itself. The ingestion loop is row-partitioned: only FATAL outcomes escape it.
"""

from __future__ import annotations

from enum import Enum


class LoomGraphError(Exception):
    """Base class for all LoomGraph errors."""


class InputValidationError(LoomGraphError):
    """The ingestion request is malformed. Raised before any store write."""


class StoreError(LoomGraphError):
    """A store operation failed."""


class StoreConnectionError(StoreError):
    """Transient connect/timeout failure. Retried by the connection handle."""


class StoreUnavailableError(StoreError):
    """The store could not be reached after all reconnect attempts."""


class StorePermissionError(StoreError):
    """The store refused access to a table (locked or undefined)."""

    def __init__(self, table: str, operation: str) -> None:
        super().__init__(f"Permission denied: {operation} on table '{table}'")
        self.table = table
        self.operation = operation


class RecordExistsError(StoreError):
    """A create collided with an existing record id."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record '{record_id}' already exists")
        self.record_id = record_id


class Outcome(str, Enum):
    FATAL = "fatal"  # abort the run, report once
    RECOVERABLE = "recoverable"  # log a warning, count as not-inserted, continue
    IGNORABLE = "ignorable"  # expected condition, debug log only


def classify(exc: BaseException) -> Outcome:
    """Map an exception to the action the caller should take.

    - InputValidationError / StoreUnavailableError: the run cannot proceed.
    - RecordExistsError: a lost create race; the record is already there.
    - Anything else deriving from Exception: local to one record or row.
    - BaseException outside Exception (cancellation, exit): always fatal.
    """
    if isinstance(exc, (InputValidationError, StoreUnavailableError)):
        return Outcome.FATAL
    if isinstance(exc, RecordExistsError):
        return Outcome.IGNORABLE
    if isinstance(exc, Exception):
        return Outcome.RECOVERABLE
    return Outcome.FATAL
