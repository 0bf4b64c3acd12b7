"""Exceptions raised by the fluent statement builder and its driver adapters."""

from __future__ import annotations

__all__ = [
    "ColumnCountError",
    "DeadlineExceeded",
    "DriverError",
    "EmptyQueryError",
    "NoRowsError",
    "NotATransactionError",
    "OperationCancelled",
    "QueryError",
    "TransactionDoneError",
    "TransactionFinalizedError",
    "UnknownModeError",
    "UsageError",
]


class QueryError(RuntimeError):
    """Base class for failures raised by :mod:`txquery` itself."""


class UsageError(QueryError):
    """The caller misused a statement; raised before any driver call."""


class EmptyQueryError(UsageError):
    """A terminal operation that needs SQL text was invoked without any."""


class TransactionFinalizedError(UsageError):
    """The statement's transaction was already committed or rolled back."""


class NotATransactionError(UsageError):
    """A transaction-only operation was invoked on a direct statement."""


class UnknownModeError(UsageError):
    """The statement is bound to something that is neither mode."""


class DriverError(QueryError):
    """Failure detected on the driver side of the boundary by the bundled adapters."""


class NoRowsError(DriverError):
    """A single-row query produced no rows."""


class ColumnCountError(DriverError):
    """The returned row does not have the number of columns the caller expects."""


class TransactionDoneError(DriverError):
    """The driver transaction handle has already been finalized."""


class OperationCancelled(DriverError):
    """The cancellation context was cancelled before or during a driver call."""


class DeadlineExceeded(OperationCancelled, TimeoutError):
    """The cancellation context's deadline passed."""
