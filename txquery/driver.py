"""Driver boundary consumed by :mod:`txquery.statement`.

The statement builder never talks to a database module directly.  It relies
on the small surface described by the protocols below, implemented for PEP 249
connection factories in :mod:`txquery.dbapi` and for SQLAlchemy engines in
:mod:`txquery.engine`.  Tests can provide their own stubs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .exceptions import ColumnCountError, NoRowsError

if TYPE_CHECKING:
    from .config import TransactionOptions
    from .context import CancellationContext

Row = tuple[Any, ...]
Arguments = Sequence[Any]

__all__ = [
    "Arguments",
    "ConnectionHandle",
    "Executor",
    "Row",
    "RowCursor",
    "TransactionHandle",
    "find_interrupt",
    "scan_row",
]


@runtime_checkable
class RowCursor(Protocol):
    """Lazy, forward-only sequence of rows produced by a query."""

    @property
    def columns(self) -> tuple[str, ...]:  # pragma: no cover - runtime duck typing
        """Column names of the result set."""

    def __iter__(self) -> Iterator[Row]:  # pragma: no cover - runtime duck typing
        """Iterate over the remaining rows."""

    def fetchone(self) -> Row | None:  # pragma: no cover - runtime duck typing
        """Advance and return the next row, ``None`` when exhausted."""

    def close(self) -> None:  # pragma: no cover - runtime duck typing
        """Release the cursor and anything it holds."""


class Executor(Protocol):
    """Operations shared by transaction handles and direct connection handles."""

    def execute(
        self, ctx: CancellationContext, sql: str, args: Arguments
    ) -> int:  # pragma: no cover - runtime duck typing
        """Run a non-returning command and report the affected row count."""

    def query(
        self, ctx: CancellationContext, sql: str, args: Arguments
    ) -> RowCursor:  # pragma: no cover - runtime duck typing
        """Run a row-returning query and hand back an open cursor."""

    def query_one(
        self, ctx: CancellationContext, sql: str, args: Arguments
    ) -> Row | None:  # pragma: no cover - runtime duck typing
        """Run a row-returning query and return its first row, if any."""


class TransactionHandle(Executor, Protocol):
    """An open driver transaction."""

    def commit(self) -> None:  # pragma: no cover - runtime duck typing
        """Commit the transaction."""

    def rollback(self) -> None:  # pragma: no cover - runtime duck typing
        """Roll the transaction back."""


class ConnectionHandle(Executor, Protocol):
    """A shared connection or pool able to run statements and begin transactions."""

    def begin(
        self, ctx: CancellationContext, options: TransactionOptions
    ) -> TransactionHandle:  # pragma: no cover - runtime duck typing
        """Start a new transaction."""


def scan_row(row: Sequence[Any] | None, columns: int | None = None) -> Row:
    """Validate a single-row result and return it as a tuple."""

    if row is None:
        raise NoRowsError("query returned no rows")
    values = tuple(row)
    if columns is not None and len(values) != columns:
        raise ColumnCountError(
            f"expected {columns} destination column(s), query returned {len(values)}"
        )
    return values


def find_interrupt(raw_connection: object) -> Callable[[], None] | None:
    """Return the driver hook aborting an in-flight statement, when one exists.

    psycopg exposes ``cancel()`` and sqlite3 ``interrupt()``.
    """

    if raw_connection is None:
        return None
    for name in ("cancel", "interrupt"):
        method = getattr(raw_connection, name, None)
        if callable(method):
            return method
    return None
