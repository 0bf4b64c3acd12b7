"""Fluent statement builder over a transaction or a shared connection.

A :class:`Statement` holds SQL text and positional arguments and runs them in
one of two modes:

* **transaction** - bound to an open driver transaction created by
  :func:`begin_transaction`; finalized with :func:`commit` or :func:`rollback`;
* **direct** - bound to a shared connection or pool handle created by
  :func:`new_direct`; never owns or closes it.

Typical usage::

    stmt = begin_transaction(database)
    stmt.set_text("UPDATE products SET name = $1 WHERE id = $2").set_arguments("shoes", 1).execute()
    (name,) = stmt.spawn().set_text("SELECT name FROM products WHERE id = $1").set_arguments(1).fetch_one()
    commit(stmt)

The finalized flag lives on the transaction state shared by every statement
built against the same transaction, so once one of them commits or rolls back
all of them refuse to run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .config import TransactionOptions
from .context import CancellationContext
from .driver import ConnectionHandle, Executor, Row, RowCursor, TransactionHandle, scan_row
from .exceptions import (
    EmptyQueryError,
    NotATransactionError,
    TransactionFinalizedError,
    UnknownModeError,
)

__all__ = [
    "Mode",
    "Statement",
    "begin_transaction",
    "commit",
    "new_direct",
    "rollback",
    "transaction",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_FINALIZED = "transaction is already committed, you have to start a new transaction"
_EMPTY_QUERY = "you need to define a query"
_NOT_A_TRANSACTION = "could not {action} because instance is not a transaction, it is a direct statement"


class Mode(str, Enum):
    """Execution context of a statement."""

    TRANSACTION = "transaction"
    DIRECT = "direct"


@dataclass(slots=True)
class _TransactionState:
    """Transaction shared by every statement built against it."""

    handle: TransactionHandle
    context: CancellationContext
    consumed: bool = False


@dataclass(frozen=True, slots=True)
class _TransactionBinding:
    state: _TransactionState

    @property
    def mode(self) -> Mode:
        return Mode.TRANSACTION


@dataclass(frozen=True, slots=True)
class _DirectBinding:
    connection: ConnectionHandle

    @property
    def mode(self) -> Mode:
        return Mode.DIRECT


_Binding = _TransactionBinding | _DirectBinding


class Statement:
    """Mutable SQL text and arguments plus the handle they run against.

    Not safe for concurrent use; create one per logical unit of work.
    """

    __slots__ = ("_binding", "_text", "_arguments")

    def __init__(self, binding: _Binding) -> None:
        self._binding = binding
        self._text = ""
        self._arguments: tuple[Any, ...] = ()

    # ------------------------------------------------------------------
    # Introspection
    @property
    def mode(self) -> Mode:
        binding = self._binding
        if isinstance(binding, (_TransactionBinding, _DirectBinding)):
            return binding.mode
        raise UnknownModeError(f"unknown statement mode: {binding!r}")

    @property
    def text(self) -> str:
        return self._text

    @property
    def arguments(self) -> tuple[Any, ...]:
        return self._arguments

    @property
    def consumed(self) -> bool:
        """``True`` once the underlying transaction has been finalized."""

        binding = self._binding
        return isinstance(binding, _TransactionBinding) and binding.state.consumed

    # ------------------------------------------------------------------
    # Composition
    def set_text(self, sql: str) -> Statement:
        """Replace the SQL text."""

        self._text = sql
        return self

    def set_arguments(self, *values: Any) -> Statement:
        """Replace the positional bind arguments."""

        self._arguments = values
        return self

    def spawn(self) -> Statement:
        """Return an empty statement bound to the same transaction or connection."""

        return Statement(self._binding)

    # ------------------------------------------------------------------
    # Terminal operations
    def execute(self, *, ctx: CancellationContext | None = None) -> int:
        """Run the statement as a command; empty text is passed to the driver as is."""

        executor, context = self._resolve(ctx, require_text=False)
        return executor.execute(context, self._text, self._arguments)

    def execute_with_rows(
        self,
        callback: Callable[[RowCursor], T],
        *,
        ctx: CancellationContext | None = None,
    ) -> T:
        """Run a query and hand the open row cursor to ``callback``.

        The cursor is closed once the callback returns or raises.  The
        callback's return value is passed back to the caller.
        """

        executor, context = self._resolve(ctx)
        rows = executor.query(context, self._text, self._arguments)
        try:
            return callback(rows)
        finally:
            rows.close()

    def fetch_one(
        self, *, columns: int | None = None, ctx: CancellationContext | None = None
    ) -> Row:
        """Return the first row of the query.

        Raises :class:`~txquery.exceptions.NoRowsError` when the query yields
        nothing and :class:`~txquery.exceptions.ColumnCountError` when
        ``columns`` is given and does not match the row width.
        """

        executor, context = self._resolve(ctx)
        return scan_row(executor.query_one(context, self._text, self._arguments), columns)

    def insert(self, *, ctx: CancellationContext | None = None) -> int:
        """Run an insert that returns nothing but the affected row count."""

        executor, context = self._resolve(ctx)
        return executor.execute(context, self._text, self._arguments)

    def insert_returning(
        self, *, columns: int | None = None, ctx: CancellationContext | None = None
    ) -> Row:
        """Run an insert with a ``RETURNING`` clause and return the produced row."""

        executor, context = self._resolve(ctx)
        return scan_row(executor.query_one(context, self._text, self._arguments), columns)

    # ------------------------------------------------------------------
    # Internal helpers
    def _resolve(
        self, ctx: CancellationContext | None, *, require_text: bool = True
    ) -> tuple[Executor, CancellationContext]:
        if require_text and not self._text:
            raise EmptyQueryError(_EMPTY_QUERY)
        binding = self._binding
        if isinstance(binding, _TransactionBinding):
            if binding.state.consumed:
                raise TransactionFinalizedError(_FINALIZED)
            return binding.state.handle, ctx or binding.state.context
        if isinstance(binding, _DirectBinding):
            return binding.connection, ctx or CancellationContext.background()
        raise UnknownModeError(f"unknown statement mode: {binding!r}")

    def _transaction_state(self, action: str) -> _TransactionState:
        binding = self._binding
        if isinstance(binding, _TransactionBinding):
            return binding.state
        if isinstance(binding, _DirectBinding):
            raise NotATransactionError(_NOT_A_TRANSACTION.format(action=action))
        raise UnknownModeError(f"unknown statement mode: {binding!r}")

    def __repr__(self) -> str:
        return (
            f"Statement(mode={self.mode.value!r}, text={self._text!r}, "
            f"arguments={self._arguments!r}, consumed={self.consumed!r})"
        )


def begin_transaction(
    connection: ConnectionHandle,
    ctx: CancellationContext | None = None,
    options: TransactionOptions | None = None,
) -> Statement:
    """Start a transaction on ``connection`` and return a statement bound to it.

    ``ctx`` defaults to a background context and is used for the begin call
    and every later operation on the transaction.
    """

    context = ctx or CancellationContext.background()
    context.raise_if_done()
    handle = connection.begin(context, options or TransactionOptions())
    return Statement(_TransactionBinding(_TransactionState(handle=handle, context=context)))


def new_direct(connection: ConnectionHandle) -> Statement:
    """Return a statement running directly against a shared connection or pool."""

    return Statement(_DirectBinding(connection))


def commit(statement: Statement) -> None:
    """Commit the statement's transaction.

    When the commit fails a single rollback is attempted; its outcome is
    discarded and the commit error is raised.  The transaction counts as
    finalized either way.
    """

    state = statement._transaction_state("commit")
    if state.consumed:
        raise TransactionFinalizedError(_FINALIZED)
    state.consumed = True
    try:
        state.handle.commit()
    except Exception:
        try:
            state.handle.rollback()
        except Exception:
            LOGGER.debug("Rollback after failed commit also failed", exc_info=True)
        raise


def rollback(statement: Statement) -> None:
    """Roll back the statement's transaction; driver errors propagate unchanged.

    A transaction that is already committed or rolled back is rejected
    without reaching the driver.
    """

    state = statement._transaction_state("rollback")
    if state.consumed:
        raise TransactionFinalizedError(_FINALIZED)
    state.consumed = True
    state.handle.rollback()


@contextmanager
def transaction(
    connection: ConnectionHandle,
    ctx: CancellationContext | None = None,
    options: TransactionOptions | None = None,
) -> Iterator[Statement]:
    """Yield a transaction statement, committing on success and rolling back on error.

    Nothing is done on exit when the block already finalized the transaction.
    """

    statement = begin_transaction(connection, ctx, options)
    try:
        yield statement
    except BaseException:
        if not statement.consumed:
            try:
                rollback(statement)
            except Exception:
                LOGGER.debug("Rollback after failed transaction block failed", exc_info=True)
        raise
    if not statement.consumed:
        commit(statement)
