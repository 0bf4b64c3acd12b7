"""Driver adapter for PEP 249 (DB-API 2.0) connections.

:class:`DBAPIDatabase` wraps a callable producing raw database connections
(for example ``functools.partial(sqlite3.connect, path)`` or a psycopg
connection factory) and implements :class:`~txquery.driver.ConnectionHandle`:

* direct calls emulate per-statement autocommit: a connection is checked out,
  the statement runs, the work is committed on success and rolled back on
  failure, and the cursor and connection are closed afterwards;
* :meth:`DBAPIDatabase.begin` checks out a connection that stays with the
  returned :class:`DBAPITransaction` until it is committed or rolled back.

Row cursors returned by ``query`` keep their connection until they are
closed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any, Protocol

from .config import TransactionOptions
from .context import CancellationContext
from .driver import Arguments, Row, find_interrupt
from .exceptions import TransactionDoneError

__all__ = ["CursorRows", "DBAPIDatabase", "DBAPITransaction"]

LOGGER = logging.getLogger(__name__)


class SupportsCursor(Protocol):
    """Protocol representing the minimum surface of a DB connection."""

    def cursor(self) -> Any:  # pragma: no cover - runtime duck typing
        """Return a cursor object."""

    def commit(self) -> None:  # pragma: no cover - runtime duck typing
        """Commit the current transaction."""

    def rollback(self) -> None:  # pragma: no cover - runtime duck typing
        """Rollback the current transaction."""

    def close(self) -> None:  # pragma: no cover - runtime duck typing
        """Close the connection and release the underlying resources."""


ConnectionFactory = Callable[[], SupportsCursor]


def _run(cursor: Any, sql: str, args: Arguments) -> None:
    if args:
        cursor.execute(sql, tuple(args))
    else:
        cursor.execute(sql)


def _close_cursor(cursor: Any) -> None:
    close = getattr(cursor, "close", None)
    if callable(close):
        close()


class CursorRows:
    """:class:`~txquery.driver.RowCursor` over a DB-API cursor."""

    def __init__(self, cursor: Any, *, on_close: Callable[[], None] | None = None) -> None:
        self._cursor = cursor
        self._on_close = on_close
        self._closed = False

    @property
    def columns(self) -> tuple[str, ...]:
        description = getattr(self._cursor, "description", None) or ()
        return tuple(column[0] for column in description)

    @property
    def closed(self) -> bool:
        return self._closed

    def fetchone(self) -> Row | None:
        row = self._cursor.fetchone()
        return None if row is None else tuple(row)

    def __iter__(self) -> Iterator[Row]:
        while True:
            row = self.fetchone()
            if row is None:
                return
            yield row

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            _close_cursor(self._cursor)
        finally:
            if self._on_close is not None:
                self._on_close()


class DBAPITransaction:
    """Transaction bound to a single checked-out DB-API connection."""

    def __init__(self, connection: SupportsCursor, *, owns_connection: bool = True) -> None:
        self._connection = connection
        self._owns_connection = owns_connection
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def execute(self, ctx: CancellationContext, sql: str, args: Arguments) -> int:
        self._ensure_open()
        with ctx.interruptible(find_interrupt(self._connection)):
            cursor = self._connection.cursor()
            try:
                _run(cursor, sql, args)
                return int(getattr(cursor, "rowcount", -1))
            finally:
                _close_cursor(cursor)

    def query(self, ctx: CancellationContext, sql: str, args: Arguments) -> CursorRows:
        self._ensure_open()
        with ctx.interruptible(find_interrupt(self._connection)):
            cursor = self._connection.cursor()
            try:
                _run(cursor, sql, args)
            except Exception:
                _close_cursor(cursor)
                raise
        return CursorRows(cursor)

    def query_one(self, ctx: CancellationContext, sql: str, args: Arguments) -> Row | None:
        self._ensure_open()
        with ctx.interruptible(find_interrupt(self._connection)):
            cursor = self._connection.cursor()
            try:
                _run(cursor, sql, args)
                row = cursor.fetchone()
            finally:
                _close_cursor(cursor)
        return None if row is None else tuple(row)

    def commit(self) -> None:
        """Commit; on failure the transaction stays open so it can be rolled back."""

        self._ensure_open()
        self._connection.commit()
        self._done = True
        LOGGER.debug("DB-API transaction committed")
        self._release()

    def rollback(self) -> None:
        self._ensure_open()
        self._done = True
        try:
            self._connection.rollback()
            LOGGER.debug("DB-API transaction rolled back")
        finally:
            self._release()

    def _ensure_open(self) -> None:
        if self._done:
            raise TransactionDoneError("transaction has already been committed or rolled back")

    def _release(self) -> None:
        if self._owns_connection:
            self._connection.close()


class DBAPIDatabase:
    """Direct-mode handle over a DB-API connection factory.

    Parameters
    ----------
    connection_factory:
        Callable returning a database connection each time it is invoked.
    owns_connections:
        Close connections once the adapter is done with them.  Disable when
        the factory hands out a connection managed elsewhere.
    """

    def __init__(
        self, connection_factory: ConnectionFactory, *, owns_connections: bool = True
    ) -> None:
        self._connection_factory = connection_factory
        self._owns_connections = owns_connections

    @classmethod
    def shared(cls, connection: SupportsCursor) -> DBAPIDatabase:
        """Run every statement on one externally managed connection."""

        return cls(lambda: connection, owns_connections=False)

    # ------------------------------------------------------------------
    # ConnectionHandle
    def begin(self, ctx: CancellationContext, options: TransactionOptions) -> DBAPITransaction:
        ctx.raise_if_done()
        connection = self._connection_factory()
        try:
            prelude = options.to_sql()
            if prelude is not None:
                with ctx.interruptible(find_interrupt(connection)):
                    cursor = connection.cursor()
                    try:
                        cursor.execute(prelude)
                    finally:
                        _close_cursor(cursor)
        except Exception:
            self._discard(connection)
            raise
        LOGGER.debug("DB-API transaction started", extra={"options": options.model_dump()})
        return DBAPITransaction(connection, owns_connection=self._owns_connections)

    def execute(self, ctx: CancellationContext, sql: str, args: Arguments) -> int:
        def _command(cursor: Any) -> int:
            _run(cursor, sql, args)
            return int(getattr(cursor, "rowcount", -1))

        return self._autocommit(ctx, _command)

    def query_one(self, ctx: CancellationContext, sql: str, args: Arguments) -> Row | None:
        def _command(cursor: Any) -> Row | None:
            _run(cursor, sql, args)
            row = cursor.fetchone()
            return None if row is None else tuple(row)

        return self._autocommit(ctx, _command)

    def query(self, ctx: CancellationContext, sql: str, args: Arguments) -> CursorRows:
        ctx.raise_if_done()
        connection = self._connection_factory()
        try:
            with ctx.interruptible(find_interrupt(connection)):
                cursor = connection.cursor()
                try:
                    _run(cursor, sql, args)
                except Exception:
                    _close_cursor(cursor)
                    raise
        except Exception:
            self._discard(connection)
            raise

        def _finish() -> None:
            try:
                connection.commit()
            finally:
                self._release(connection)

        return CursorRows(cursor, on_close=_finish)

    # ------------------------------------------------------------------
    # Internal helpers
    def _autocommit(self, ctx: CancellationContext, command: Callable[[Any], Any]) -> Any:
        ctx.raise_if_done()
        connection = self._connection_factory()
        try:
            with ctx.interruptible(find_interrupt(connection)):
                cursor = connection.cursor()
                try:
                    result = command(cursor)
                except Exception:
                    connection.rollback()
                    raise
                else:
                    connection.commit()
                    return result
                finally:
                    _close_cursor(cursor)
        finally:
            self._release(connection)

    def _discard(self, connection: SupportsCursor) -> None:
        try:
            connection.rollback()
        finally:
            self._release(connection)

    def _release(self, connection: SupportsCursor) -> None:
        if self._owns_connections:
            connection.close()
