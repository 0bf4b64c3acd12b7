"""SQLAlchemy engine adapter and pooled engine construction."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, CursorResult, Engine, RootTransaction
from sqlalchemy.pool import QueuePool

from .config import DatabaseSettings, TransactionOptions
from .context import CancellationContext
from .driver import Arguments, Row, find_interrupt
from .exceptions import TransactionDoneError

__all__ = [
    "EngineDatabase",
    "EngineTransaction",
    "ResultRows",
    "create_engine_from_config",
]

LOGGER = logging.getLogger(__name__)


def create_engine_from_config(settings: DatabaseSettings) -> Engine:
    """Instantiate a SQLAlchemy engine backed by :class:`QueuePool`."""

    pool = settings.pool
    return create_engine(
        settings.dsn,
        echo=settings.echo_statements,
        poolclass=QueuePool,
        pool_size=int(pool.size),
        max_overflow=int(pool.max_overflow),
        pool_timeout=None if pool.timeout is None else float(pool.timeout),
        pool_recycle=float(pool.recycle),
        pool_use_lifo=bool(pool.use_lifo),
        pool_pre_ping=True,
    )


def _exec(connection: Connection, sql: str, args: Arguments) -> CursorResult[Any]:
    if args:
        return connection.exec_driver_sql(sql, tuple(args))
    return connection.exec_driver_sql(sql)


def _interrupt_for(connection: Connection) -> Callable[[], None] | None:
    pooled = connection.connection
    return find_interrupt(getattr(pooled, "driver_connection", None))


class ResultRows:
    """:class:`~txquery.driver.RowCursor` over a SQLAlchemy cursor result."""

    def __init__(
        self, result: CursorResult[Any], *, on_close: Callable[[], None] | None = None
    ) -> None:
        self._result = result
        self._on_close = on_close
        self._closed = False

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self._result.keys())

    @property
    def closed(self) -> bool:
        return self._closed

    def fetchone(self) -> Row | None:
        row = self._result.fetchone()
        return None if row is None else tuple(row)

    def __iter__(self) -> Iterator[Row]:
        for row in self._result:
            yield tuple(row)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._result.close()
        finally:
            if self._on_close is not None:
                self._on_close()


class EngineTransaction:
    """Transaction held on one pooled SQLAlchemy connection."""

    def __init__(self, connection: Connection, transaction: RootTransaction) -> None:
        self._connection = connection
        self._transaction = transaction
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def execute(self, ctx: CancellationContext, sql: str, args: Arguments) -> int:
        self._ensure_open()
        with ctx.interruptible(_interrupt_for(self._connection)):
            result = _exec(self._connection, sql, args)
            try:
                return int(result.rowcount)
            finally:
                result.close()

    def query(self, ctx: CancellationContext, sql: str, args: Arguments) -> ResultRows:
        self._ensure_open()
        with ctx.interruptible(_interrupt_for(self._connection)):
            result = _exec(self._connection, sql, args)
        return ResultRows(result)

    def query_one(self, ctx: CancellationContext, sql: str, args: Arguments) -> Row | None:
        self._ensure_open()
        with ctx.interruptible(_interrupt_for(self._connection)):
            row = _exec(self._connection, sql, args).first()
        return None if row is None else tuple(row)

    def commit(self) -> None:
        """Commit; on failure the transaction stays open so it can be rolled back."""

        self._ensure_open()
        self._transaction.commit()
        self._done = True
        LOGGER.debug("Engine transaction committed")
        self._connection.close()

    def rollback(self) -> None:
        self._ensure_open()
        self._done = True
        try:
            self._transaction.rollback()
            LOGGER.debug("Engine transaction rolled back")
        finally:
            self._connection.close()

    def _ensure_open(self) -> None:
        if self._done:
            raise TransactionDoneError("transaction has already been committed or rolled back")


class EngineDatabase:
    """Direct-mode handle over a pooled SQLAlchemy :class:`Engine`.

    Statements use the driver's own placeholder style through
    :meth:`Connection.exec_driver_sql`.
    """

    def __init__(
        self, engine: Engine, *, default_options: TransactionOptions | None = None
    ) -> None:
        self._engine = engine
        self._default_options = default_options or TransactionOptions()

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> EngineDatabase:
        return cls(create_engine_from_config(settings), default_options=settings.transaction)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ------------------------------------------------------------------
    # ConnectionHandle
    def begin(self, ctx: CancellationContext, options: TransactionOptions) -> EngineTransaction:
        ctx.raise_if_done()
        effective = self._default_options if options.is_default else options
        connection = self._engine.connect()
        try:
            if effective.isolation_level is not None:
                connection.execution_options(isolation_level=effective.isolation_level)
            transaction = connection.begin()
            if effective.read_only:
                with ctx.interruptible(_interrupt_for(connection)):
                    connection.exec_driver_sql("SET TRANSACTION READ ONLY")
        except Exception:
            connection.close()
            raise
        LOGGER.debug("Engine transaction started", extra={"options": effective.model_dump()})
        return EngineTransaction(connection, transaction)

    def execute(self, ctx: CancellationContext, sql: str, args: Arguments) -> int:
        ctx.raise_if_done()
        with self._engine.begin() as connection:
            with ctx.interruptible(_interrupt_for(connection)):
                result = _exec(connection, sql, args)
                try:
                    return int(result.rowcount)
                finally:
                    result.close()

    def query_one(self, ctx: CancellationContext, sql: str, args: Arguments) -> Row | None:
        ctx.raise_if_done()
        with self._engine.begin() as connection:
            with ctx.interruptible(_interrupt_for(connection)):
                row = _exec(connection, sql, args).first()
        return None if row is None else tuple(row)

    def query(self, ctx: CancellationContext, sql: str, args: Arguments) -> ResultRows:
        ctx.raise_if_done()
        connection = self._engine.connect()
        try:
            connection.begin()
            with ctx.interruptible(_interrupt_for(connection)):
                result = _exec(connection, sql, args)
        except Exception:
            connection.close()
            raise

        def _finish() -> None:
            try:
                connection.commit()
            finally:
                connection.close()

        return ResultRows(result, on_close=_finish)
