"""Fluent statement builder running SQL in a transaction or directly on a shared connection."""

__version__ = "0.1.0"

from .config import DatabasePoolConfig, DatabaseSettings, TransactionOptions
from .context import CancellationContext
from .dbapi import DBAPIDatabase, DBAPITransaction
from .driver import ConnectionHandle, RowCursor, TransactionHandle
from .engine import EngineDatabase, EngineTransaction, create_engine_from_config
from .exceptions import (
    ColumnCountError,
    DeadlineExceeded,
    DriverError,
    EmptyQueryError,
    NoRowsError,
    NotATransactionError,
    OperationCancelled,
    QueryError,
    TransactionDoneError,
    TransactionFinalizedError,
    UnknownModeError,
    UsageError,
)
from .statement import Mode, Statement, begin_transaction, commit, new_direct, rollback, transaction

__all__ = [
    "CancellationContext",
    "ColumnCountError",
    "ConnectionHandle",
    "DBAPIDatabase",
    "DBAPITransaction",
    "DatabasePoolConfig",
    "DatabaseSettings",
    "DeadlineExceeded",
    "DriverError",
    "EmptyQueryError",
    "EngineDatabase",
    "EngineTransaction",
    "Mode",
    "NoRowsError",
    "NotATransactionError",
    "OperationCancelled",
    "QueryError",
    "RowCursor",
    "Statement",
    "TransactionDoneError",
    "TransactionFinalizedError",
    "TransactionHandle",
    "TransactionOptions",
    "UnknownModeError",
    "UsageError",
    "begin_transaction",
    "commit",
    "create_engine_from_config",
    "new_direct",
    "rollback",
    "transaction",
]
