"""Behavioural tests for the fluent statement builder."""

from __future__ import annotations

import copy

import pytest

from txquery.config import TransactionOptions
from txquery.context import CancellationContext
from txquery.exceptions import (
    ColumnCountError,
    EmptyQueryError,
    NoRowsError,
    NotATransactionError,
    OperationCancelled,
    TransactionFinalizedError,
    UnknownModeError,
    UsageError,
)
from txquery.statement import Mode, Statement, begin_transaction, commit, new_direct, rollback, transaction

UPDATE_SQL = """
    UPDATE
        products
    SET
        name = $1
    WHERE
        id = $2
"""


class CommitFailed(Exception):
    pass


class RollbackFailed(Exception):
    pass


# ----------------------------------------------------------------------
# Direct mode
def test_direct_update_runs_statement_with_arguments(driver, connection) -> None:
    driver.expect_exec("UPDATE products", ("shoes", 1))

    stmt = new_direct(connection)
    affected = stmt.set_text(UPDATE_SQL).set_arguments("shoes", 1).execute()

    assert affected == 1
    assert stmt.mode is Mode.DIRECT
    assert stmt.consumed is False
    driver.expectations_were_met()


def test_direct_row_callback_collects_rows_in_order(driver, connection) -> None:
    driver.expect_query("SELECT id FROM products", rows=[(1,), (2,), (3,)])

    collected: list[int] = []

    def _collect(rows) -> None:
        for (identifier,) in rows:
            collected.append(identifier)

    new_direct(connection).set_text("SELECT id FROM products").execute_with_rows(_collect)

    assert collected == [1, 2, 3]
    assert driver.cursors[-1].close_calls == 1
    driver.expectations_were_met()


def test_direct_fetch_one_returns_first_row(driver, connection) -> None:
    driver.expect_query("SELECT name FROM products", (1,), columns=("name",), rows=[("shoes",)])

    (name,) = (
        new_direct(connection)
        .set_text("SELECT name FROM products WHERE id = $1")
        .set_arguments(1)
        .fetch_one(columns=1)
    )

    assert name == "shoes"
    driver.expectations_were_met()


def test_commit_on_direct_statement_is_rejected_without_driver_call(driver, connection) -> None:
    stmt = new_direct(connection).set_text("SELECT 1")

    with pytest.raises(NotATransactionError, match="not a transaction"):
        commit(stmt)
    with pytest.raises(NotATransactionError):
        rollback(stmt)

    assert driver.calls == []


def test_statement_with_unrecognised_binding_is_rejected() -> None:
    stmt = Statement(object()).set_text("SELECT 1")

    with pytest.raises(UnknownModeError):
        stmt.mode
    with pytest.raises(UnknownModeError):
        stmt.execute()
    with pytest.raises(UnknownModeError):
        stmt.fetch_one()
    with pytest.raises(UnknownModeError):
        stmt.execute_with_rows(list)
    with pytest.raises(UnknownModeError):
        commit(stmt)
    with pytest.raises(UnknownModeError):
        rollback(stmt)
    assert isinstance(UnknownModeError("x"), UsageError)


def test_execute_tolerates_empty_text(driver, connection) -> None:
    driver.expect_exec("^$", rowcount=0)

    assert new_direct(connection).execute() == 0
    driver.expectations_were_met()


@pytest.mark.parametrize(
    "operation",
    [
        lambda stmt: stmt.execute_with_rows(lambda rows: None),
        lambda stmt: stmt.fetch_one(),
        lambda stmt: stmt.insert(),
        lambda stmt: stmt.insert_returning(),
    ],
)
def test_operations_requiring_text_reject_empty_statements(driver, connection, operation) -> None:
    with pytest.raises(EmptyQueryError, match="define a query"):
        operation(new_direct(connection))

    assert driver.calls == []


def test_set_arguments_replaces_previous_values(driver, connection) -> None:
    driver.expect_exec("DELETE FROM products", (7,))

    stmt = new_direct(connection).set_text("DELETE FROM products WHERE id = $1")
    stmt.set_arguments(1, 2, 3).set_arguments(7)

    assert stmt.arguments == (7,)
    stmt.execute()
    driver.expectations_were_met()


# ----------------------------------------------------------------------
# Single row helpers
def test_fetch_one_without_rows_raises_and_leaves_targets_untouched(driver, connection) -> None:
    driver.expect_query("SELECT name FROM products", (99,), rows=[])

    name = "unchanged"
    with pytest.raises(NoRowsError):
        (name,) = (
            new_direct(connection)
            .set_text("SELECT name FROM products WHERE id = $1")
            .set_arguments(99)
            .fetch_one()
        )

    assert name == "unchanged"


def test_fetch_one_rejects_column_count_mismatch(driver, connection) -> None:
    driver.expect_query("SELECT id, name", rows=[(1, "shoes")])

    with pytest.raises(ColumnCountError, match="expected 1"):
        new_direct(connection).set_text("SELECT id, name FROM products").fetch_one(columns=1)


def test_insert_returning_yields_generated_identifier(driver, connection) -> None:
    driver.expect_query("INSERT INTO products .* RETURNING id", ("boots",), rows=[(4,)])

    (identifier,) = (
        new_direct(connection)
        .set_text("INSERT INTO products (name) VALUES ($1) RETURNING id")
        .set_arguments("boots")
        .insert_returning(columns=1)
    )

    assert identifier == 4


def test_insert_returning_without_rows_raises(driver, connection) -> None:
    driver.expect_query("INSERT INTO products", rows=[])

    with pytest.raises(NoRowsError):
        new_direct(connection).set_text("INSERT INTO products DEFAULT VALUES RETURNING id").insert_returning()


# ----------------------------------------------------------------------
# Row cursor handling
def test_row_cursor_closed_when_callback_raises(driver, connection) -> None:
    driver.expect_query("SELECT id FROM products", rows=[(1,), ("not-an-int",)])

    def _parse(rows) -> None:
        for (identifier,) in rows:
            int(identifier)

    with pytest.raises(ValueError):
        new_direct(connection).set_text("SELECT id FROM products").execute_with_rows(_parse)

    assert driver.cursors[-1].close_calls == 1


def test_row_callback_result_is_returned(driver, connection) -> None:
    driver.expect_query("SELECT id FROM products", rows=[(1,), (2,)])

    total = new_direct(connection).set_text("SELECT id FROM products").execute_with_rows(
        lambda rows: sum(identifier for (identifier,) in rows)
    )

    assert total == 3
    assert driver.cursors[-1].close_calls == 1


def test_query_failure_surfaces_driver_error_verbatim(driver, connection) -> None:
    failure = RuntimeError("relation does not exist")
    driver.expect_query("SELECT id FROM missing", error=failure)

    with pytest.raises(RuntimeError) as excinfo:
        new_direct(connection).set_text("SELECT id FROM missing").execute_with_rows(lambda rows: None)

    assert excinfo.value is failure
    assert driver.cursors == []


# ----------------------------------------------------------------------
# Transaction mode
def test_transaction_flow_commits_after_all_steps(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_exec("UPDATE products", ("shoes", 1))
    driver.expect_query("SELECT id FROM products", rows=[(1,), (2,), (3,)])
    driver.expect_query("SELECT name FROM products", (1,), columns=("name",), rows=[("shoes",)])
    driver.expect_exec("INSERT INTO products", (1, "boots"))
    driver.expect_commit()

    tx = begin_transaction(connection)
    tx.set_text(UPDATE_SQL).set_arguments("shoes", 1).execute()

    identifiers: list[int] = []
    tx.set_text("SELECT id FROM products").set_arguments().execute_with_rows(
        lambda rows: identifiers.extend(identifier for (identifier,) in rows)
    )

    (name,) = tx.set_text("SELECT name FROM products WHERE id = $1").set_arguments(1).fetch_one()
    tx.set_text("INSERT INTO products (id, name) VALUES ($1, $2)").set_arguments(1, "boots").insert()
    commit(tx)

    assert tx.mode is Mode.TRANSACTION
    assert identifiers == [1, 2, 3]
    assert name == "shoes"
    assert tx.consumed is True
    driver.expectations_were_met()


def test_execute_after_commit_is_rejected_without_driver_call(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_commit()

    tx = begin_transaction(connection)
    commit(tx)
    calls_before = list(driver.calls)

    with pytest.raises(TransactionFinalizedError, match="already committed"):
        tx.set_text(UPDATE_SQL).set_arguments("shoes", 1).execute()
    with pytest.raises(TransactionFinalizedError):
        commit(tx)

    assert driver.calls == calls_before
    driver.expectations_were_met()


def test_finalization_is_visible_to_every_statement_sharing_the_transaction(
    driver, connection
) -> None:
    driver.expect_begin()
    driver.expect_rollback()

    tx = begin_transaction(connection)
    sibling = tx.spawn().set_text("SELECT 1")
    duplicate = copy.copy(tx).set_text("SELECT 2")
    rollback(tx)

    for stmt in (sibling, duplicate):
        assert stmt.consumed is True
        with pytest.raises(TransactionFinalizedError):
            stmt.fetch_one()
    driver.expectations_were_met()


def test_spawn_starts_with_empty_text_and_arguments(driver, connection) -> None:
    driver.expect_begin()

    tx = begin_transaction(connection).set_text("SELECT 1").set_arguments(1)
    child = tx.spawn()

    assert child.text == ""
    assert child.arguments == ()
    assert child.mode is Mode.TRANSACTION


def test_commit_failure_rolls_back_once_and_surfaces_commit_error(driver, connection) -> None:
    commit_error = CommitFailed("serialization failure")
    driver.expect_begin()
    driver.expect_commit(error=commit_error)
    driver.expect_rollback(error=RollbackFailed("connection lost"))

    tx = begin_transaction(connection)
    with pytest.raises(CommitFailed) as excinfo:
        commit(tx)

    assert excinfo.value is commit_error
    assert [call[0] for call in driver.calls].count("rollback") == 1
    assert tx.consumed is True
    driver.expectations_were_met()


def test_rollback_error_is_propagated(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_rollback(error=RollbackFailed("connection lost"))

    tx = begin_transaction(connection)
    with pytest.raises(RollbackFailed):
        rollback(tx)

    assert tx.consumed is True


def test_rollback_after_commit_is_rejected_without_driver_call(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_commit()

    tx = begin_transaction(connection)
    commit(tx)
    calls_before = list(driver.calls)

    with pytest.raises(TransactionFinalizedError, match="already committed"):
        rollback(tx.spawn())

    assert driver.calls == calls_before
    driver.expectations_were_met()


def test_rollback_after_failed_commit_is_rejected(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_commit(error=CommitFailed("serialization failure"))
    driver.expect_rollback()

    tx = begin_transaction(connection)
    with pytest.raises(CommitFailed):
        commit(tx)
    with pytest.raises(TransactionFinalizedError):
        rollback(tx)

    assert [call[0] for call in driver.calls] == ["begin", "commit", "rollback"]
    driver.expectations_were_met()


def test_begin_failure_propagates(driver, connection) -> None:
    driver.expect_begin(error=ConnectionError("refused"))

    with pytest.raises(ConnectionError):
        begin_transaction(connection)


def test_begin_passes_default_options(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_begin()

    begin_transaction(connection)
    begin_transaction(connection, options=TransactionOptions(read_only=True))

    assert driver.options[0].is_default
    assert driver.options[1].read_only is True


def test_usage_errors_share_base_class() -> None:
    assert issubclass(TransactionFinalizedError, UsageError)
    assert issubclass(NotATransactionError, UsageError)
    assert issubclass(EmptyQueryError, UsageError)


# ----------------------------------------------------------------------
# Cancellation plumbing
def test_transaction_operations_use_context_from_begin(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_exec("UPDATE products")

    ctx = CancellationContext.with_timeout(60)
    tx = begin_transaction(connection, ctx)
    tx.set_text(UPDATE_SQL).set_arguments("shoes", 1).execute()

    assert driver.contexts == [ctx, ctx]


def test_cancelled_context_aborts_before_begin(driver, connection) -> None:
    ctx = CancellationContext()
    ctx.cancel()

    with pytest.raises(OperationCancelled):
        begin_transaction(connection, ctx)

    assert driver.calls == []


def test_cancelling_transaction_context_stops_later_operations(driver, connection) -> None:
    driver.expect_begin()

    ctx = CancellationContext()
    tx = begin_transaction(connection, ctx)
    ctx.cancel("shutdown")

    with pytest.raises(OperationCancelled, match="shutdown"):
        tx.set_text("SELECT 1").fetch_one()

    assert [call[0] for call in driver.calls] == ["begin"]
    assert tx.consumed is False


def test_direct_operation_accepts_explicit_context(driver, connection) -> None:
    driver.expect_exec("UPDATE products")
    driver.expect_exec("UPDATE products")

    ctx = CancellationContext.with_timeout(5)
    stmt = new_direct(connection).set_text(UPDATE_SQL)
    stmt.execute(ctx=ctx)
    stmt.execute()

    assert driver.contexts[0] is ctx
    assert driver.contexts[1] is not ctx
    assert driver.contexts[1].deadline is None


# ----------------------------------------------------------------------
# Context manager
def test_transaction_context_commits_on_success(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_exec("UPDATE products")
    driver.expect_commit()

    with transaction(connection) as tx:
        tx.set_text(UPDATE_SQL).set_arguments("shoes", 1).execute()

    assert tx.consumed is True
    driver.expectations_were_met()


def test_transaction_context_rolls_back_on_error(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_rollback()

    with pytest.raises(ValueError):
        with transaction(connection):
            raise ValueError("fail")

    driver.expectations_were_met()


def test_transaction_context_respects_explicit_finalization(driver, connection) -> None:
    driver.expect_begin()
    driver.expect_rollback()

    with transaction(connection) as tx:
        rollback(tx)

    driver.expectations_were_met()
    assert [call[0] for call in driver.calls] == ["begin", "rollback"]
