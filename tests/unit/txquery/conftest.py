"""Fixtures wiring the stub driver into statement builder tests."""

from __future__ import annotations

import pytest

from tests.txquery_stubs import StubConnection, StubDriver


@pytest.fixture()
def driver() -> StubDriver:
    return StubDriver()


@pytest.fixture()
def connection(driver: StubDriver) -> StubConnection:
    return StubConnection(driver)
