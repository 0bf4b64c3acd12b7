"""Pytest configuration shared by every test directory.

Ensure the repository root is importable so tests resolve ``txquery``
without installing it, and accept ``--cov``/``--cov-report`` switches even
when ``pytest-cov`` is absent so CI invocations keep working.
"""

from __future__ import annotations

import pathlib
import sys
import warnings

ROOT = pathlib.Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _register_noop_cov_options(parser) -> None:
    group = parser.getgroup("cov", "coverage reporting (no-op fallback)")
    options = (
        (
            "--cov",
            {
                "action": "append",
                "dest": "txquery_cov",
                "metavar": "PATH",
                "default": [],
            },
        ),
        (
            "--cov-report",
            {
                "action": "append",
                "dest": "txquery_cov_report",
                "metavar": "TYPE",
                "default": [],
            },
        ),
    )
    for opt, kwargs in options:
        try:
            group.addoption(opt, **kwargs)
        except ValueError:
            # Option already registered (e.g. by pytest-cov); respect the original.
            pass


def pytest_addoption(parser):  # type: ignore[override]
    try:
        import pytest_cov.plugin  # noqa: F401  # type: ignore[attr-defined]
    except Exception:
        _register_noop_cov_options(parser)


def pytest_configure(config):  # type: ignore[override]
    if config.pluginmanager.hasplugin("pytest_cov"):
        return
    cov_targets = config.getoption("txquery_cov", default=None)
    cov_reports = config.getoption("txquery_cov_report", default=None)
    if cov_targets or cov_reports:
        from _pytest.warning_types import PytestWarning

        warnings.warn(
            "pytest-cov is not installed; coverage options are accepted but ignored.",
            PytestWarning,
            stacklevel=2,
        )
