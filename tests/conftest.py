"""Shared test fixtures for orgauth.

Provides config isolation and output reset. Fixtures are discovered automatically by pytest.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from orgauth.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and logging handlers after every test.

    The manager and the handler installed by configure_logging() cache
    sys.stdout/sys.stderr at creation time; capture fixtures swap those
    streams per test.
    """
    yield
    reset_output()
    logger = logging.getLogger("orgauth")
    for handler in list(logger.handlers):
        if getattr(handler, "_orgauth_handler", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and credentials to a temporary directory.

    Points the XDG directories into tmp_path, clears ORGAUTH_* variables,
    and changes the working directory to tmp_path so no project file is
    picked up by accident.
    """
    monkeypatch.setattr("orgauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "ORGAUTH_LOGIN_URL",
        "ORGAUTH_CLIENT_ID",
        "ORGAUTH_CLIENT_SECRET",
        "ORGAUTH_HTTP_SOCKET_TIMEOUT",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path

