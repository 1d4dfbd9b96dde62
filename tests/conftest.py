"""Shared test fixtures for bitfit."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from loguru import logger

from bitfit.config import ENV_PREFIX


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Keep BITFIT_* variables and any local .env file out of the tests.

    Each test runs from its own temporary directory. Log sinks added by the
    CLI are removed afterwards since they hold the test's captured streams.
    """
    for name in list(os.environ):
        if name.upper().startswith(ENV_PREFIX):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    logger.remove()
