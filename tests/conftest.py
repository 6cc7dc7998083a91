"""Pytest configuration for test isolation.

Each test gets its own SQLite ledger under ``tmp_path``. The engine cache in
``ledger_db.client`` is keyed by URL and would otherwise keep file handles
open across tests, so it is disposed after every test. ``TXCLASSIFY_*``
variables from the developer's shell are cleared so option defaults are what
the tests expect.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
for _p in (_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT / "tests"):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

from ledger_db.client import dispose_engines  # noqa: E402
from txclassify.config import EngineOptions, RetryPolicy  # noqa: E402
from txclassify.storage import SqlStorage  # noqa: E402

from helpers.db import make_storage  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in list(os.environ):
        if key.startswith("TXCLASSIFY_"):
            monkeypatch.delenv(key, raising=False)
    yield
    dispose_engines()


@pytest.fixture
def storage(tmp_path: Path) -> SqlStorage:
    return make_storage(tmp_path)


@pytest.fixture
def fast_options() -> EngineOptions:
    """Engine options with a zero-delay retry schedule."""

    return EngineOptions(retry=RetryPolicy(initial_delay=0.0, max_delay=0.0, jitter_pct=0.0))
