"""Pytest configuration shared by the suite.

- Puts the workspace roots on ``sys.path`` so ``spendro``, ``db`` and
  ``tests.helpers`` import without an editable install.
- ``database_url``: a fresh file-backed SQLite database per test, disposed
  afterwards so cached engines never leak between tests.
- ``settings``: :class:`spendro.config.Settings` pointed at that database and
  at a per-test blob directory.
"""

from __future__ import annotations

import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
for _p in (_ROOT / "libs" / "db" / "src", _ROOT / "packages", _ROOT):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

import pytest  # noqa: E402

from spendro.config import Settings  # noqa: E402
from tests.helpers.db import bootstrap_sqlite_db, teardown_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's shell configuration out of the tests."""

    for key in ("DATABASE_URL", "EXCHANGE_RATE_API_KEY", "SPENDRO_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def database_url(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "spendro.sqlite3")
    yield url
    teardown_sqlite_db(url)


@pytest.fixture
def settings(database_url: str, tmp_path: Path) -> Settings:
    return Settings(
        database_url=database_url,
        base_currency="SGD",
        foreign_category="Travel",
        fx_api_key="test-key",
        blob_dir=tmp_path / "blobs",
    )
