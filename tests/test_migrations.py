from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from db.client import dispose_engine, session_scope
from db.models.expenses import Category
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from spendro.models import ExpenseRecord, InsertKind
from spendro.persistence import compute_line_hash, create_statement, insert_expense

_ALEMBIC_DIR = Path(__file__).resolve().parents[1] / "libs" / "db" / "alembic"


@pytest.fixture
def migrated_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'migrated.sqlite3'}"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", url)
    # No ini file: keeps alembic from reconfiguring the test run's logging.
    cfg = Config()
    cfg.set_main_option("script_location", str(_ALEMBIC_DIR))
    command.upgrade(cfg, "head")
    yield url, cfg
    dispose_engine(database_url=url)


def test_upgrade_creates_schema(migrated_url):
    url, _cfg = migrated_url
    with session_scope(database_url=url) as s:
        insp = inspect(s.get_bind())
        tables = set(insp.get_table_names())
        # The inspector skips expression-based indexes on SQLite; read the catalog.
        index_names = set(
            s.execute(
                text(
                    "SELECT name FROM sqlite_master "
                    "WHERE type = 'index' AND tbl_name = 'categories'"
                )
            ).scalars()
        )

    assert {"statements", "categories", "merchant_mappings", "expenses"} <= tables
    assert "uq_categories_user_lower_name" in index_names


def test_migrated_schema_rejects_case_variant_category_names(migrated_url):
    url, _cfg = migrated_url
    with session_scope(database_url=url) as s:
        s.add(Category(user_id="u", name="Food"))
        s.add(Category(user_id="other", name="food"))

    with pytest.raises(IntegrityError), session_scope(database_url=url) as s:
        s.add(Category(user_id="u", name="food"))


def test_migrated_schema_supports_conflict_tolerant_insert(migrated_url):
    url, _cfg = migrated_url
    day, amount = date(2025, 1, 1), Decimal("9.90")
    with session_scope(database_url=url) as s:
        st = create_statement(
            s, user_id="u", checksum="f" * 64, file_name="a.pdf", blob_url="file:///a.pdf"
        )
        record = ExpenseRecord(
            user_id="u",
            statement_id=st.id,
            date=day,
            description="Tea",
            merchant=None,
            category="Other",
            category_id=None,
            amount=amount,
            original_amount=amount,
            original_currency="SGD",
            currency="SGD",
            line_hash=compute_line_hash(day, "Tea", amount),
        )
        first = insert_expense(s, record)
        second = insert_expense(s, record)

    assert (first.kind, second.kind) == (InsertKind.INSERTED, InsertKind.DUPLICATE)


def test_downgrade_removes_everything(migrated_url):
    url, cfg = migrated_url
    command.downgrade(cfg, "base")

    with session_scope(database_url=url) as s:
        tables = set(inspect(s.get_bind()).get_table_names())

    assert tables <= {"alembic_version"}
