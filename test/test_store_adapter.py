import logging
import sqlite3
from pathlib import Path

import pytest

from bsm.domain.errors import StorageUnavailableError
from bsm.repositories.sqlite_repo import SqliteRepository


def test_init_db_creates_schema_and_provisions_tabs(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "s.db", tab_count=4)
    repo.init_db()

    tables = {r[0] for r in repo.query("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"users", "beverage_types", "events", "tabs", "stock_records", "price_records", "sales"} <= tables

    tabs = repo.list_tabs()
    assert [t.number for t in tabs] == [1, 2, 3, 4]
    assert all(t.status.value == "available" and t.running_total == 0 for t in tabs)


def test_init_db_is_repeatable_and_does_not_reprovision_tabs(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "s.db", tab_count=3)
    repo.init_db()
    repo.init_db()

    assert len(repo.list_tabs()) == 3
    versions = [int(r[0]) for r in repo.query("SELECT version FROM schema_migrations ORDER BY version")]
    assert versions == [1, 2, 3]


def test_general_scope_stock_is_unique_per_beverage(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "u.db")
    repo.init_db()
    bid = repo.add_beverage("IPA", "#D4A574", "")
    repo.insert(
        "INSERT INTO stock_records (beverage_id, beverage_name, event_id, quantity_liters) VALUES (?, ?, NULL, 1)",
        (bid, "IPA"),
    )

    with pytest.raises(sqlite3.IntegrityError):
        repo.insert(
            "INSERT INTO stock_records (beverage_id, beverage_name, event_id, quantity_liters) VALUES (?, ?, NULL, 2)",
            (bid, "IPA"),
        )


def test_negative_stock_is_rejected_by_the_store(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "n.db")
    repo.init_db()
    bid = repo.add_beverage("IPA", "#D4A574", "")

    with pytest.raises(sqlite3.IntegrityError):
        repo.set_stock(bid, "IPA", -1.0, 5.0, None, "2024-01-01 10:00:00")


def test_transaction_rolls_back_every_statement(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "t.db")
    repo.init_db()

    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.add_beverage("IPA", "#D4A574", "")
            repo.add_beverage("Stout", "#222222", "")
            assert len(repo.list_beverages()) == 2
            raise RuntimeError("boom")

    assert repo.list_beverages() == []
    assert not repo.in_transaction


def test_nested_transaction_joins_the_outer_one(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "nt.db")
    repo.init_db()

    with pytest.raises(RuntimeError):
        with repo.transaction():
            bid = repo.add_beverage("IPA", "#D4A574", "")
            repo.update_beverage(bid, "Session IPA", "#D4A574", "")
            raise RuntimeError("boom")

    assert repo.list_beverages() == []


def test_store_failure_is_logged_with_parameters(tmp_path: Path, caplog):
    repo = SqliteRepository(tmp_path / "f.db")
    repo.init_db()

    with caplog.at_level(logging.ERROR, logger="bsm.store"):
        with pytest.raises(StorageUnavailableError, match="query failed"):
            repo.query("SELECT * FROM no_such_table WHERE id = ?", (42,))

    assert any("store_failure op=query" in r.getMessage() and "(42,)" in r.getMessage() for r in caplog.records)


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_scoped_stock_and_prices(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.add_beverage("IPA", "#D4A574", "")
    repo.execute("DELETE FROM schema_migrations WHERE version >= 2")

    with pytest.raises(StorageUnavailableError, match="migration failed"):
        BrokenMigrationRepo(db).init_db()

    after = SqliteRepository(db)
    assert int(after.query_one("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")[0]) == 1
    assert [b.name for b in after.list_beverages()] == ["IPA"]
    assert list(tmp_path.glob("broken.pre_migration_*.bak"))


def test_beverage_names_are_unique_after_unicode_case_folding(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "s.db")
    repo.init_db()
    repo.add_beverage("Açaí Sour", "#D4A574", "")

    with pytest.raises(sqlite3.IntegrityError):
        repo.add_beverage("AÇAÍ SOUR", "#D4A574", "")
    assert repo.get_beverage_by_name("açaí sour").name == "Açaí Sour"
