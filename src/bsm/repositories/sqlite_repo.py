from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from bsm.domain.errors import ConcurrentModificationError, StorageUnavailableError
from bsm.domain.models import (
    BeverageType,
    Event,
    EventStatus,
    PriceRecord,
    Sale,
    StockRecord,
    Tab,
    TabStatus,
    User,
    name_key,
)

log = logging.getLogger("bsm.store")

# Scope matching: "event_id IS ?" matches NULL (general scope) and ints alike.
_SCOPE = "beverage_id = ? AND event_id IS ?"

_CURRENT_PRICE_JOIN = """
    LEFT JOIN price_records pr
           ON pr.beverage_id = s.beverage_id AND pr.event_id IS s.event_id
"""
_CURRENT_UNIT_PRICE = """
    COALESCE(CASE s.container_size_ml
        WHEN 300 THEN pr.price_small
        WHEN 500 THEN pr.price_medium
        WHEN 1000 THEN pr.price_large
    END, 0)
"""


class SqliteRepository:
    def __init__(self, db_path: Path | str, tab_count: int = 10):
        self.db_path = str(db_path)
        self.tab_count = int(tab_count)
        self._local = threading.local()

    @property
    def _tx(self) -> Optional[sqlite3.Connection]:
        # the open transaction belongs to the thread that started it
        return getattr(self._local, "conn", None)

    @_tx.setter
    def _tx(self, conn: Optional[sqlite3.Connection]) -> None:
        self._local.conn = conn

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        # every commit must reach the disk before we return to the caller
        conn.execute("PRAGMA synchronous = FULL;")
        return conn

    # ---------- Store adapter ----------
    @contextmanager
    def _guard(self, op: str, sql: str, params: Sequence[Any]) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError:
            raise
        except sqlite3.OperationalError as exc:
            msg = str(exc).lower()
            if "locked" in msg or "busy" in msg:
                log.warning("store_busy op=%s params=%s error=%s", op, tuple(params), exc)
                raise ConcurrentModificationError(f"Store is busy: {exc}") from exc
            log.error("store_failure op=%s sql=%s params=%s error=%s", op, " ".join(sql.split()), tuple(params), exc)
            raise StorageUnavailableError(f"{op} failed: {exc}") from exc
        except sqlite3.Error as exc:
            log.error("store_failure op=%s sql=%s params=%s error=%s", op, " ".join(sql.split()), tuple(params), exc)
            raise StorageUnavailableError(f"{op} failed: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        if self._tx is not None:
            yield self._tx
            return
        conn = self._conn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed repository calls as one atomic write.

        BEGIN IMMEDIATE takes the store's write lock up front, so reads made
        inside the block cannot go stale before the block commits. Nested
        calls join the outer transaction.
        """
        if self._tx is not None:
            yield self._tx
            return
        with self._guard("begin", "BEGIN IMMEDIATE", ()):
            conn = self._conn()
            conn.isolation_level = None
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error:
                conn.close()
                raise
        self._tx = conn
        try:
            yield conn
            with self._guard("commit", "COMMIT", ()):
                conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            self._tx = None
            conn.close()

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._guard("query", sql, params), self._session() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self._guard("execute", sql, params), self._session() as conn:
            return int(conn.execute(sql, tuple(params)).rowcount)

    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._guard("insert", sql, params), self._session() as conn:
            return int(conn.execute(sql, tuple(params)).lastrowid)

    # ---------- Schema ----------
    def init_db(self) -> None:
        self.run_migrations()
        self._ensure_tabs()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_scoped_stock_and_prices),
                (3, self._migration_v3_beverage_name_key),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise StorageUnavailableError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL CHECK(role IN ('admin','seller','viewer')),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS beverage_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                color TEXT NOT NULL DEFAULT '#D4A574',
                description TEXT NOT NULL DEFAULT ''
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                location TEXT NOT NULL,
                date TEXT NOT NULL,
                contact TEXT,
                contact_name TEXT,
                status TEXT NOT NULL DEFAULT 'planning' CHECK(status IN ('planning','active','finalized')),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_events_status ON events(status)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tabs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number INTEGER NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available','in_use','awaiting_payment')),
                running_total REAL NOT NULL DEFAULT 0 CHECK(running_total >= 0),
                opened_at TEXT,
                closed_at TEXT,
                paid_at TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                beverage_id INTEGER NOT NULL,
                beverage_name TEXT NOT NULL,
                container_size_ml INTEGER NOT NULL CHECK(container_size_ml IN (300, 500, 1000)),
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                timestamp TEXT NOT NULL,
                total_volume_ml REAL NOT NULL CHECK(total_volume_ml > 0),
                unit_price REAL NOT NULL DEFAULT 0 CHECK(unit_price >= 0),
                tab_id INTEGER,
                actor_id INTEGER NOT NULL,
                event_id INTEGER,
                CHECK(total_volume_ml = container_size_ml * quantity),
                FOREIGN KEY(beverage_id) REFERENCES beverage_types(id) ON DELETE CASCADE,
                FOREIGN KEY(tab_id) REFERENCES tabs(id) ON DELETE SET NULL,
                FOREIGN KEY(actor_id) REFERENCES users(id),
                FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE SET NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_timestamp ON sales(timestamp)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_beverage ON sales(beverage_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_tab ON sales(tab_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_event ON sales(event_id)")

    def _migration_v2_scoped_stock_and_prices(self, cur: sqlite3.Cursor) -> None:
        # UNIQUE(beverage_id, event_id) would let several NULL-scope rows through,
        # so uniqueness is enforced on COALESCE(event_id, 0).
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                beverage_id INTEGER NOT NULL,
                beverage_name TEXT NOT NULL,
                event_id INTEGER,
                quantity_liters REAL NOT NULL DEFAULT 0 CHECK(quantity_liters >= 0),
                low_stock_threshold_liters REAL NOT NULL DEFAULT 5.0 CHECK(low_stock_threshold_liters >= 0),
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(beverage_id) REFERENCES beverage_types(id) ON DELETE CASCADE,
                FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_stock_scope ON stock_records(beverage_id, COALESCE(event_id, 0))"
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_stock_event ON stock_records(event_id)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS price_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                beverage_id INTEGER NOT NULL,
                beverage_name TEXT NOT NULL,
                event_id INTEGER,
                price_small REAL NOT NULL DEFAULT 0 CHECK(price_small >= 0),
                price_medium REAL NOT NULL DEFAULT 0 CHECK(price_medium >= 0),
                price_large REAL NOT NULL DEFAULT 0 CHECK(price_large >= 0),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(beverage_id) REFERENCES beverage_types(id) ON DELETE CASCADE,
                FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_price_scope ON price_records(beverage_id, COALESCE(event_id, 0))"
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_price_event ON price_records(event_id)")

    def _migration_v3_beverage_name_key(self, cur: sqlite3.Cursor) -> None:
        # NOCASE only folds ASCII, so "Açaí" and "AÇAÍ" would both pass the v1 constraint
        cur.execute("ALTER TABLE beverage_types ADD COLUMN name_key TEXT")
        rows = cur.execute("SELECT id, name FROM beverage_types").fetchall()
        cur.executemany("UPDATE beverage_types SET name_key=? WHERE id=?", [(name_key(r[1]), r[0]) for r in rows])
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_beverage_name_key ON beverage_types(name_key)")

    def _ensure_tabs(self) -> None:
        row = self.query_one("SELECT COUNT(*) FROM tabs")
        if int(row[0]) > 0 or self.tab_count <= 0:
            return
        with self._session() as conn:
            conn.executemany(
                "INSERT INTO tabs (number, status, running_total) VALUES (?, 'available', 0)",
                [(n,) for n in range(1, self.tab_count + 1)],
            )
        log.info("tabs_provisioned count=%s", self.tab_count)

    def integrity_check(self) -> str:
        row = self.query_one("PRAGMA integrity_check")
        return str(row[0]) if row else "unknown"

    def table_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in ("beverage_types", "events", "tabs", "stock_records", "price_records", "sales", "users"):
            row = self.query_one(f"SELECT COUNT(*) FROM {table}")
            counts[table] = int(row[0])
        return counts

    # ---------- Users ----------
    def create_user(self, username: str, role: str = "seller") -> int:
        return self.insert("INSERT INTO users (username, role) VALUES (?, ?)", (username, role))

    def get_user(self, user_id: int) -> Optional[User]:
        r = self.query_one("SELECT id, username, role, active FROM users WHERE id=?", (int(user_id),))
        if not r:
            return None
        return User(id=int(r["id"]), username=str(r["username"]), role=str(r["role"]), active=int(r["active"]))

    # ---------- Beverages ----------
    @staticmethod
    def _beverage(r: sqlite3.Row) -> BeverageType:
        return BeverageType(id=int(r["id"]), name=str(r["name"]), color=str(r["color"]), description=str(r["description"] or ""))

    def list_beverages(self) -> list[BeverageType]:
        rows = self.query("SELECT id, name, color, description FROM beverage_types ORDER BY name")
        return [self._beverage(r) for r in rows]

    def get_beverage(self, beverage_id: int) -> Optional[BeverageType]:
        r = self.query_one("SELECT id, name, color, description FROM beverage_types WHERE id=?", (int(beverage_id),))
        return self._beverage(r) if r else None

    def get_beverage_by_name(self, name: str) -> Optional[BeverageType]:
        r = self.query_one(
            "SELECT id, name, color, description FROM beverage_types WHERE name_key = ?",
            (name_key(name),),
        )
        return self._beverage(r) if r else None

    def add_beverage(self, name: str, color: str, description: str) -> int:
        return self.insert(
            "INSERT INTO beverage_types (name, name_key, color, description) VALUES (?, ?, ?, ?)",
            (name, name_key(name), color, description),
        )

    def update_beverage(self, beverage_id: int, name: str, color: str, description: str) -> bool:
        with self.transaction():
            changed = self.execute(
                "UPDATE beverage_types SET name=?, name_key=?, color=?, description=? WHERE id=?",
                (name, name_key(name), color, description, int(beverage_id)),
            )
            if changed:
                # configuration rows carry the display name, sales keep their snapshot
                self.execute("UPDATE stock_records SET beverage_name=? WHERE beverage_id=?", (name, int(beverage_id)))
                self.execute("UPDATE price_records SET beverage_name=? WHERE beverage_id=?", (name, int(beverage_id)))
        return changed > 0

    def delete_beverage(self, beverage_id: int) -> bool:
        return self.execute("DELETE FROM beverage_types WHERE id=?", (int(beverage_id),)) > 0

    def count_sales_for_beverage(self, beverage_id: int) -> int:
        r = self.query_one("SELECT COUNT(*) FROM sales WHERE beverage_id=?", (int(beverage_id),))
        return int(r[0])

    def count_open_tab_sales(self, *, beverage_id: Optional[int] = None, event_id: Optional[int] = None) -> int:
        sql = """
            SELECT COUNT(*)
            FROM sales s
            JOIN tabs t ON t.id = s.tab_id
            WHERE t.status != 'available'
        """
        params: list[Any] = []
        if beverage_id is not None:
            sql += " AND s.beverage_id = ?"
            params.append(int(beverage_id))
        if event_id is not None:
            sql += " AND s.event_id = ?"
            params.append(int(event_id))
        r = self.query_one(sql, params)
        return int(r[0])

    # ---------- Events ----------
    @staticmethod
    def _event(r: sqlite3.Row) -> Event:
        return Event(
            id=int(r["id"]),
            name=str(r["name"]),
            location=str(r["location"]),
            date=str(r["date"]),
            contact=r["contact"],
            contact_name=r["contact_name"],
            status=EventStatus(r["status"]),
            created_at=str(r["created_at"]),
            updated_at=str(r["updated_at"]),
        )

    def add_event(
        self,
        name: str,
        location: str,
        date_iso: str,
        contact: Optional[str],
        contact_name: Optional[str],
        status: str,
        now_iso: str,
    ) -> int:
        return self.insert(
            """
            INSERT INTO events (name, location, date, contact, contact_name, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (name, location, date_iso, contact, contact_name, status, now_iso, now_iso),
        )

    def get_event(self, event_id: int) -> Optional[Event]:
        r = self.query_one("SELECT * FROM events WHERE id=?", (int(event_id),))
        return self._event(r) if r else None

    def list_events(self, status: Optional[str] = None) -> list[Event]:
        if status is None:
            rows = self.query("SELECT * FROM events ORDER BY date DESC, id DESC")
        else:
            rows = self.query("SELECT * FROM events WHERE status=? ORDER BY date DESC, id DESC", (status,))
        return [self._event(r) for r in rows]

    def update_event(self, event_id: int, fields: dict[str, Any], now_iso: str) -> bool:
        allowed = ("name", "location", "date", "contact", "contact_name", "status")
        cols = [c for c in allowed if c in fields]
        if not cols:
            return self.get_event(event_id) is not None
        assignments = ", ".join(f"{c}=?" for c in cols)
        params = [fields[c] for c in cols] + [now_iso, int(event_id)]
        return self.execute(f"UPDATE events SET {assignments}, updated_at=? WHERE id=?", params) > 0

    def delete_event(self, event_id: int) -> bool:
        # stock/price rows cascade, sales get event_id = NULL
        return self.execute("DELETE FROM events WHERE id=?", (int(event_id),)) > 0

    # ---------- Tabs ----------
    @staticmethod
    def _tab(r: sqlite3.Row) -> Tab:
        return Tab(
            id=int(r["id"]),
            number=int(r["number"]),
            status=TabStatus(r["status"]),
            running_total=float(r["running_total"]),
            opened_at=r["opened_at"],
            closed_at=r["closed_at"],
            paid_at=r["paid_at"],
        )

    def list_tabs(self, status: Optional[str] = None) -> list[Tab]:
        if status is None:
            rows = self.query("SELECT * FROM tabs ORDER BY number")
        else:
            rows = self.query("SELECT * FROM tabs WHERE status=? ORDER BY number", (status,))
        return [self._tab(r) for r in rows]

    def get_tab(self, tab_id: int) -> Optional[Tab]:
        r = self.query_one("SELECT * FROM tabs WHERE id=?", (int(tab_id),))
        return self._tab(r) if r else None

    def get_tab_by_number(self, number: int) -> Optional[Tab]:
        r = self.query_one("SELECT * FROM tabs WHERE number=?", (int(number),))
        return self._tab(r) if r else None

    def mark_tab_open(self, tab_id: int, now_iso: str) -> bool:
        return (
            self.execute(
                """
                UPDATE tabs SET status='in_use', opened_at=?, updated_at=?
                WHERE id=? AND status='available'
                """,
                (now_iso, now_iso, int(tab_id)),
            )
            > 0
        )

    def mark_tab_closed(self, tab_id: int, total: float, now_iso: str) -> bool:
        return (
            self.execute(
                """
                UPDATE tabs SET status='awaiting_payment', closed_at=?, running_total=?, updated_at=?
                WHERE id=? AND status='in_use'
                """,
                (now_iso, float(total), now_iso, int(tab_id)),
            )
            > 0
        )

    def mark_tab_paid(self, tab_id: int, now_iso: str) -> bool:
        return (
            self.execute(
                """
                UPDATE tabs
                SET status='available', paid_at=?, running_total=0,
                    opened_at=NULL, closed_at=NULL, updated_at=?
                WHERE id=? AND status='awaiting_payment'
                """,
                (now_iso, now_iso, int(tab_id)),
            )
            > 0
        )

    def detach_tab_sales(self, tab_id: int) -> int:
        return self.execute("UPDATE sales SET tab_id=NULL WHERE tab_id=?", (int(tab_id),))

    def tab_total(self, tab_id: int, *, current_prices: bool = False) -> float:
        if current_prices:
            sql = f"""
                SELECT COALESCE(SUM(s.quantity * {_CURRENT_UNIT_PRICE}), 0)
                FROM sales s
                {_CURRENT_PRICE_JOIN}
                WHERE s.tab_id = ?
            """
        else:
            sql = "SELECT COALESCE(SUM(s.quantity * s.unit_price), 0) FROM sales s WHERE s.tab_id = ?"
        r = self.query_one(sql, (int(tab_id),))
        return round(float(r[0]), 2)

    # ---------- Stock ----------
    @staticmethod
    def _stock(r: sqlite3.Row) -> StockRecord:
        return StockRecord(
            id=int(r["id"]),
            beverage_id=int(r["beverage_id"]),
            beverage_name=str(r["beverage_name"]),
            event_id=(int(r["event_id"]) if r["event_id"] is not None else None),
            quantity_liters=float(r["quantity_liters"]),
            low_stock_threshold_liters=float(r["low_stock_threshold_liters"]),
            version=int(r["version"]),
        )

    def get_stock(self, beverage_id: int, event_id: Optional[int]) -> Optional[StockRecord]:
        r = self.query_one(f"SELECT * FROM stock_records WHERE {_SCOPE}", (int(beverage_id), event_id))
        return self._stock(r) if r else None

    def list_stock(self, event_id: Optional[int]) -> list[StockRecord]:
        rows = self.query("SELECT * FROM stock_records WHERE event_id IS ? ORDER BY beverage_name", (event_id,))
        return [self._stock(r) for r in rows]

    def list_low_stock(self, event_id: Optional[int] = None, *, any_scope: bool = True) -> list[StockRecord]:
        sql = """
            SELECT * FROM stock_records
            WHERE quantity_liters > 0 AND quantity_liters < low_stock_threshold_liters
        """
        params: list[Any] = []
        if not any_scope:
            sql += " AND event_id IS ?"
            params.append(event_id)
        sql += " ORDER BY quantity_liters ASC, beverage_name ASC"
        return [self._stock(r) for r in self.query(sql, params)]

    def set_stock(
        self,
        beverage_id: int,
        beverage_name: str,
        quantity_liters: float,
        low_stock_threshold_liters: float,
        event_id: Optional[int],
        now_iso: str,
    ) -> int:
        with self.transaction():
            existing = self.get_stock(beverage_id, event_id)
            if existing:
                self.execute(
                    """
                    UPDATE stock_records
                    SET beverage_name=?, quantity_liters=?, low_stock_threshold_liters=?,
                        version=version+1, updated_at=?
                    WHERE id=?
                    """,
                    (beverage_name, float(quantity_liters), float(low_stock_threshold_liters), now_iso, existing.id),
                )
                return existing.id
            return self.insert(
                """
                INSERT INTO stock_records (
                    beverage_id, beverage_name, event_id, quantity_liters, low_stock_threshold_liters,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (int(beverage_id), beverage_name, event_id, float(quantity_liters), float(low_stock_threshold_liters), now_iso, now_iso),
            )

    def decrement_stock(self, record_id: int, new_quantity: float, expected_version: int, now_iso: str) -> bool:
        """Compare-and-swap the quantity; False when the row changed under us."""
        return (
            self.execute(
                """
                UPDATE stock_records
                SET quantity_liters=?, version=version+1, updated_at=?
                WHERE id=? AND version=?
                """,
                (max(0.0, float(new_quantity)), now_iso, int(record_id), int(expected_version)),
            )
            > 0
        )

    def delete_stock(self, beverage_id: int, event_id: Optional[int]) -> bool:
        return self.execute(f"DELETE FROM stock_records WHERE {_SCOPE}", (int(beverage_id), event_id)) > 0

    # ---------- Prices ----------
    @staticmethod
    def _price(r: sqlite3.Row) -> PriceRecord:
        return PriceRecord(
            id=int(r["id"]),
            beverage_id=int(r["beverage_id"]),
            beverage_name=str(r["beverage_name"]),
            event_id=(int(r["event_id"]) if r["event_id"] is not None else None),
            price_small=float(r["price_small"]),
            price_medium=float(r["price_medium"]),
            price_large=float(r["price_large"]),
        )

    def get_price(self, beverage_id: int, event_id: Optional[int]) -> Optional[PriceRecord]:
        r = self.query_one(f"SELECT * FROM price_records WHERE {_SCOPE}", (int(beverage_id), event_id))
        return self._price(r) if r else None

    def list_prices(self, event_id: Optional[int] = None, *, any_scope: bool = True) -> list[PriceRecord]:
        if any_scope:
            rows = self.query("SELECT * FROM price_records ORDER BY beverage_name, event_id")
        else:
            rows = self.query("SELECT * FROM price_records WHERE event_id IS ? ORDER BY beverage_name", (event_id,))
        return [self._price(r) for r in rows]

    def set_price(
        self,
        beverage_id: int,
        beverage_name: str,
        price_small: float,
        price_medium: float,
        price_large: float,
        event_id: Optional[int],
        now_iso: str,
    ) -> int:
        with self.transaction():
            existing = self.get_price(beverage_id, event_id)
            if existing:
                self.execute(
                    """
                    UPDATE price_records
                    SET beverage_name=?, price_small=?, price_medium=?, price_large=?, updated_at=?
                    WHERE id=?
                    """,
                    (beverage_name, float(price_small), float(price_medium), float(price_large), now_iso, existing.id),
                )
                return existing.id
            return self.insert(
                """
                INSERT INTO price_records (
                    beverage_id, beverage_name, event_id, price_small, price_medium, price_large,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (int(beverage_id), beverage_name, event_id, float(price_small), float(price_medium), float(price_large), now_iso, now_iso),
            )

    def delete_price(self, beverage_id: int, event_id: Optional[int]) -> bool:
        return self.execute(f"DELETE FROM price_records WHERE {_SCOPE}", (int(beverage_id), event_id)) > 0

    # ---------- Sales ----------
    @staticmethod
    def _sale(r: sqlite3.Row) -> Sale:
        return Sale(
            id=int(r["id"]),
            beverage_id=int(r["beverage_id"]),
            beverage_name=str(r["beverage_name"]),
            container_size_ml=int(r["container_size_ml"]),
            quantity=int(r["quantity"]),
            timestamp=str(r["timestamp"]),
            total_volume_ml=float(r["total_volume_ml"]),
            unit_price=float(r["unit_price"]),
            tab_id=(int(r["tab_id"]) if r["tab_id"] is not None else None),
            actor_id=int(r["actor_id"]),
            event_id=(int(r["event_id"]) if r["event_id"] is not None else None),
        )

    def insert_sale(
        self,
        beverage_id: int,
        beverage_name: str,
        container_size_ml: int,
        quantity: int,
        timestamp_iso: str,
        unit_price: float,
        actor_id: int,
        event_id: Optional[int],
        tab_id: Optional[int],
    ) -> int:
        return self.insert(
            """
            INSERT INTO sales (
                beverage_id, beverage_name, container_size_ml, quantity, timestamp,
                total_volume_ml, unit_price, tab_id, actor_id, event_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(beverage_id),
                beverage_name,
                int(container_size_ml),
                int(quantity),
                timestamp_iso,
                float(int(container_size_ml) * int(quantity)),
                float(unit_price),
                tab_id,
                int(actor_id),
                event_id,
            ),
        )

    def get_sale(self, sale_id: int) -> Optional[Sale]:
        r = self.query_one("SELECT * FROM sales WHERE id=?", (int(sale_id),))
        return self._sale(r) if r else None

    def list_sales(
        self,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
        event_id: Optional[int] = None,
        general_only: bool = False,
        tab_id: Optional[int] = None,
    ) -> list[Sale]:
        where, params = self._sales_filter(start_iso, end_iso, event_id, general_only)
        if tab_id is not None:
            where += " AND s.tab_id = ?"
            params.append(int(tab_id))
        rows = self.query(f"SELECT s.* FROM sales s WHERE {where} ORDER BY s.timestamp DESC, s.id DESC", params)
        return [self._sale(r) for r in rows]

    # ---------- Reports ----------
    @staticmethod
    def _sales_filter(
        start_iso: Optional[str],
        end_iso: Optional[str],
        event_id: Optional[int],
        general_only: bool,
    ) -> tuple[str, list[Any]]:
        clauses = ["1=1"]
        params: list[Any] = []
        if start_iso:
            clauses.append("s.timestamp >= ?")
            params.append(start_iso)
        if end_iso:
            clauses.append("s.timestamp < ?")
            params.append(end_iso)
        if event_id is not None:
            clauses.append("s.event_id = ?")
            params.append(int(event_id))
        elif general_only:
            clauses.append("s.event_id IS NULL")
        return " AND ".join(clauses), params

    @staticmethod
    def _revenue_sql(current_prices: bool) -> tuple[str, str]:
        if current_prices:
            return _CURRENT_PRICE_JOIN, f"s.quantity * {_CURRENT_UNIT_PRICE}"
        return "", "s.quantity * s.unit_price"

    def _grouped(
        self,
        select: str,
        group_by: str,
        order_by: str,
        filters: tuple,
        current_prices: bool,
        extra_join: str = "",
        extra_where: str = "",
    ) -> list[sqlite3.Row]:
        where, params = self._sales_filter(*filters)
        join, revenue = self._revenue_sql(current_prices)
        sql = f"""
            SELECT {select},
                   COUNT(*) AS sale_count,
                   COALESCE(SUM(s.quantity), 0) AS units,
                   COALESCE(SUM(s.total_volume_ml), 0) AS volume_ml,
                   COALESCE(SUM({revenue}), 0) AS revenue
            FROM sales s
            {join}
            {extra_join}
            WHERE {where} {extra_where}
            GROUP BY {group_by}
            ORDER BY {order_by}
        """
        return self.query(sql, params)

    def sales_summary(self, filters: tuple, current_prices: bool = False) -> tuple[int, float, float]:
        where, params = self._sales_filter(*filters)
        join, revenue = self._revenue_sql(current_prices)
        r = self.query_one(
            f"""
            SELECT COUNT(*), COALESCE(SUM(s.total_volume_ml), 0), COALESCE(SUM({revenue}), 0)
            FROM sales s
            {join}
            WHERE {where}
            """,
            params,
        )
        return int(r[0]), float(r[1]), float(r[2])

    def sales_by_container_size(self, filters: tuple, current_prices: bool = False) -> list[sqlite3.Row]:
        return self._grouped("s.container_size_ml AS container_size_ml", "s.container_size_ml", "s.container_size_ml", filters, current_prices)

    def sales_by_beverage(self, filters: tuple, current_prices: bool = False) -> list[sqlite3.Row]:
        # grouped on the snapshot name too, so renamed or deleted beverages stay stable
        return self._grouped(
            "s.beverage_id AS beverage_id, s.beverage_name AS beverage_name",
            "s.beverage_id, s.beverage_name",
            "volume_ml DESC, s.beverage_name",
            filters,
            current_prices,
        )

    def sales_by_event(self, filters: tuple, current_prices: bool = False) -> list[sqlite3.Row]:
        return self._grouped(
            "s.event_id AS event_id, e.name AS event_name",
            "s.event_id",
            "s.event_id IS NULL, e.date DESC, s.event_id",
            filters,
            current_prices,
            extra_join="LEFT JOIN events e ON e.id = s.event_id",
        )

    def sales_by_tab(self, filters: tuple, current_prices: bool = False) -> list[sqlite3.Row]:
        return self._grouped(
            "s.tab_id AS tab_id, t.number AS tab_number, t.status AS tab_status",
            "s.tab_id",
            "t.number",
            filters,
            current_prices,
            extra_join="JOIN tabs t ON t.id = s.tab_id",
            extra_where="AND s.tab_id IS NOT NULL",
        )

    def sales_by_period(self, filters: tuple, prefix_len: int, current_prices: bool = False) -> list[sqlite3.Row]:
        return self._grouped(
            f"substr(s.timestamp, 1, {int(prefix_len)}) AS period",
            "period",
            "period",
            filters,
            current_prices,
        )
