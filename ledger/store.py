"""SQLite 账本存储。

设计
----
- `ledger_state`：单行表，保存最新的 `Ledger.to_dict()` 文档（原样存取，不重放）。
- `ledger_snapshots`：append-only 历史，每次 save 追加一行，
  同时记录当时的现金与组合价值，可直接导出权益曲线。
- WAL 模式，autocommit（isolation_level=None），单次 save 在显式事务中完成。
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Callable

from ledger.ledger import Ledger
from ledger.snapshot import SCHEMA_VERSION
from shared.models.models import EquityPoint
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("ledger-store")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, allow_nan=False)


class SqliteLedgerStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def __enter__(self) -> "SqliteLedgerStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            _LOGGER.warning("Closing %s failed: %s", self.path, exc)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger_state (
              id INTEGER PRIMARY KEY CHECK (id = 1),
              schema_version INTEGER NOT NULL,
              saved_at INTEGER NOT NULL,
              doc_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger_snapshots (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              saved_at INTEGER NOT NULL,
              cash_balance REAL NOT NULL,
              portfolio_value REAL NOT NULL,
              doc_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_saved_at ON ledger_snapshots(saved_at);")

    def save(self, ledger: Ledger) -> int:
        """保存当前状态并追加一条历史记录，返回历史行 id。"""
        snap = ledger.snapshot()
        doc = _json_dumps(snap.to_dict())
        summary = snap.summary()
        self._conn.execute("BEGIN;")
        try:
            self._conn.execute(
                """
                INSERT INTO ledger_state (id, schema_version, saved_at, doc_json)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  schema_version = excluded.schema_version,
                  saved_at = excluded.saved_at,
                  doc_json = excluded.doc_json;
                """,
                (SCHEMA_VERSION, snap.taken_at, doc),
            )
            cur = self._conn.execute(
                """
                INSERT INTO ledger_snapshots (saved_at, cash_balance, portfolio_value, doc_json)
                VALUES (?, ?, ?, ?);
                """,
                (snap.taken_at, snap.cash_balance, summary.total_value, doc),
            )
        except sqlite3.Error:
            self._conn.execute("ROLLBACK;")
            raise
        self._conn.execute("COMMIT;")
        _LOGGER.info("Saved ledger to %s (value=%.2f)", self.path, summary.total_value)
        return int(cur.lastrowid)

    def load(self, *, clock: Callable[[], int] | None = None, max_watchlist_symbols: int = 50) -> Ledger | None:
        """读取最新状态；从未保存过时返回 None。"""
        row = self._conn.execute("SELECT doc_json FROM ledger_state WHERE id = 1;").fetchone()
        if row is None:
            return None
        return Ledger.from_dict(
            json.loads(row[0]),
            clock=clock,
            max_watchlist_symbols=max_watchlist_symbols,
        )

    def history_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM ledger_snapshots;").fetchone()
        return int(row[0])

    def equity_curve(self) -> list[EquityPoint]:
        """按保存顺序导出权益曲线（组合价值）。"""
        rows = self._conn.execute(
            "SELECT saved_at, portfolio_value FROM ledger_snapshots ORDER BY id ASC;"
        ).fetchall()
        return [EquityPoint(timestamp=int(ts), value=float(v)) for ts, v in rows]
