"""SQLite storage backend for phrase weights."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from threadsense.models import PhraseWeight


class SQLiteWeightStore:
    """SQLite-backed phrase weight table, durable across process restarts."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS weights (
                  phrase TEXT PRIMARY KEY,
                  weight REAL NOT NULL DEFAULT 0,
                  comment_node_id TEXT,
                  updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_weights_comment_node ON weights(comment_node_id);
                """
            )

    def get_weight(self, phrase: str) -> float:
        with self._connect() as conn:
            row = conn.execute("SELECT weight FROM weights WHERE phrase = ?", (phrase,)).fetchone()
        if row is None:
            return 0.0
        return float(row["weight"])

    def set_weight(self, phrase: str, weight: float, comment_node_id: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO weights (phrase, weight, comment_node_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(phrase) DO UPDATE SET
                  weight=excluded.weight,
                  comment_node_id=excluded.comment_node_id,
                  updated_at=excluded.updated_at
                """,
                (phrase, float(weight), comment_node_id, datetime.now(UTC).isoformat()),
            )
            conn.commit()

    def get_all_weights(self) -> list[PhraseWeight]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT phrase, weight, comment_node_id
                FROM weights
                ORDER BY phrase
                """
            ).fetchall()
        return [
            PhraseWeight(phrase=row["phrase"], weight=float(row["weight"]), comment_node_id=row["comment_node_id"])
            for row in rows
        ]

    def weights_for_comment(self, comment_node_id: str) -> list[PhraseWeight]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT phrase, weight, comment_node_id
                FROM weights
                WHERE comment_node_id = ?
                ORDER BY phrase
                """,
                (comment_node_id,),
            ).fetchall()
        return [
            PhraseWeight(phrase=row["phrase"], weight=float(row["weight"]), comment_node_id=row["comment_node_id"])
            for row in rows
        ]
