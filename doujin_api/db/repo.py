from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from doujin_api.models import Doujin, UsageStats
from doujin_api.settings import Settings
from doujin_api.db.conn import connect_sqlite

log = logging.getLogger(__name__)

RECORD_ID_LENGTH = 24

def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def new_record_id() -> str:
    return uuid.uuid4().hex[:RECORD_ID_LENGTH]

def _json_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        v = json.loads(raw)
    except ValueError:
        log.warning("Ignoring malformed JSON list in doujins table: %r", raw[:80])
        return []
    if isinstance(v, list):
        return [str(x) for x in v]
    return []

def _row_to_doujin(row: sqlite3.Row) -> Doujin:
    return Doujin(
        id=row["id"],
        doujin_id=row["doujin_id"],
        title=row["title"],
        url=row["url"],
        images=_json_list(row["images_json"]),
        tags=_json_list(row["tags_json"]),
        telegraph_url=row["telegraph_url"] or "",
        created_at=row["created_at"],
    )

@dataclass
class Repo:
    """SQLite-backed record store, stats store and settings store."""

    settings: Settings = field(default_factory=Settings.from_env)
    _conn: sqlite3.Connection | None = None

    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = connect_sqlite(self.settings.db_url)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ---- schema ----
    def ensure_schema(self) -> None:
        """Create tables if missing."""
        schema_path = Path(__file__).with_name("schema.sql")
        sql = schema_path.read_text(encoding="utf-8")
        self.conn().executescript(sql)
        self.conn().commit()

    # -------- doujins --------
    def list_doujins(self, limit: Optional[int] = None, offset: int = 0) -> List[Doujin]:
        sql = "SELECT * FROM doujins ORDER BY created_at ASC, id ASC"
        params: Tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = (int(limit), int(offset))
        rows = self.conn().execute(sql, params).fetchall()
        return [_row_to_doujin(r) for r in rows]

    def find_by_record_id(self, record_id: str) -> Optional[Doujin]:
        row = self.conn().execute("SELECT * FROM doujins WHERE id=?", (record_id,)).fetchone()
        return _row_to_doujin(row) if row else None

    def find_by_source_id(self, doujin_id: str) -> Optional[Doujin]:
        row = self.conn().execute("SELECT * FROM doujins WHERE doujin_id=?", (doujin_id,)).fetchone()
        return _row_to_doujin(row) if row else None

    def count(self) -> int:
        row = self.conn().execute("SELECT COUNT(1) AS c FROM doujins").fetchone()
        return int(row["c"] or 0)

    def _insert(self, doujin: Doujin, *, or_ignore: bool) -> Tuple[Doujin, bool]:
        record_id = doujin.id or new_record_id()
        now = utcnow_iso()
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        cur = self.conn().execute(
            f"""
            {verb} INTO doujins
              (id, doujin_id, title, url, images_json, tags_json, telegraph_url, created_at, updated_at)
            VALUES
              (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record_id,
                doujin.doujin_id,
                doujin.title,
                doujin.url,
                json.dumps(list(doujin.images), ensure_ascii=False),
                json.dumps(list(doujin.tags), ensure_ascii=False),
                doujin.telegraph_url or "",
                now,
                now,
            ),
        )
        self.conn().commit()
        inserted = cur.rowcount == 1
        stored = self.find_by_source_id(doujin.doujin_id)
        if stored is None:
            # ignored because the record id belongs to another doujin
            raise sqlite3.IntegrityError(f"Record id {record_id} is already used by another doujin")
        return stored, inserted

    def create(self, doujin: Doujin) -> Doujin:
        """Insert a new record. Raises sqlite3.IntegrityError if the doujin_id exists."""
        stored, _ = self._insert(doujin, or_ignore=False)
        return stored

    def get_or_create(self, doujin: Doujin) -> Tuple[Doujin, bool]:
        """Conditional insert keyed on doujin_id.

        Returns (record, created). When another caller inserted the same
        doujin_id first, its row is returned and created is False.
        """
        stored, created = self._insert(doujin, or_ignore=True)
        if created:
            log.info("Stored doujin doujin_id=%s id=%s", stored.doujin_id, stored.id)
        return stored, created

    def update(self, doujin: Doujin) -> bool:
        """Replace the mutable fields of a record.

        url and doujin_id are never rewritten, and telegraph_url is only
        written while it is still empty.
        """
        cur = self.conn().execute(
            """
            UPDATE doujins
            SET title=?,
                images_json=?,
                tags_json=?,
                telegraph_url=CASE WHEN telegraph_url = '' THEN ? ELSE telegraph_url END,
                updated_at=?
            WHERE id=?
            """,
            (
                doujin.title,
                json.dumps(list(doujin.images), ensure_ascii=False),
                json.dumps(list(doujin.tags), ensure_ascii=False),
                doujin.telegraph_url or "",
                utcnow_iso(),
                doujin.id,
            ),
        )
        self.conn().commit()
        return cur.rowcount == 1

    def set_telegraph_url(self, record_id: str, telegraph_url: str) -> bool:
        """Publish write: succeeds only on the empty -> non-empty transition."""
        if not telegraph_url:
            raise ValueError("telegraph_url must be non-empty")
        cur = self.conn().execute(
            "UPDATE doujins SET telegraph_url=?, updated_at=? WHERE id=? AND telegraph_url=''",
            (telegraph_url, utcnow_iso(), record_id),
        )
        self.conn().commit()
        return cur.rowcount == 1

    def delete(self, record_id: str) -> bool:
        cur = self.conn().execute("DELETE FROM doujins WHERE id=?", (record_id,))
        self.conn().commit()
        return cur.rowcount == 1

    # -------- stats --------
    def load_stats(self) -> UsageStats:
        row = self.conn().execute(
            "SELECT total_use, fetch_use, random_use, zip_use FROM stats WHERE id=1"
        ).fetchone()
        stats = UsageStats()
        if row:
            stats.total_use = int(row["total_use"])
            stats.fetch_use = int(row["fetch_use"])
            stats.random_use = int(row["random_use"])
            stats.zip_use = int(row["zip_use"])

        for r in self.conn().execute("SELECT polarity, tag, hits FROM tag_stats").fetchall():
            target = stats.positive_tags if r["polarity"] == "positive" else stats.negative_tags
            target[r["tag"]] = int(r["hits"])
        return stats

    def save_stats(self, stats: UsageStats) -> None:
        conn = self.conn()
        with conn:  # transaction
            conn.execute(
                """
                INSERT INTO stats (id, total_use, fetch_use, random_use, zip_use, updated_at)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  total_use=excluded.total_use,
                  fetch_use=excluded.fetch_use,
                  random_use=excluded.random_use,
                  zip_use=excluded.zip_use,
                  updated_at=excluded.updated_at
                """,
                (stats.total_use, stats.fetch_use, stats.random_use, stats.zip_use, utcnow_iso()),
            )
            rows = [("positive", tag, hits) for tag, hits in stats.positive_tags.items()]
            rows += [("negative", tag, hits) for tag, hits in stats.negative_tags.items()]
            if rows:
                conn.executemany(
                    """
                    INSERT INTO tag_stats (polarity, tag, hits)
                    VALUES (?, ?, ?)
                    ON CONFLICT(polarity, tag) DO UPDATE SET hits=excluded.hits
                    """,
                    rows,
                )

    # -------- stored settings --------
    def get_setting(self, key: str) -> Optional[str]:
        row = self.conn().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self.conn().execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              value=excluded.value,
              updated_at=excluded.updated_at
            """,
            (key, value, utcnow_iso()),
        )
        self.conn().commit()

