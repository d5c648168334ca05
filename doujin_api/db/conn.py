from __future__ import annotations

import sqlite3
from pathlib import Path

MEMORY_DB = ":memory:"

def sqlite_path_from_url(db_url: str) -> Path | str:
    """Map DB_URL to a sqlite3.connect() target.

    sqlite:///data/doujins.db and sqlite:////abs/doujins.db are files;
    sqlite:// and sqlite:///:memory: are in-memory databases.
    """
    scheme, sep, rest = db_url.partition("://")
    if scheme != "sqlite" or not sep:
        raise ValueError(f"DB_URL must be a sqlite URL. Got: {db_url}")
    if rest and not rest.startswith("/"):
        raise ValueError(f"sqlite DB_URL cannot name a host. Got: {db_url}")

    path_str = rest[1:]
    if path_str in ("", MEMORY_DB):
        return MEMORY_DB
    return Path(path_str)

def connect_sqlite(db_url: str, *, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    target = sqlite_path_from_url(db_url)
    if isinstance(target, Path):
        target.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(target), timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    # in-memory databases stay in "memory" journal mode
    if target != MEMORY_DB:
        conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
    return conn
