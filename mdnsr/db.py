from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import settings

logger = logging.getLogger("mdnsr")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount created before the file
    existed, for example), the journal file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "mdnsr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              host TEXT,
              ingress TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_host ON events(host);
            """
        )


def log_event(level: str, message: str, host: str | None = None, ingress: str | None = None) -> None:
    """Record an event in the journal and mirror it to the stdlib logger."""
    level = level.upper()
    extra = " ".join(f"{k}={v}" for k, v in (("host", host), ("ingress", ingress)) if v)
    logger.log(_LEVELS.get(level, logging.INFO), f"{message} {extra}".rstrip())
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, host, ingress, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level, host, ingress, message),
        )


def latest_events(limit: int = 100, host: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if host:
            rows = conn.execute(
                "SELECT * FROM events WHERE host=? ORDER BY id DESC LIMIT ?", (host, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
