from __future__ import annotations

import sqlite3
from pathlib import Path


SCHEMA_VERSION = 1


def connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL lets the scheduler and manual checks write without blocking readers.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def ensure_schema(db_path: str) -> None:
    conn = connect(db_path)
    try:
        _ensure_schema_conn(conn)
    finally:
        conn.close()


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sites (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          base_url TEXT NOT NULL,
          api_type TEXT NOT NULL DEFAULT 'other',
          api_key_enc TEXT NOT NULL,
          user_id TEXT,
          unlimited_quota INTEGER NOT NULL DEFAULT 0,
          billing_url TEXT,
          billing_limit_field TEXT,
          billing_usage_field TEXT,
          billing_ratio REAL,
          billing_auth_type TEXT,
          billing_auth_value_enc TEXT,
          checkin_enabled INTEGER NOT NULL DEFAULT 0,
          checkin_mode TEXT NOT NULL DEFAULT 'both',
          schedule_cron TEXT,
          timezone TEXT,
          last_checked_ts REAL,
          created_ts REAL NOT NULL,
          updated_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS model_snapshots (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          site_id INTEGER NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
          models_json TEXT NOT NULL DEFAULT '[]',
          hash TEXT NOT NULL DEFAULT '',
          models_observed INTEGER NOT NULL DEFAULT 1,
          fetched_ts REAL NOT NULL,
          raw_response TEXT,
          error_message TEXT,
          status_code INTEGER,
          response_time_ms REAL,
          billing_limit REAL,
          billing_usage REAL,
          billing_error TEXT,
          checkin_success INTEGER,
          checkin_message TEXT,
          checkin_quota REAL,
          checkin_error TEXT
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS model_diffs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          site_id INTEGER NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
          added_json TEXT NOT NULL,
          removed_json TEXT NOT NULL,
          changed_json TEXT NOT NULL DEFAULT '[]',
          snapshot_from_id INTEGER NOT NULL REFERENCES model_snapshots(id) ON DELETE CASCADE,
          snapshot_to_id INTEGER NOT NULL REFERENCES model_snapshots(id) ON DELETE CASCADE,
          diff_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedule_config (
          id INTEGER PRIMARY KEY CHECK (id = 1),
          enabled INTEGER NOT NULL DEFAULT 0,
          hour INTEGER NOT NULL DEFAULT 9,
          minute INTEGER NOT NULL DEFAULT 0,
          timezone TEXT NOT NULL DEFAULT 'Asia/Shanghai',
          interval_seconds INTEGER NOT NULL DEFAULT 30,
          override_individual INTEGER NOT NULL DEFAULT 0,
          last_run_ts REAL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS email_config (
          id INTEGER PRIMARY KEY CHECK (id = 1),
          enabled INTEGER NOT NULL DEFAULT 0,
          api_key_enc TEXT,
          notify_emails TEXT NOT NULL DEFAULT ''
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshots_site_fetched ON model_snapshots(site_id, fetched_ts DESC, id DESC);"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_diffs_site_ts ON model_diffs(site_id, diff_ts DESC);")
