"""Row-store access for sites, snapshots, diffs and the singleton policies.

Each call opens its own connection. Snapshots and diffs are append-only;
sites and the two singleton configs are last-write-wins per row.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import fields
from typing import Any, Optional

from ..errors import SiteNotFoundError
from .db import connect, ensure_schema
from .models import (
    ApiType,
    BillingAuthType,
    CheckInMode,
    EmailConfig,
    ModelDiffRecord,
    ModelSnapshot,
    ScheduleConfig,
    Site,
)


def _utc_ts() -> float:
    return float(time.time())


def _opt_bool(value: Any) -> bool | None:
    return None if value is None else bool(value)


def _site_from_row(row: sqlite3.Row) -> Site:
    auth_type = row["billing_auth_type"]
    return Site(
        id=int(row["id"]),
        name=row["name"],
        base_url=row["base_url"],
        api_type=ApiType.parse(row["api_type"]),
        api_key_enc=row["api_key_enc"],
        user_id=row["user_id"],
        unlimited_quota=bool(row["unlimited_quota"]),
        billing_url=row["billing_url"],
        billing_limit_field=row["billing_limit_field"],
        billing_usage_field=row["billing_usage_field"],
        billing_ratio=row["billing_ratio"],
        billing_auth_type=BillingAuthType(auth_type) if auth_type in ("token", "cookie") else None,
        billing_auth_value_enc=row["billing_auth_value_enc"],
        checkin_enabled=bool(row["checkin_enabled"]),
        checkin_mode=CheckInMode.parse(row["checkin_mode"]),
        schedule_cron=row["schedule_cron"],
        timezone=row["timezone"],
        last_checked_ts=row["last_checked_ts"],
        created_ts=row["created_ts"],
        updated_ts=row["updated_ts"],
    )


def _snapshot_from_row(row: sqlite3.Row) -> ModelSnapshot:
    return ModelSnapshot(
        id=int(row["id"]),
        site_id=int(row["site_id"]),
        models_json=row["models_json"],
        hash=row["hash"],
        models_observed=bool(row["models_observed"]),
        fetched_ts=float(row["fetched_ts"]),
        raw_response=row["raw_response"],
        error_message=row["error_message"],
        status_code=row["status_code"],
        response_time_ms=row["response_time_ms"],
        billing_limit=row["billing_limit"],
        billing_usage=row["billing_usage"],
        billing_error=row["billing_error"],
        checkin_success=_opt_bool(row["checkin_success"]),
        checkin_message=row["checkin_message"],
        checkin_quota=row["checkin_quota"],
        checkin_error=row["checkin_error"],
    )


def _diff_from_row(row: sqlite3.Row) -> ModelDiffRecord:
    return ModelDiffRecord(
        id=int(row["id"]),
        site_id=int(row["site_id"]),
        added_json=row["added_json"],
        removed_json=row["removed_json"],
        changed_json=row["changed_json"],
        snapshot_from_id=int(row["snapshot_from_id"]),
        snapshot_to_id=int(row["snapshot_to_id"]),
        diff_ts=float(row["diff_ts"]),
    )


_SITE_COLUMNS = [f.name for f in fields(Site) if f.name not in ("id", "created_ts", "updated_ts")]


def _site_values(site: Site) -> list[Any]:
    out: list[Any] = []
    for name in _SITE_COLUMNS:
        value = getattr(site, name)
        if hasattr(value, "value"):
            value = value.value
        elif isinstance(value, bool):
            value = int(value)
        out.append(value)
    return out


class MonitorRepository:
    """Repository over the monitor's sqlite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._schema_ready = False

    def initialize(self) -> None:
        ensure_schema(self.db_path)
        self._schema_ready = True

    def _conn(self) -> sqlite3.Connection:
        if not self._schema_ready:
            self.initialize()
        return connect(self.db_path)

    # --- sites ---

    def create_site(self, site: Site) -> Site:
        now = _utc_ts()
        cols = ", ".join(_SITE_COLUMNS + ["created_ts", "updated_ts"])
        marks = ", ".join("?" for _ in range(len(_SITE_COLUMNS) + 2))
        conn = self._conn()
        try:
            cur = conn.execute(
                f"INSERT INTO sites ({cols}) VALUES ({marks})",
                _site_values(site) + [now, now],
            )
            site_id = int(cur.lastrowid)
        finally:
            conn.close()
        created = self.get_site(site_id)
        if created is None:
            raise ValueError(f"Site {site_id} was not found after insert")
        return created

    def get_site(self, site_id: int) -> Optional[Site]:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM sites WHERE id = ?", (int(site_id),)).fetchone()
        finally:
            conn.close()
        return _site_from_row(row) if row else None

    def list_sites(self) -> list[Site]:
        conn = self._conn()
        try:
            rows = conn.execute("SELECT * FROM sites ORDER BY id").fetchall()
        finally:
            conn.close()
        return [_site_from_row(r) for r in rows]

    def update_site(self, site: Site) -> Site:
        if site.id is None:
            raise ValueError("Cannot update a site without an id")
        assignments = ", ".join(f"{c} = ?" for c in _SITE_COLUMNS)
        conn = self._conn()
        try:
            conn.execute(
                f"UPDATE sites SET {assignments}, updated_ts = ? WHERE id = ?",
                _site_values(site) + [_utc_ts(), int(site.id)],
            )
        finally:
            conn.close()
        updated = self.get_site(site.id)
        if updated is None:
            raise SiteNotFoundError(f"Site {site.id} not found")
        return updated

    def touch_site_checked(self, site_id: int, ts: float) -> None:
        conn = self._conn()
        try:
            conn.execute("UPDATE sites SET last_checked_ts = ? WHERE id = ?", (float(ts), int(site_id)))
        finally:
            conn.close()

    def delete_site(self, site_id: int) -> bool:
        conn = self._conn()
        try:
            cur = conn.execute("DELETE FROM sites WHERE id = ?", (int(site_id),))
            return cur.rowcount > 0
        finally:
            conn.close()

    # --- snapshots ---

    def create_snapshot(self, snap: ModelSnapshot) -> ModelSnapshot:
        conn = self._conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO model_snapshots
                  (site_id, models_json, hash, models_observed, fetched_ts, raw_response, error_message,
                   status_code, response_time_ms, billing_limit, billing_usage, billing_error,
                   checkin_success, checkin_message, checkin_quota, checkin_error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(snap.site_id),
                    snap.models_json,
                    snap.hash,
                    int(snap.models_observed),
                    float(snap.fetched_ts),
                    snap.raw_response,
                    snap.error_message,
                    snap.status_code,
                    snap.response_time_ms,
                    snap.billing_limit,
                    snap.billing_usage,
                    snap.billing_error,
                    None if snap.checkin_success is None else int(snap.checkin_success),
                    snap.checkin_message,
                    snap.checkin_quota,
                    snap.checkin_error,
                ),
            )
            snap.id = int(cur.lastrowid)
        finally:
            conn.close()
        return snap

    def latest_successful_snapshot(self, site_id: int) -> Optional[ModelSnapshot]:
        """Most recent snapshot in diff lineage: no error and models observed."""
        conn = self._conn()
        try:
            row = conn.execute(
                """
                SELECT * FROM model_snapshots
                WHERE site_id = ? AND error_message IS NULL AND models_observed = 1
                ORDER BY fetched_ts DESC, id DESC LIMIT 1
                """,
                (int(site_id),),
            ).fetchone()
        finally:
            conn.close()
        return _snapshot_from_row(row) if row else None

    def latest_checkin_snapshot(self, site_id: int) -> Optional[ModelSnapshot]:
        """Most recent snapshot that recorded a check-in outcome, of any kind."""
        conn = self._conn()
        try:
            row = conn.execute(
                """
                SELECT * FROM model_snapshots
                WHERE site_id = ? AND checkin_success IS NOT NULL
                ORDER BY fetched_ts DESC, id DESC LIMIT 1
                """,
                (int(site_id),),
            ).fetchone()
        finally:
            conn.close()
        return _snapshot_from_row(row) if row else None

    def list_snapshots(self, site_id: int, limit: int = 50) -> list[ModelSnapshot]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT * FROM model_snapshots WHERE site_id = ? ORDER BY fetched_ts DESC, id DESC LIMIT ?",
                (int(site_id), int(limit)),
            ).fetchall()
        finally:
            conn.close()
        return [_snapshot_from_row(r) for r in rows]

    # --- diffs ---

    def create_diff(self, diff: ModelDiffRecord) -> ModelDiffRecord:
        conn = self._conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO model_diffs
                  (site_id, added_json, removed_json, changed_json, snapshot_from_id, snapshot_to_id, diff_ts)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(diff.site_id),
                    diff.added_json,
                    diff.removed_json,
                    diff.changed_json,
                    int(diff.snapshot_from_id),
                    int(diff.snapshot_to_id),
                    float(diff.diff_ts),
                ),
            )
            diff.id = int(cur.lastrowid)
        finally:
            conn.close()
        return diff

    def list_diffs(self, site_id: int, limit: int = 50) -> list[ModelDiffRecord]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT * FROM model_diffs WHERE site_id = ? ORDER BY diff_ts DESC, id DESC LIMIT ?",
                (int(site_id), int(limit)),
            ).fetchall()
        finally:
            conn.close()
        return [_diff_from_row(r) for r in rows]

    # --- singleton policies ---

    def get_schedule_config(self) -> Optional[ScheduleConfig]:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM schedule_config WHERE id = 1").fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return ScheduleConfig(
            enabled=bool(row["enabled"]),
            hour=int(row["hour"]),
            minute=int(row["minute"]),
            timezone=row["timezone"],
            interval_seconds=int(row["interval_seconds"]),
            override_individual=bool(row["override_individual"]),
            last_run_ts=row["last_run_ts"],
        )

    def save_schedule_config(self, config: ScheduleConfig) -> ScheduleConfig:
        conn = self._conn()
        try:
            conn.execute(
                """
                INSERT INTO schedule_config
                  (id, enabled, hour, minute, timezone, interval_seconds, override_individual, last_run_ts)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  enabled = excluded.enabled,
                  hour = excluded.hour,
                  minute = excluded.minute,
                  timezone = excluded.timezone,
                  interval_seconds = excluded.interval_seconds,
                  override_individual = excluded.override_individual,
                  last_run_ts = excluded.last_run_ts
                """,
                (
                    int(config.enabled),
                    int(config.hour),
                    int(config.minute),
                    config.timezone,
                    int(config.interval_seconds),
                    int(config.override_individual),
                    config.last_run_ts,
                ),
            )
        finally:
            conn.close()
        return config

    def touch_schedule_last_run(self, ts: float) -> None:
        conn = self._conn()
        try:
            cur = conn.execute("UPDATE schedule_config SET last_run_ts = ? WHERE id = 1", (float(ts),))
            if cur.rowcount == 0:
                conn.execute("INSERT INTO schedule_config (id, last_run_ts) VALUES (1, ?)", (float(ts),))
        finally:
            conn.close()

    def get_email_config(self) -> Optional[EmailConfig]:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM email_config WHERE id = 1").fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return EmailConfig(
            enabled=bool(row["enabled"]),
            api_key_enc=row["api_key_enc"],
            notify_emails=row["notify_emails"] or "",
        )

    def save_email_config(self, config: EmailConfig) -> EmailConfig:
        conn = self._conn()
        try:
            conn.execute(
                """
                INSERT INTO email_config (id, enabled, api_key_enc, notify_emails)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  enabled = excluded.enabled,
                  api_key_enc = excluded.api_key_enc,
                  notify_emails = excluded.notify_emails
                """,
                (int(config.enabled), config.api_key_enc, config.notify_emails or ""),
            )
        finally:
            conn.close()
        return config
