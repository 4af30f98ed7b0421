"""HTML bodies and subjects for change notification emails."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..storage.models import CheckInResult, ModelDiff, ModelInfo

SUBJECT_PREFIX = "[Relay Monitor]"
MAX_LISTED_MODELS = 20

ADDED_COLOR = "#389e0d"
REMOVED_COLOR = "#cf1322"


@dataclass(frozen=True)
class SiteChange:
    site_name: str
    diff: ModelDiff
    check_in_result: Optional[CheckInResult] = None


@dataclass(frozen=True)
class FailedSite:
    site_name: str
    error: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def single_subject(site_name: str) -> str:
    return f"{SUBJECT_PREFIX} {site_name} - models changed"


def batch_subject(changes: list[SiteChange], failures: list[FailedSite]) -> str:
    subject = f"{SUBJECT_PREFIX} Scheduled check report"
    parts = []
    if changes:
        parts.append(f"{_plural(len(changes), 'site')} changed")
    if failures:
        parts.append(f"{_plural(len(failures), 'site')} failed")
    if parts:
        subject += " - " + ", ".join(parts)
    return subject


def render_models(models: list[ModelInfo], color: str, limit: Optional[int] = MAX_LISTED_MODELS) -> str:
    shown = models if limit is None else models[:limit]
    items = "".join(
        f'<li style="font-family: monospace; color: {color};">{html.escape(m.id or "unknown")}</li>' for m in shown
    )
    out = f"<ul>{items}</ul>"
    hidden = len(models) - len(shown)
    if hidden > 0:
        out += f'<p style="color: #666; font-size: 13px;">+{hidden} more</p>'
    return out


def render_checkin(result: Optional[CheckInResult]) -> str:
    if result is None:
        return ""
    color = ADDED_COLOR if result.success else REMOVED_COLOR
    status = result.message or ("Check-in succeeded" if result.success else "Check-in failed")
    out = (
        f'<div style="border: 1px solid {color}; padding: 10px 12px; border-radius: 4px; margin: 10px 0;">'
        f'<strong style="color: {color};">Check-in:</strong> {html.escape(status)}'
    )
    if result.quota:
        out += f"<br>Awarded quota: {html.escape(str(result.quota))}"
    if not result.success and result.error and result.error != status:
        out += f'<br><span style="color: #8c8c8c;">{html.escape(result.error)}</span>'
    return out + "</div>"


def _render_diff(diff: ModelDiff, limit: Optional[int]) -> str:
    out = ""
    if diff.added:
        out += f'<h3 style="color: {ADDED_COLOR};">Added models ({len(diff.added)})</h3>'
        out += render_models(diff.added, ADDED_COLOR, limit)
    if diff.removed:
        out += f'<h3 style="color: {REMOVED_COLOR};">Removed models ({len(diff.removed)})</h3>'
        out += render_models(diff.removed, REMOVED_COLOR, limit)
    return out


def _wrap(title: str, body: str, now: Optional[datetime]) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto;">'
        f'<h1 style="color: #333;">{html.escape(title)}</h1>'
        f"{body}"
        '<p style="color: #999; font-size: 12px; margin-top: 30px;">'
        f"Sent automatically by Relay Monitor at {html.escape(_timestamp(now))}</p>"
        "</div>"
    )


def render_site_change(
    site_name: str,
    diff: ModelDiff,
    check_in_result: Optional[CheckInResult] = None,
    now: Optional[datetime] = None,
) -> str:
    """Body for a single-site notification. Every model is listed."""
    body = f"<p><strong>Site:</strong> {html.escape(site_name)}</p>"
    body += render_checkin(check_in_result)
    body += _render_diff(diff, limit=None)
    return _wrap("Model change detected", body, now)


def render_batch(changes: list[SiteChange], failures: list[FailedSite], now: Optional[datetime] = None) -> str:
    """Digest body for one global run: totals, per-site changes, then failures."""
    total_added = sum(len(c.diff.added) for c in changes)
    total_removed = sum(len(c.diff.removed) for c in changes)

    body = (
        '<div style="background: #e6f7ff; border-left: 4px solid #1890ff; padding: 12px 15px;">'
        f"<p><strong>Sites changed:</strong> {len(changes)}</p>"
        f"<p><strong>Models added:</strong> {total_added} &nbsp; <strong>Models removed:</strong> {total_removed}</p>"
    )
    if failures:
        body += f'<p style="color: {REMOVED_COLOR};"><strong>Sites failed:</strong> {len(failures)}</p>'
    body += "</div>"

    for change in changes:
        site_total = len(change.diff.added) + len(change.diff.removed)
        body += (
            '<div style="border: 1px solid #e8e8e8; border-radius: 8px; padding: 12px 20px; margin: 20px 0;">'
            f"<h2>{html.escape(change.site_name)} "
            f'<small style="color: #1890ff;">{_plural(site_total, "change")}</small></h2>'
        )
        body += render_checkin(change.check_in_result)
        body += _render_diff(change.diff, limit=MAX_LISTED_MODELS)
        body += "</div>"

    if failures:
        body += (
            f'<div style="border: 2px solid #ffccc7; background: #fff2f0; padding: 15px 20px; border-radius: 8px;">'
            f'<h2 style="color: {REMOVED_COLOR};">Failed sites ({len(failures)})</h2>'
        )
        for failure in failures:
            body += (
                f"<p><strong>{html.escape(failure.site_name)}</strong><br>"
                f'<code style="color: #8c8c8c;">{html.escape(failure.error)}</code></p>'
            )
        body += "</div>"

    return _wrap("Scheduled check report", body, now)
