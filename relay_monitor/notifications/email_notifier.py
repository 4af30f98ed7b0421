"""Email notifications for model changes, delivered through Resend."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import structlog

from ..config import MonitorSettings
from ..errors import DecryptionError, NotificationError
from ..security import SecretsCodec
from ..storage.models import CheckInResult, ModelDiff
from ..storage.repository import MonitorRepository
from .formatting import FailedSite, SiteChange, batch_subject, render_batch, render_site_change, single_subject


logger = structlog.get_logger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class NotificationResult:
    status: str
    reason: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == SENT


def parse_recipients(raw: Any) -> list[str]:
    """Resolve a recipient list from a JSON array or a comma/semicolon separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(e).strip() for e in raw if str(e).strip()]

    text = str(raw).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(e).strip() for e in parsed if str(e).strip()]
    return [part.strip() for part in re.split(r"[,;]", text) if part.strip()]


async def send_resend_email(
    client: httpx.AsyncClient,
    settings: MonitorSettings,
    api_key: str,
    *,
    to: list[str],
    subject: str,
    html: str,
) -> str:
    """Send one email; returns the provider message id.

    Raises:
        NotificationError: transport failure or a non-2xx answer.
    """
    payload = {"from": settings.email_from, "to": to, "subject": subject, "html": html}
    try:
        resp = await asyncio.wait_for(
            client.post(
                settings.resend_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=settings.email_timeout,
            ),
            timeout=settings.email_timeout,
        )
    except asyncio.TimeoutError as e:
        raise NotificationError(f"Email request timed out after {settings.email_timeout:g}s") from e
    except httpx.HTTPError as e:
        raise NotificationError(f"{type(e).__name__}: {e}") from e

    try:
        data = resp.json()
    except ValueError:
        data = {}
    if not resp.is_success:
        detail = data.get("message") if isinstance(data, dict) else None
        raise NotificationError(f"HTTP {resp.status_code}: {detail or resp.text[:200]}")
    return str(data.get("id") or "") if isinstance(data, dict) else ""


class EmailNotifier:
    """Sends change notifications. Never raises; every call returns a NotificationResult."""

    def __init__(
        self,
        repo: MonitorRepository,
        codec: SecretsCodec,
        settings: MonitorSettings,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
    ):
        self.repo = repo
        self.codec = codec
        self.settings = settings
        self.client_factory = client_factory

    async def notify_site_change(
        self, site_name: str, diff: ModelDiff, check_in_result: Optional[CheckInResult] = None
    ) -> NotificationResult:
        """Send one email for one site's model changes."""
        if not diff.has_changes:
            return NotificationResult(SKIPPED, "no changes")

        return await self._dispatch(
            single_subject(site_name),
            render_site_change(site_name, diff, check_in_result),
            kind="single",
            site_name=site_name,
            added=len(diff.added),
            removed=len(diff.removed),
        )

    async def notify_batch(self, changes: list[SiteChange], failures: list[FailedSite]) -> NotificationResult:
        """Send one digest covering a whole global run."""
        if not changes and not failures:
            return NotificationResult(SKIPPED, "nothing to report")

        return await self._dispatch(
            batch_subject(changes, failures),
            render_batch(changes, failures),
            kind="batch",
            changed_sites=len(changes),
            failed_sites=len(failures),
        )

    async def _dispatch(self, subject: str, html: str, *, kind: str, **context: Any) -> NotificationResult:
        # Read at send time so edits apply to the next email.
        config = self.repo.get_email_config()
        if config is None or not config.enabled:
            logger.info("Email notifications disabled, skipping", kind=kind, **context)
            return NotificationResult(SKIPPED, "email disabled")

        recipients = parse_recipients(config.notify_emails)
        if not recipients:
            logger.info("No notification recipients configured, skipping", kind=kind, **context)
            return NotificationResult(SKIPPED, "no recipients")

        if not config.api_key_enc:
            logger.warning("Email enabled without an API key, skipping", kind=kind, **context)
            return NotificationResult(SKIPPED, "no api key")

        try:
            api_key = self.codec.decrypt(config.api_key_enc)
        except DecryptionError as e:
            logger.error("Email API key could not be decrypted", kind=kind, error=str(e), **context)
            return NotificationResult(FAILED, f"decryption failed: {e}")

        try:
            async with self.client_factory() as client:
                message_id = await send_resend_email(
                    client, self.settings, api_key, to=recipients, subject=subject, html=html
                )
        except NotificationError as e:
            logger.error("Failed to send notification email", kind=kind, error=str(e), **context)
            return NotificationResult(FAILED, str(e))
        except Exception as e:
            logger.error("Unexpected error sending notification email", kind=kind, error=str(e), **context)
            return NotificationResult(FAILED, f"{type(e).__name__}: {e}")

        logger.info("Notification email sent", kind=kind, recipients=len(recipients), message_id=message_id, **context)
        return NotificationResult(SENT, message_id=message_id or None)
