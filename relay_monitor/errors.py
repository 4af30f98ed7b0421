"""Error taxonomy shared by the checking pipeline."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all relay monitor errors."""


class ProviderError(MonitorError):
    """An upstream call failed.

    Carries whatever diagnostics were available when the call failed so the
    checker can persist them on an error snapshot.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_response: str | None = None,
        status_code: int | None = None,
        elapsed_ms: float | None = None,
    ) -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.status_code = status_code
        self.elapsed_ms = elapsed_ms


class NetworkError(ProviderError):
    """Timeout or connection failure."""


class UpstreamHTTPError(ProviderError):
    """Upstream answered with a non-2xx status."""


class MalformedResponseError(ProviderError):
    """Body was not JSON or did not have the expected shape."""


class DecryptionError(MonitorError):
    """A stored credential is corrupt, tampered with, or in an unknown format."""


class ConfigurationError(MonitorError):
    """A site or policy is missing a field it needs."""


class NotificationError(MonitorError):
    """Email dispatch failed."""


class SiteNotFoundError(MonitorError):
    """No site exists with the requested id."""
