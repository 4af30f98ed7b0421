"""Notification module for change alerts."""

from .email_notifier import EmailNotifier, NotificationResult, parse_recipients
from .formatting import FailedSite, SiteChange

__all__ = ["EmailNotifier", "FailedSite", "NotificationResult", "SiteChange", "parse_recipients"]
