"""Command line entry point for the relay monitor.

Usage:
    python main.py serve                     # run scheduled checks until interrupted
    python main.py check 3                   # check site 3 now and notify on changes
    python main.py check 3 --no-notify       # check without sending email
    python main.py checkin 3                 # manual check-in for site 3
    python main.py run-global                # run one global batch now
    echo -n secret | python main.py encrypt  # print a credential envelope
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import structlog

from .checker import CheckResult, SiteChecker
from .config import MonitorSettings, load_config
from .errors import MonitorError
from .notifications import EmailNotifier
from .scheduler import ScheduleCoordinator
from .security import SecretsCodec
from .service import MonitorService
from .storage import MonitorRepository


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Request URLs can carry credentials.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@dataclass
class MonitorApp:
    settings: MonitorSettings
    repo: MonitorRepository
    codec: SecretsCodec
    checker: SiteChecker
    notifier: EmailNotifier
    coordinator: ScheduleCoordinator
    service: MonitorService


def build_app(settings: MonitorSettings) -> MonitorApp:
    repo = MonitorRepository(settings.database_path)
    repo.initialize()
    codec = SecretsCodec.from_secret(settings.encryption_key)
    checker = SiteChecker(repo, codec, settings)
    notifier = EmailNotifier(repo, codec, settings)
    coordinator = ScheduleCoordinator(
        repo, checker, notifier, default_site_timezone=settings.default_site_timezone
    )
    service = MonitorService(
        repo, codec, checker, notifier, coordinator, default_global_timezone=settings.default_global_timezone
    )
    return MonitorApp(settings, repo, codec, checker, notifier, coordinator, service)


def _result_summary(result: CheckResult) -> dict:
    summary = {
        "site_id": result.site_id,
        "site_name": result.site_name,
        "has_changes": result.has_changes,
        "snapshot_id": result.snapshot_id,
        "check_in_only": result.check_in_only,
        "check_in_changed": result.check_in_changed,
    }
    if result.diff is not None:
        summary["added"] = [m.id for m in result.diff.added]
        summary["removed"] = [m.id for m in result.diff.removed]
    if result.billing is not None:
        summary["billing"] = {
            "limit": result.billing.limit,
            "usage": result.billing.usage,
            "error": result.billing.error,
        }
    if result.check_in_result is not None:
        summary["check_in"] = {
            "success": result.check_in_result.success,
            "message": result.check_in_result.message,
            "quota": result.check_in_result.quota,
            "error": result.check_in_result.error,
        }
    return summary


async def serve(app: MonitorApp) -> None:
    await app.coordinator.start()
    logger.info("Relay monitor running", database=app.settings.database_path, jobs=app.coordinator.scheduler.job_ids())
    try:
        await asyncio.Event().wait()
    finally:
        await app.coordinator.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay gateway model monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run scheduled checks until interrupted")

    check = sub.add_parser("check", help="Check one site now")
    check.add_argument("site_id", type=int)
    check.add_argument("--no-notify", action="store_true", help="Do not send a change email")

    checkin = sub.add_parser("checkin", help="Run a manual check-in for one site")
    checkin.add_argument("site_id", type=int)

    sub.add_parser("run-global", help="Run one global batch now")
    sub.add_parser("encrypt", help="Encrypt a credential read from stdin")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_config(args.config)
    configure_logging(args.log_level or settings.log_level)

    if args.command == "encrypt":
        secret = sys.stdin.read().strip()
        if not secret:
            print("Nothing to encrypt on stdin", file=sys.stderr)
            return 2
        print(SecretsCodec.from_secret(settings.encryption_key).encrypt(secret))
        return 0

    app = build_app(settings)
    try:
        if args.command == "serve":
            try:
                asyncio.run(serve(app))
            except KeyboardInterrupt:
                logger.info("Interrupted, shutting down")
            return 0

        if args.command == "check":
            result = asyncio.run(app.service.check_site(args.site_id, notify=not args.no_notify))
            print(json.dumps(_result_summary(result), indent=2, ensure_ascii=False))
            return 0

        if args.command == "checkin":
            result = asyncio.run(app.service.check_in(args.site_id))
            print(json.dumps(_result_summary(result), indent=2, ensure_ascii=False))
            return 0 if result.check_in_result and result.check_in_result.success else 1

        if args.command == "run-global":
            summary = asyncio.run(app.service.run_global_now())
            print(
                json.dumps(
                    {
                        "checked": summary.checked,
                        "changed": [c.site_name for c in summary.changes],
                        "failed": [{"site_name": f.site_name, "error": f.error} for f in summary.failures],
                        "notification": summary.notification.status if summary.notification else None,
                    },
                    indent=2,
                    ensure_ascii=False,
                )
            )
            return 0
    except MonitorError as e:
        logger.error("Command failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1

    return 2
