#!/usr/bin/env python3
"""
Run the escalation sweep outside the API process.

Escalates every ACTIVE approval stage whose deadline has passed and that
has not been escalated yet, notifying its escalators once.  Settings come
from approval_config (YAML + environment: DATABASE_URL,
AUTH_SERVICE_BASE_URL, INTERSERVICE_API_KEY, ...).

Usage:
    python3 scripts/run_escalation_sweep.py            # one sweep, then exit
    python3 scripts/run_escalation_sweep.py --loop     # sweep every interval
    python3 scripts/run_escalation_sweep.py --config path/to/settings.yaml
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_batch.scheduler import EscalationSweepScheduler
from approval_config import get_active_settings
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from approval_kernel.logging_config import configure_logging, get_logger
from approval_kernel.services.escalation_scanner import EscalationScanner
from approval_services.clients import NotificationClient, UserDirectoryClient

logger = get_logger("scripts.escalation_sweep")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Escalate overdue approval stages.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running, one sweep per configured interval (Ctrl-C to stop).",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Override the sweep interval in seconds (with --loop).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings YAML (default: $APPROVAL_WORKFLOW_CONFIG or packaged defaults).",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = get_active_settings(args.config)
    configure_logging(level=settings.logging.level)

    init_engine_from_url(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
    )
    create_tables()

    users = UserDirectoryClient.from_settings(settings.auth_service)
    notifications = NotificationClient.from_settings(settings.auth_service)
    try:
        scanner = EscalationScanner(
            session_factory=get_session_factory(),
            user_directory=users,
            dispatcher=notifications,
            system_actor_id=settings.escalation.system_actor_id,
        )

        if not args.loop:
            result = scanner.run_sweep()
            print(
                f"due={result.due} escalated={result.escalated} "
                f"skipped={result.skipped} failed={result.failed} "
                f"notifications={result.notifications_sent}"
            )
            return 0 if result.is_clean else 1

        scheduler = EscalationSweepScheduler(
            scanner,
            interval_seconds=args.interval or settings.escalation.sweep_interval_seconds,
        )
        scheduler.start()
        try:
            while scheduler.is_running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            logger.info("escalation_sweep_interrupted")
        finally:
            scheduler.stop()
        return 0
    finally:
        users.close()
        notifications.close()


if __name__ == "__main__":
    sys.exit(main())
