# app/jobs/run_sweeps.py
# Cron entrypoint for the periodic lifecycle sweeps.
#
# Usage:
#   python -m app.jobs.run_sweeps all                       # every sweep, one `now`
#   python -m app.jobs.run_sweeps sessions                  # session status sweep only
#   python -m app.jobs.run_sweeps requests --mode expire    # keep lapsed requests as EXPIRED
#   python -m app.jobs.run_sweeps feedback-forfeit --now 2026-03-01T09:00:00Z
#
# Suggested schedule:
#   sessions, session-reminders     every minute
#   requests                        every 15 minutes
#   feedback-*, subscriptions       hourly
#
# Re-runnable: every sweep writes through conditional updates and skips
# rows another writer already moved on.

import argparse
import logging
import sys
from datetime import datetime, timezone

import app.db.base  # noqa: F401
from app.db.session import SessionLocal
from app.services.events import build_event_publisher
from app.services.sweeps import SWEEPS, run_all, run_sweep

log = logging.getLogger("lernhub.jobs.sweeps")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def _parse_now(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run LernHub lifecycle sweeps.")
    parser.add_argument("name", choices=sorted(SWEEPS) + ["all"], help="Sweep to run")
    parser.add_argument(
        "--mode",
        choices=["delete", "expire"],
        default=None,
        help="Lapsed request handling (default: REQUEST_EXPIRY_MODE)",
    )
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="ISO-8601 instant to evaluate deadlines against (default: current time)",
    )
    args = parser.parse_args(argv)

    publisher = build_event_publisher()
    db = SessionLocal()
    try:
        if args.name == "all":
            results = run_all(db, now=args.now, mode=args.mode, publisher=publisher)
        else:
            results = {args.name: run_sweep(db, args.name, now=args.now, mode=args.mode, publisher=publisher)}
    except Exception:
        db.rollback()
        log.exception("Sweep '%s' failed", args.name)
        return 1
    finally:
        db.close()
        publisher.close()

    for name, counts in results.items():
        log.info("%s: %s", name, ", ".join(f"{k}={v}" for k, v in counts.items()) or "nothing to do")
    return 0


if __name__ == "__main__":
    sys.exit(main())
