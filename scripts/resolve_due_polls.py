# scripts/resolve_due_polls.py
"""
Poll resolution "tick" script.

Meant to run every minute or so from cron (or any scheduler). Each run
closes the polls whose deadline has passed and materializes their events.

Flow:
1. Find every event plan still polling with poll_ends_at in the past.
2. Resolve each one; plans another worker already resolved are skipped.
3. Print one line per plan and a summary.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime

from raidplan.clock import FixedClock, SystemClock
from raidplan.config import get_settings
from raidplan.db.session import SessionLocal, engine
from raidplan.models import Base
from raidplan.services.event_plan_service import resolve_due_plans


def run_once(now: datetime | None = None) -> int:
    Base.metadata.create_all(bind=engine)
    clock = FixedClock(now) if now is not None else SystemClock()

    db = SessionLocal()
    try:
        results = resolve_due_plans(db, clock=clock)
        for r in results:
            outcome = (
                f"created event {r.event.id}" if r.event is not None else r.resolution.reason
            )
            print(f"[resolve_due_polls] plan {r.plan.id}: {r.plan.status} ({outcome})")

        print(f"[resolve_due_polls] Resolved {len(results)} plan(s)")
        return len(results)
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Resolve as if it were this UTC time (ISO-8601); defaults to the system clock",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )
    run_once(now=args.now)


if __name__ == "__main__":
    main()
