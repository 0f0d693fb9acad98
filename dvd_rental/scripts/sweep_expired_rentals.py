#!/usr/bin/env python3
"""Run the expired-rental sweep once, e.g. from cron."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))


def main() -> int:
    parser = argparse.ArgumentParser(description="Move overdue ACTIVE rentals to RETURN_REQUESTED")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--now", type=datetime.fromisoformat, default=None, help="ISO timestamp to treat as the current time")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    # db.session reads RENTAL_DB_URL at import.
    os.environ["RENTAL_DB_URL"] = db_url
    from db.session import build_engine, build_session_factory
    from services.expiration_service import sweep_expired_rentals

    session_factory = build_session_factory(build_engine(db_url))
    db = session_factory()
    try:
        summary = sweep_expired_rentals(db, now=args.now)
    finally:
        db.close()

    print(
        f"OK total={summary.total} succeeded={summary.succeeded} failed={summary.failed}"
    )
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
