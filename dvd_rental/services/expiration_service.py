from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from services.clock import as_naive_utc, utcnow
from services.rental_service import ReturnTrigger, find_expired_active, request_return
from services.scheduler import SessionTicker


LOGGER = logging.getLogger("dvd_rental.expiration")

DEFAULT_SWEEP_INTERVAL_SECONDS = 300


@dataclass(frozen=True)
class SweepSummary:
    total: int
    succeeded: int
    failed: int

    def to_dict(self) -> dict:
        return {
            "totalExpiredRentals": self.total,
            "processedSuccessfully": self.succeeded,
            "failedToProcess": self.failed,
        }


def sweep_expired_rentals(db: Session, now: datetime | None = None) -> SweepSummary:
    """Move every overdue ACTIVE rental into RETURN_REQUESTED.

    Each rental is its own unit of work; a failure is logged and counted but
    never stops the rest of the batch.
    """
    swept_at = as_naive_utc(now) or utcnow()
    candidate_ids = [rental.RentalID for rental in find_expired_active(db, swept_at)]
    # Release the read transaction before the per-rental write transactions.
    db.rollback()
    LOGGER.info("Expired rental sweep started candidates=%s now=%s", len(candidate_ids), swept_at.isoformat())

    succeeded = 0
    failed = 0
    for rental_id in candidate_ids:
        try:
            request_return(db, rental_id, trigger=ReturnTrigger.SWEEPER, now=swept_at)
        except Exception:
            failed += 1
            LOGGER.exception("Expired rental failed rental_id=%s", rental_id)
            continue
        succeeded += 1
        LOGGER.info("Expired rental processed rental_id=%s", rental_id)

    summary = SweepSummary(total=len(candidate_ids), succeeded=succeeded, failed=failed)
    LOGGER.info(
        "Expired rental sweep completed total=%s succeeded=%s failed=%s",
        summary.total,
        summary.succeeded,
        summary.failed,
    )
    return summary


class ExpirationTicker(SessionTicker):
    """Runs the expired-rental sweep on a fixed cadence."""

    name = "expired-rental-sweeper"

    def __init__(
        self,
        session_factory: sessionmaker,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(session_factory, interval_seconds)
        self._clock = clock

    def tick(self, db: Session) -> SweepSummary:
        return sweep_expired_rentals(db, now=self._clock())
