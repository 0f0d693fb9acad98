from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from db.locking import write_intent
from models.rental_models import AuditLog
from services.clock import utcnow
from services.errors import ConcurrentUpdateError


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=utcnow(),
        )
    )


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run one lifecycle operation as a single unit of work.

    Everything flushed inside the block commits together; any exception rolls
    the whole unit back and propagates. A version-counter mismatch on commit
    means another writer changed the row first and is reported as a retryable
    ``ConcurrentUpdateError``.

    The unit always opens a fresh write transaction; a read transaction still
    open on the session is ended first.
    """
    if db.in_transaction():
        db.commit()
    try:
        with write_intent():
            db.connection()
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentUpdateError("Record was modified concurrently; retry the operation.") from exc
    except BaseException:
        db.rollback()
        raise
