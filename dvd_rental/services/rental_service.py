from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Item, Rental, RentalStatus
from services.audit_service import atomic, log_audit
from services.availability_service import increase_availability
from services.clock import as_naive_utc, utcnow
from services.errors import InvalidInputError, InvalidStateError, NotFoundError, NotOwnerError
from services.fee_service import apply_financial_record, financial_record_of, generate_transaction


LOGGER = logging.getLogger("dvd_rental.rentals")

HISTORICAL_FILTER = "HISTORICAL"
USER_LIST_LIMIT = 50


class ReturnAction(str, enum.Enum):
    REQUEST = "REQUEST"
    DECLINE = "DECLINE"
    ACCEPT = "ACCEPT"


class ReturnTrigger(str, enum.Enum):
    RENTER = "RENTER"
    SWEEPER = "SWEEPER"


RETURN_TRANSITIONS: dict[ReturnAction, tuple[RentalStatus, RentalStatus]] = {
    ReturnAction.REQUEST: (RentalStatus.ACTIVE, RentalStatus.RETURN_REQUESTED),
    ReturnAction.DECLINE: (RentalStatus.RETURN_REQUESTED, RentalStatus.ACTIVE),
    ReturnAction.ACCEPT: (RentalStatus.RETURN_REQUESTED, RentalStatus.INACTIVE),
}


def _check_renter(rental: Rental, requester_id: int | None, now: datetime) -> None:
    if requester_id is None:
        raise InvalidInputError("Requester is required for a return request.")
    if int(rental.UserID) != int(requester_id):
        raise NotOwnerError(
            "User can only request returns for their own rentals.",
            rental_id=rental.RentalID,
            requester_id=requester_id,
        )


def _check_expired(rental: Rental, requester_id: int | None, now: datetime) -> None:
    if not rental.RentalEnd or rental.RentalEnd >= now:
        raise InvalidStateError(
            f"Rental {rental.RentalID} has not expired.",
            rental_id=rental.RentalID,
            rental_end=rental.RentalEnd,
        )


RETURN_TRIGGERS: dict[ReturnTrigger, Callable[[Rental, int | None, datetime], None]] = {
    ReturnTrigger.RENTER: _check_renter,
    ReturnTrigger.SWEEPER: _check_expired,
}


def request_return(
    db: Session,
    rental_id: int,
    requester_id: int | None = None,
    trigger: ReturnTrigger = ReturnTrigger.RENTER,
    now: datetime | None = None,
) -> Rental:
    requested_at = as_naive_utc(now) or utcnow()
    with atomic(db):
        rental = lock_rental(db, rental_id)
        _require_state(rental, ReturnAction.REQUEST)
        RETURN_TRIGGERS[trigger](rental, requester_id, requested_at)

        _transition(rental, ReturnAction.REQUEST, requested_at)
        db.flush()
        log_audit(db, "Rental", rental_id, "RequestReturn", f"trigger={trigger.value}", user_id=requester_id)

    LOGGER.info("Return requested rental_id=%s trigger=%s user_id=%s", rental_id, trigger.value, requester_id)
    return rental


def accept_return(db: Session, rental_id: int, actor_id: int | None = None, now: datetime | None = None) -> Rental:
    returned_at = as_naive_utc(now) or utcnow()
    with atomic(db):
        rental = lock_rental(db, rental_id)
        _require_state(rental, ReturnAction.ACCEPT)
        apply_return_updates(db, rental, returned_at)
        log_audit(
            db,
            "Rental",
            rental_id,
            "AcceptReturn",
            f"invoice={rental.InvoiceID} lateFee={rental.LateFee} total={rental.TotalAmount}",
            user_id=actor_id,
        )

    LOGGER.info(
        "Return accepted rental_id=%s actor_id=%s late_fee=%s total=%s",
        rental_id,
        actor_id,
        rental.LateFee,
        rental.TotalAmount,
    )
    return rental


def decline_return(db: Session, rental_id: int, actor_id: int | None = None) -> Rental:
    with atomic(db):
        rental = lock_rental(db, rental_id)
        _require_state(rental, ReturnAction.DECLINE)
        _transition(rental, ReturnAction.DECLINE, utcnow())
        db.flush()
        log_audit(db, "Rental", rental_id, "DeclineReturn", None, user_id=actor_id)

    LOGGER.info("Return declined rental_id=%s actor_id=%s", rental_id, actor_id)
    return rental


def apply_return_updates(db: Session, rental: Rental, returned_at: datetime) -> None:
    item = db.get(Item, rental.ItemID)
    if not item:
        raise NotFoundError(f"Item {rental.ItemID} not found.", item_id=rental.ItemID)

    rental.ReturnDate = returned_at
    record = generate_transaction(rental, item_title=rental.ItemTitle or item.Title, price_per_day=item.RentalPricePerDay, now=returned_at)
    apply_financial_record(rental, record)
    _transition(rental, ReturnAction.ACCEPT, returned_at)
    db.flush()

    increase_availability(db, rental.ItemID, rental.Count)


def lock_rental(db: Session, rental_id: int) -> Rental:
    rental = db.execute(
        select(Rental)
        .where(Rental.RentalID == rental_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.", rental_id=rental_id)
    return rental


def find_expired_active(db: Session, now: datetime) -> list[Rental]:
    stmt = (
        select(Rental)
        .where(Rental.Status == RentalStatus.ACTIVE)
        .where(Rental.RentalEnd < now)
        .order_by(Rental.RentalEnd, Rental.RentalID)
    )
    return list(db.execute(stmt).scalars().all())


def parse_rental_filter(raw: str | None) -> RentalStatus | None:
    value = (raw or "").strip().upper()
    if not value:
        return None
    if value == HISTORICAL_FILTER:
        return RentalStatus.INACTIVE
    try:
        return RentalStatus(value)
    except ValueError:
        return None


def list_user_rentals(db: Session, user_id: int, status: RentalStatus | None = None, limit: int = USER_LIST_LIMIT) -> list[Rental]:
    stmt = select(Rental).options(selectinload(Rental.Item)).where(Rental.UserID == user_id)
    if status is not None:
        stmt = stmt.where(Rental.Status == status)
    stmt = stmt.order_by(Rental.CreatedAt.desc(), Rental.RentalID.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def list_return_requests(db: Session) -> list[Rental]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.Item))
        .where(Rental.Status == RentalStatus.RETURN_REQUESTED)
        .order_by(Rental.UpdatedAt, Rental.RentalID)
    )
    return list(db.execute(stmt).scalars().all())


def list_user_transactions(db: Session, user_id: int) -> list[Rental]:
    stmt = (
        select(Rental)
        .where(Rental.UserID == user_id)
        .where(Rental.InvoiceID.is_not(None))
        .order_by(Rental.GeneratedAt.desc(), Rental.RentalID.desc())
    )
    return list(db.execute(stmt).scalars().all())


def get_rental_for_document(db: Session, rental_id: int, requester_id: int, is_admin: bool = False) -> Rental:
    rental = db.get(Rental, rental_id)
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.", rental_id=rental_id)
    if not is_admin and int(rental.UserID) != int(requester_id):
        raise NotOwnerError("User can only view their own transactions.", rental_id=rental_id)
    if not rental.InvoiceID:
        raise NotFoundError(f"Rental {rental_id} has no financial record.", rental_id=rental_id)
    return rental


def serialize_rental(rental: Rental) -> dict:
    record = financial_record_of(rental)
    return {
        "rentalID": rental.RentalID,
        "userID": rental.UserID,
        "itemID": rental.ItemID,
        "itemTitle": rental.ItemTitle or (rental.Item.Title if rental.Item else None),
        "count": rental.Count,
        "rentalStart": rental.RentalStart,
        "rentalEnd": rental.RentalEnd,
        "status": rental.Status.value,
        "returnDate": rental.ReturnDate,
        "createdAt": rental.CreatedAt,
        "updatedAt": rental.UpdatedAt,
        "transaction": record.to_dict() if record else None,
    }


def serialize_transaction(rental: Rental) -> dict | None:
    record = financial_record_of(rental)
    if record is None:
        return None
    payload = record.to_dict()
    payload.update(
        {
            "rentalID": rental.RentalID,
            "userID": rental.UserID,
            "count": rental.Count,
            "rentalStart": rental.RentalStart,
            "rentalEnd": rental.RentalEnd,
            "returnDate": rental.ReturnDate,
            "isFinal": rental.Status == RentalStatus.INACTIVE,
        }
    )
    return payload


def _require_state(rental: Rental, action: ReturnAction) -> None:
    expected, target = RETURN_TRANSITIONS[action]
    if rental.Status != expected:
        raise InvalidStateError(
            f"Invalid state transition: {rental.Status.value} -> {target.value}",
            rental_id=rental.RentalID,
            status=rental.Status.value,
            action=action.value,
        )


def _transition(rental: Rental, action: ReturnAction, when: datetime) -> None:
    _, target = RETURN_TRANSITIONS[action]
    rental.Status = target
    rental.UpdatedAt = when
