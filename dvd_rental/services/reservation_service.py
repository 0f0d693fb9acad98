from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Item, Rental, Reservation, ReservationStatus, User
from services.audit_service import atomic, log_audit
from services.availability_service import decrease_availability, increase_availability, lock_item
from services.clock import as_naive_utc, utcnow
from services.errors import InsufficientAvailabilityError, InsufficientCopiesError, InvalidInputError, InvalidStateError, NotFoundError
from services.rental_factory import create_from_reservation
from services.reservation_validation_service import validate_cancellation, validate_reservation_request


LOGGER = logging.getLogger("dvd_rental.reservations")

USER_LIST_LIMIT = 50
ADMIN_LIST_LIMIT = 100


def parse_status_filter(raw: str | None) -> ReservationStatus | None:
    value = (raw or "").strip().upper()
    if not value:
        return None
    try:
        return ReservationStatus(value)
    except ValueError:
        return None


def create_reservation(
    db: Session,
    requester_id: int,
    item_id: int,
    rental_start: datetime,
    rental_end: datetime,
    count: int,
    now: datetime | None = None,
) -> Reservation:
    rental_start = as_naive_utc(rental_start)
    rental_end = as_naive_utc(rental_end)
    _validate_request_shape(item_id, rental_start, rental_end, count)
    created_at = as_naive_utc(now) or utcnow()

    with atomic(db):
        user = db.get(User, requester_id)
        if not user:
            raise NotFoundError(f"User {requester_id} not found.", user_id=requester_id)
        item = db.get(Item, item_id, populate_existing=True)
        if not item:
            raise NotFoundError(f"Item {item_id} not found.", item_id=item_id)

        validate_reservation_request(count, item)
        try:
            decrease_availability(db, item_id, count)
        except InsufficientAvailabilityError as exc:
            # Another reservation took the copies between validation and the ledger lock.
            raise InsufficientCopiesError(exc.message, **exc.details) from exc

        reservation = Reservation(
            UserID=user.UserID,
            ItemID=item.ItemID,
            RentalStart=rental_start,
            RentalEnd=rental_end,
            Count=count,
            Status=ReservationStatus.PENDING,
            CreatedAt=created_at,
            UpdatedAt=created_at,
        )
        db.add(reservation)
        db.flush()
        log_audit(
            db,
            "Reservation",
            reservation.ReservationID,
            "CreateReservation",
            f"item={item_id} count={count} window={rental_start.isoformat()}..{rental_end.isoformat()}",
            user_id=requester_id,
        )

    LOGGER.info(
        "Reservation created reservation_id=%s user_id=%s item_id=%s count=%s",
        reservation.ReservationID,
        requester_id,
        item_id,
        count,
    )
    return reservation


def accept_reservation(
    db: Session,
    reservation_id: int,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> tuple[Reservation, Rental]:
    accepted_at = as_naive_utc(now) or utcnow()
    with atomic(db):
        reservation = _lock_reservation(db, reservation_id)
        _require_pending(reservation, "accepted")
        item = lock_item(db, reservation.ItemID)

        reservation.Status = ReservationStatus.ACCEPTED
        reservation.UpdatedAt = accepted_at
        rental = create_from_reservation(reservation, item, now=accepted_at)
        db.add(rental)
        db.flush()
        log_audit(db, "Reservation", reservation_id, "AcceptReservation", f"rental={rental.RentalID}", user_id=actor_id)
        log_audit(db, "Rental", rental.RentalID, "CreateRental", f"invoice={rental.InvoiceID} total={rental.TotalAmount}", user_id=actor_id)

    LOGGER.info("Reservation accepted reservation_id=%s rental_id=%s actor_id=%s", reservation_id, rental.RentalID, actor_id)
    return reservation, rental


def decline_reservation(db: Session, reservation_id: int, actor_id: int | None = None, reason: str | None = None) -> Reservation:
    with atomic(db):
        reservation = _lock_reservation(db, reservation_id)
        _require_pending(reservation, "declined")

        increase_availability(db, reservation.ItemID, reservation.Count)
        reservation.Status = ReservationStatus.REJECTED
        reservation.UpdatedAt = utcnow()
        db.flush()
        log_audit(db, "Reservation", reservation_id, "DeclineReservation", f"restored={reservation.Count} reason={(reason or '').strip()}", user_id=actor_id)

    LOGGER.info("Reservation declined reservation_id=%s actor_id=%s", reservation_id, actor_id)
    return reservation


def cancel_reservation(db: Session, requester_id: int, reservation_id: int) -> Reservation:
    with atomic(db):
        reservation = _lock_reservation(db, reservation_id)
        validate_cancellation(reservation, requester_id)

        increase_availability(db, reservation.ItemID, reservation.Count)
        reservation.Status = ReservationStatus.CANCELLED
        reservation.UpdatedAt = utcnow()
        db.flush()
        log_audit(db, "Reservation", reservation_id, "CancelReservation", f"restored={reservation.Count}", user_id=requester_id)

    LOGGER.info("Reservation cancelled reservation_id=%s user_id=%s", reservation_id, requester_id)
    return reservation


def list_user_reservations(
    db: Session,
    user_id: int,
    status: ReservationStatus | None = None,
    limit: int = USER_LIST_LIMIT,
) -> list[Reservation]:
    stmt = select(Reservation).options(selectinload(Reservation.Item)).where(Reservation.UserID == user_id)
    if status is not None:
        stmt = stmt.where(Reservation.Status == status)
    stmt = stmt.order_by(Reservation.CreatedAt.desc(), Reservation.ReservationID.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def list_reservations(db: Session, status: ReservationStatus | None = None, limit: int = ADMIN_LIST_LIMIT) -> list[Reservation]:
    stmt = select(Reservation).options(selectinload(Reservation.Item))
    if status is not None:
        stmt = stmt.where(Reservation.Status == status)
    stmt = stmt.order_by(Reservation.CreatedAt.desc(), Reservation.ReservationID.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def serialize_reservation(reservation: Reservation) -> dict:
    item = reservation.Item
    return {
        "reservationID": reservation.ReservationID,
        "userID": reservation.UserID,
        "itemID": reservation.ItemID,
        "itemTitle": item.Title if item else None,
        "rentalStart": reservation.RentalStart,
        "rentalEnd": reservation.RentalEnd,
        "count": reservation.Count,
        "status": reservation.Status.value,
        "createdAt": reservation.CreatedAt,
        "updatedAt": reservation.UpdatedAt,
    }


def _validate_request_shape(item_id: int | None, rental_start: datetime | None, rental_end: datetime | None, count: int | None) -> None:
    if item_id is None:
        raise InvalidInputError("Item ID is required.")
    if rental_start is None or rental_end is None:
        raise InvalidInputError("Rental dates are required.")
    if rental_start > rental_end:
        raise InvalidInputError("rentalStart must be on or before rentalEnd.")
    if count is None or count <= 0:
        raise InvalidInputError("Copy count must be greater than zero.")


def _lock_reservation(db: Session, reservation_id: int) -> Reservation:
    reservation = db.execute(
        select(Reservation)
        .where(Reservation.ReservationID == reservation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not reservation:
        raise NotFoundError(f"Reservation {reservation_id} not found.", reservation_id=reservation_id)
    return reservation


def _require_pending(reservation: Reservation, verb: str) -> None:
    if reservation.Status != ReservationStatus.PENDING:
        raise InvalidStateError(
            f"Only pending reservations can be {verb}.",
            reservation_id=reservation.ReservationID,
            status=reservation.Status.value,
        )
