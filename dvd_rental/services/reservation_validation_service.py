from __future__ import annotations

import enum
import logging
from typing import Any, Callable

from models.rental_models import Item, Reservation, ReservationStatus
from services.errors import InsufficientCopiesError, InvalidInputError, InvalidStateError, ItemNotRentableError, NotOwnerError


LOGGER = logging.getLogger("dvd_rental.reservations.validation")


class ValidationKind(str, enum.Enum):
    ITEM_AVAILABILITY = "ITEM_AVAILABILITY"
    COPY_COUNT = "COPY_COUNT"
    CANCELLATION = "CANCELLATION"


def _check_item_availability(item: Item) -> None:
    if item is None:
        raise InvalidInputError("Item is required for reservation.")
    if not item.IsRentable:
        raise ItemNotRentableError(f"Item {item.ItemID} is not available for reservation.", item_id=item.ItemID)


def _check_copy_count(requested_count: int, item: Item) -> None:
    if item is None or requested_count is None:
        raise InvalidInputError("Requested copy count and item are required.")
    available = int(item.AvailableCopies or 0)
    if requested_count > available:
        raise InsufficientCopiesError(
            f"Insufficient copies available. Requested: {requested_count}, Available: {available}",
            item_id=item.ItemID,
            requested=requested_count,
            available=available,
        )


def _check_cancellation(reservation: Reservation, requester_id: int) -> None:
    if reservation is None or requester_id is None:
        raise InvalidInputError("Reservation and requester are required for cancellation.")
    if reservation.Status != ReservationStatus.PENDING:
        raise InvalidStateError(
            "Only pending reservations can be cancelled.",
            reservation_id=reservation.ReservationID,
            status=reservation.Status.value,
        )
    if int(reservation.UserID) != int(requester_id):
        raise NotOwnerError(
            "User can only cancel their own reservations.",
            reservation_id=reservation.ReservationID,
            requester_id=requester_id,
        )


VALIDATORS: dict[ValidationKind, Callable[..., None]] = {
    ValidationKind.ITEM_AVAILABILITY: _check_item_availability,
    ValidationKind.COPY_COUNT: _check_copy_count,
    ValidationKind.CANCELLATION: _check_cancellation,
}


def validate(kind: ValidationKind, *args: Any) -> None:
    validator = VALIDATORS.get(kind)
    if validator is None:
        raise InvalidInputError(f"No validator registered for {kind}.")
    LOGGER.debug("Validation started kind=%s", kind.value)
    try:
        validator(*args)
    except (InvalidInputError, InvalidStateError, ItemNotRentableError, InsufficientCopiesError, NotOwnerError) as exc:
        LOGGER.info("Validation failed kind=%s code=%s reason=%s", kind.value, exc.code, exc.message)
        raise
    LOGGER.debug("Validation passed kind=%s", kind.value)


def validate_item_availability(item: Item) -> None:
    validate(ValidationKind.ITEM_AVAILABILITY, item)


def validate_copy_count(requested_count: int, item: Item) -> None:
    validate(ValidationKind.COPY_COUNT, requested_count, item)


def validate_reservation_request(requested_count: int, item: Item) -> None:
    # Copy count first: a sold-out item reports the shortage, not the derived rentable flag.
    validate_copy_count(requested_count, item)
    validate_item_availability(item)


def validate_cancellation(reservation: Reservation, requester_id: int) -> None:
    validate(ValidationKind.CANCELLATION, reservation, requester_id)
