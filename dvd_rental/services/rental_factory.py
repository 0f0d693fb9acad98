from __future__ import annotations

from datetime import datetime

from models.rental_models import Item, Rental, RentalStatus, Reservation
from services.clock import utcnow
from services.errors import ComputationError
from services.fee_service import apply_financial_record, build_provisional_record


def create_from_reservation(reservation: Reservation, item: Item | None = None, now: datetime | None = None) -> Rental:
    item = item or reservation.Item
    if item is None:
        raise ComputationError(f"Reservation {reservation.ReservationID} has no item loaded.")
    created_at = now or utcnow()

    rental = Rental(
        UserID=reservation.UserID,
        ItemID=item.ItemID,
        Count=reservation.Count,
        RentalStart=reservation.RentalStart,
        RentalEnd=reservation.RentalEnd,
        Status=RentalStatus.ACTIVE,
        CreatedAt=created_at,
        UpdatedAt=created_at,
    )
    apply_financial_record(
        rental,
        build_provisional_record(
            item_title=item.Title,
            price_per_day=item.RentalPricePerDay,
            rental_start=reservation.RentalStart,
            rental_end=reservation.RentalEnd,
            copy_count=reservation.Count,
            now=created_at,
        ),
    )
    return rental
