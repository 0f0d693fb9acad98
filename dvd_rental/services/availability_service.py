from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import Item
from services.clock import utcnow
from services.errors import CopyOverflowError, InsufficientAvailabilityError, InvalidInputError, NotFoundError


LOGGER = logging.getLogger("dvd_rental.availability")


def lock_item(db: Session, item_id: int) -> Item:
    """Load an item with a row lock held until the caller's transaction ends.

    ``populate_existing`` discards any stale copy already in the identity map,
    so the counter read here is the committed value.
    """
    item = db.execute(
        select(Item)
        .where(Item.ItemID == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not item:
        raise NotFoundError(f"Item {item_id} not found.", item_id=item_id)
    return item


def decrease_availability(db: Session, item_id: int, count: int) -> Item:
    _require_positive(count)
    item = lock_item(db, item_id)
    LOGGER.info("Availability decrease started item_id=%s count=%s available=%s", item_id, count, item.AvailableCopies)

    available = int(item.AvailableCopies or 0)
    if available < count:
        LOGGER.warning("Availability decrease refused item_id=%s count=%s available=%s", item_id, count, available)
        raise InsufficientAvailabilityError(
            f"Insufficient copies available. Available: {available}, Requested: {count}",
            item_id=item_id,
            available=available,
            requested=count,
        )

    _apply_copies(db, item, available - count)
    LOGGER.info("Availability decrease completed item_id=%s count=%s available=%s", item_id, count, item.AvailableCopies)
    return item


def increase_availability(db: Session, item_id: int, count: int) -> Item:
    _require_positive(count)
    item = lock_item(db, item_id)
    LOGGER.info("Availability increase started item_id=%s count=%s available=%s", item_id, count, item.AvailableCopies)

    available = int(item.AvailableCopies or 0)
    total = int(item.TotalCopies or 0)
    if available + count > total:
        LOGGER.error("Availability increase refused item_id=%s count=%s available=%s total=%s", item_id, count, available, total)
        raise CopyOverflowError(
            f"Returning {count} copies would exceed the {total} copies owned.",
            item_id=item_id,
            available=available,
            total=total,
            requested=count,
        )

    _apply_copies(db, item, available + count)
    LOGGER.info("Availability increase completed item_id=%s count=%s available=%s", item_id, count, item.AvailableCopies)
    return item


def _require_positive(count: int) -> None:
    if count is None or int(count) <= 0:
        raise InvalidInputError("Copy count must be greater than zero.", count=count)


def _apply_copies(db: Session, item: Item, new_count: int) -> None:
    item.AvailableCopies = new_count
    item.IsRentable = new_count > 0
    item.UpdatedDate = utcnow()
    # Flushing bumps Item.Version; a concurrent writer makes this raise StaleDataError.
    db.flush()
