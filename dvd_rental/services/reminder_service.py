from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from models.rental_models import Item, ItemReminder, NotificationQueue, User
from services.audit_service import atomic
from services.clock import utcnow
from services.errors import InvalidStateError, NotFoundError
from services.scheduler import SessionTicker


LOGGER = logging.getLogger("dvd_rental.reminders")

ITEM_AVAILABLE_NOTIFICATION = "ItemAvailable"
DEFAULT_REMINDER_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class ReminderSummary:
    total: int
    notified: int
    failed: int

    def to_dict(self) -> dict:
        return {"total": self.total, "notified": self.notified, "failed": self.failed}


def create_reminder(db: Session, user_id: int, item_id: int) -> ItemReminder:
    with atomic(db):
        if not db.get(User, user_id):
            raise NotFoundError(f"User {user_id} not found.", user_id=user_id)
        item = db.get(Item, item_id, populate_existing=True)
        if not item:
            raise NotFoundError(f"Item {item_id} not found.", item_id=item_id)
        if item.IsRentable and int(item.AvailableCopies or 0) > 0:
            raise InvalidStateError(f"Item {item_id} is available now; no reminder needed.", item_id=item_id)

        reminder = db.execute(
            select(ItemReminder).where(ItemReminder.UserID == user_id).where(ItemReminder.ItemID == item_id)
        ).scalars().first()
        if reminder is None:
            reminder = ItemReminder(UserID=user_id, ItemID=item_id, CreatedAt=utcnow())
            db.add(reminder)
            db.flush()
            LOGGER.info("Reminder created reminder_id=%s user_id=%s item_id=%s", reminder.ReminderID, user_id, item_id)
    return reminder


def process_available_reminders(db: Session) -> ReminderSummary:
    reminder_ids = list(
        db.execute(
            select(ItemReminder.ReminderID)
            .join(Item, Item.ItemID == ItemReminder.ItemID)
            .where(Item.IsRentable.is_(True))
            .where(Item.AvailableCopies > 0)
            .order_by(ItemReminder.ReminderID)
        ).scalars().all()
    )
    db.rollback()
    if not reminder_ids:
        LOGGER.info("Reminder sweep found no reminders for available items")
        return ReminderSummary(total=0, notified=0, failed=0)

    notified = 0
    failed = 0
    for reminder_id in reminder_ids:
        try:
            _notify_and_delete(db, reminder_id)
        except Exception:
            failed += 1
            LOGGER.exception("Reminder processing failed reminder_id=%s", reminder_id)
            continue
        notified += 1

    LOGGER.info("Reminder sweep completed total=%s notified=%s failed=%s", len(reminder_ids), notified, failed)
    return ReminderSummary(total=len(reminder_ids), notified=notified, failed=failed)


class ReminderTicker(SessionTicker):
    """Sends availability reminders on a fixed cadence."""

    name = "availability-reminders"

    def __init__(self, session_factory: sessionmaker, interval_seconds: float = DEFAULT_REMINDER_INTERVAL_SECONDS) -> None:
        super().__init__(session_factory, interval_seconds)

    def tick(self, db: Session) -> ReminderSummary:
        return process_available_reminders(db)


def list_pending_notifications(db: Session) -> list[NotificationQueue]:
    return list(
        db.execute(
            select(NotificationQueue)
            .where(NotificationQueue.SentAt.is_(None))
            .order_by(NotificationQueue.NotificationID)
        ).scalars().all()
    )


def serialize_notification(notification: NotificationQueue) -> dict:
    return {
        "notificationID": notification.NotificationID,
        "userID": notification.UserID,
        "itemID": notification.ItemID,
        "rentalID": notification.RentalID,
        "type": notification.NotificationType,
        "payload": notification.Payload,
        "createdAt": notification.CreatedAt,
    }


def _notify_and_delete(db: Session, reminder_id: int) -> None:
    with atomic(db):
        reminder = db.execute(
            select(ItemReminder)
            .options(selectinload(ItemReminder.Item), selectinload(ItemReminder.User))
            .where(ItemReminder.ReminderID == reminder_id)
        ).scalars().first()
        if reminder is None:
            return
        item = reminder.Item
        user = reminder.User
        db.add(
            NotificationQueue(
                UserID=user.UserID,
                ItemID=item.ItemID,
                NotificationType=ITEM_AVAILABLE_NOTIFICATION,
                Payload=json.dumps(
                    {
                        "email": user.Email,
                        "itemTitle": item.Title,
                        "itemDescription": item.Description or "",
                        "copiesAvailable": int(item.AvailableCopies or 0),
                        "rentalPricePerDay": f"{item.RentalPricePerDay:.2f}",
                    },
                    ensure_ascii=True,
                ),
                CreatedAt=utcnow(),
            )
        )
        db.delete(reminder)
    LOGGER.info("Reminder processed reminder_id=%s user_id=%s item_id=%s", reminder_id, user.UserID, item.ItemID)
