import sys
import threading
import unittest
from datetime import datetime
from pathlib import Path

from sqlalchemy import select


TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from rental_fixtures import TempDatabase

from models.rental_models import AuditLog, Item, Rental, RentalStatus, Reservation, ReservationStatus
from services.audit_service import atomic
from services.availability_service import decrease_availability, increase_availability
from services.errors import (
    CopyOverflowError,
    InsufficientAvailabilityError,
    InsufficientCopiesError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from services.expiration_service import sweep_expired_rentals
from services.rental_service import request_return
from services.reservation_service import cancel_reservation, create_reservation


START = datetime(2026, 5, 1, 10, 0)
END = datetime(2026, 5, 3, 10, 0)


class AvailabilityLedgerTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()
        self.item_id = self.database.add_item(total_copies=3, available_copies=2)
        self.db = self.database.session()

    def tearDown(self):
        self.db.close()
        self.database.dispose()

    def test_decrease_reduces_copies(self):
        with atomic(self.db):
            item = decrease_availability(self.db, self.item_id, 1)
        self.assertEqual(item.AvailableCopies, 1)
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 1)

    def test_decrease_to_zero_marks_item_unrentable(self):
        with atomic(self.db):
            decrease_availability(self.db, self.item_id, 2)
        stored = self.database.fetch(Item, self.item_id)
        self.assertEqual(stored.AvailableCopies, 0)
        self.assertFalse(stored.IsRentable)

    def test_increase_restores_rentable_flag(self):
        with atomic(self.db):
            decrease_availability(self.db, self.item_id, 2)
        with atomic(self.db):
            increase_availability(self.db, self.item_id, 1)
        stored = self.database.fetch(Item, self.item_id)
        self.assertEqual(stored.AvailableCopies, 1)
        self.assertTrue(stored.IsRentable)

    def test_decrease_beyond_available_changes_nothing(self):
        with self.assertRaises(InsufficientAvailabilityError):
            with atomic(self.db):
                decrease_availability(self.db, self.item_id, 3)
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 2)

    def test_increase_beyond_total_is_rejected(self):
        with self.assertRaises(CopyOverflowError):
            with atomic(self.db):
                increase_availability(self.db, self.item_id, 2)
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 2)

    def test_non_positive_counts_are_invalid(self):
        for count in (0, -1):
            with self.assertRaises(InvalidInputError):
                decrease_availability(self.db, self.item_id, count)
            with self.assertRaises(InvalidInputError):
                increase_availability(self.db, self.item_id, count)
        self.db.rollback()
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 2)

    def test_unknown_item(self):
        with self.assertRaises(NotFoundError):
            with atomic(self.db):
                decrease_availability(self.db, 9999, 1)


class ConcurrentReservationTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()

    def tearDown(self):
        self.database.dispose()

    def _run_together(self, jobs):
        """Start every job on its own session at the same instant; return results or exceptions."""
        barrier = threading.Barrier(len(jobs))
        outcomes = [None] * len(jobs)

        def attempt(index, job):
            db = self.database.session()
            try:
                barrier.wait()
                outcomes[index] = job(db)
            except Exception as exc:
                outcomes[index] = exc
            finally:
                db.close()

        threads = [threading.Thread(target=attempt, args=(index, job)) for index, job in enumerate(jobs)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(60)
        return outcomes

    def _race(self, item_id, user_ids, count):
        jobs = [
            (lambda db, user_id=user_id: create_reservation(db, user_id, item_id, START, END, count))
            for user_id in user_ids
        ]
        return ["ok" if not isinstance(outcome, Exception) else outcome for outcome in self._run_together(jobs)]

    def test_two_requests_for_the_last_two_copies(self):
        item_id = self.database.add_item(total_copies=2)
        users = [self.database.add_user(email=f"racer{i}@example.com") for i in range(2)]

        outcomes = self._race(item_id, users, 2)

        self.assertEqual(len(outcomes), 2)
        self.assertEqual(outcomes.count("ok"), 1)
        failures = [outcome for outcome in outcomes if outcome != "ok"]
        self.assertIsInstance(failures[0], InsufficientCopiesError)
        self.assertEqual(self.database.fetch(Item, item_id).AvailableCopies, 0)
        self.assertEqual(self.database.count(Reservation), 1)

    def test_many_single_copy_requests_never_overbook(self):
        item_id = self.database.add_item(total_copies=3)
        users = [self.database.add_user(email=f"crowd{i}@example.com") for i in range(5)]

        outcomes = self._race(item_id, users, 1)

        self.assertEqual(outcomes.count("ok"), 3)
        self.assertTrue(all(isinstance(o, InsufficientCopiesError) for o in outcomes if o != "ok"))
        self.assertEqual(self.database.fetch(Item, item_id).AvailableCopies, 0)
        self.assertEqual(self.database.count(Reservation), 3)

    def test_interleaved_creates_and_cancels_keep_the_ledger_balanced(self):
        item_id = self.database.add_item(total_copies=4)
        holder_id = self.database.add_user(email="holder@example.com")
        users = [self.database.add_user(email=f"mixed{i}@example.com") for i in range(3)]
        db = self.database.session()
        try:
            held = [create_reservation(db, holder_id, item_id, START, END, 1).ReservationID for _ in range(2)]
        finally:
            db.close()

        jobs = [(lambda db, reservation_id=reservation_id: cancel_reservation(db, holder_id, reservation_id)) for reservation_id in held]
        jobs += [(lambda db, user_id=user_id: create_reservation(db, user_id, item_id, START, END, 1)) for user_id in users]
        outcomes = self._run_together(jobs)

        cancels, creates = outcomes[:2], outcomes[2:]
        self.assertFalse([outcome for outcome in cancels if isinstance(outcome, Exception)])
        created = [outcome for outcome in creates if not isinstance(outcome, Exception)]
        self.assertTrue(all(isinstance(outcome, InsufficientCopiesError) for outcome in creates if isinstance(outcome, Exception)))
        self.assertIn(len(created), (2, 3))

        available = self.database.fetch(Item, item_id).AvailableCopies
        self.assertTrue(0 <= available <= 4)
        self.assertEqual(available, 4 - len(created))
        check = self.database.session()
        try:
            statuses = check.execute(select(Reservation.Status).where(Reservation.ItemID == item_id)).scalars().all()
        finally:
            check.close()
        self.assertEqual(statuses.count(ReservationStatus.CANCELLED), 2)
        self.assertEqual(statuses.count(ReservationStatus.PENDING), len(created))

    def test_sweeper_and_renter_race_for_the_same_return(self):
        item_id = self.database.add_item(total_copies=1)
        renter_id = self.database.add_user(email="late@example.com")
        rental_id = self.database.add_rental(renter_id, item_id, datetime(2026, 1, 1), datetime(2026, 1, 5))
        now = datetime(2026, 1, 10)

        sweep, renter = self._run_together(
            [
                lambda db: sweep_expired_rentals(db, now=now),
                lambda db: request_return(db, rental_id, requester_id=renter_id, now=now),
            ]
        )

        self.assertNotIsInstance(sweep, Exception)
        renter_won = not isinstance(renter, Exception)
        if not renter_won:
            self.assertIsInstance(renter, InvalidStateError)
        self.assertEqual(int(renter_won) + sweep.succeeded, 1)
        self.assertEqual(self.database.fetch(Rental, rental_id).Status, RentalStatus.RETURN_REQUESTED)

        check = self.database.session()
        try:
            transitions = check.execute(
                select(AuditLog)
                .where(AuditLog.EntityType == "Rental")
                .where(AuditLog.EntityID == rental_id)
                .where(AuditLog.Action == "RequestReturn")
            ).scalars().all()
        finally:
            check.close()
        self.assertEqual(len(transitions), 1)
        self.assertEqual(self.database.fetch(Item, item_id).AvailableCopies, 0)


if __name__ == "__main__":
    unittest.main()
