import sys
import unittest
from datetime import datetime
from decimal import Decimal
from pathlib import Path


TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from rental_fixtures import TempDatabase

from models.rental_models import Item, RecordKind, Rental, RentalStatus
from services.errors import InvalidInputError, InvalidStateError, NotFoundError, NotOwnerError
from services.rental_service import (
    ReturnTrigger,
    accept_return,
    decline_return,
    get_rental_for_document,
    list_return_requests,
    list_user_rentals,
    list_user_transactions,
    parse_rental_filter,
    request_return,
    serialize_transaction,
)


START = datetime(2026, 1, 1, 10, 0)
END = datetime(2026, 1, 10, 10, 0)


class ReturnWorkflowTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()
        self.renter_id = self.database.add_user(email="renter@example.com")
        self.other_id = self.database.add_user(email="other@example.com")
        self.item_id = self.database.add_item(title="Heat", total_copies=2, price="5.00")
        self.rental_id = self.database.add_rental(self.renter_id, self.item_id, START, END, count=1)
        self.db = self.database.session()

    def tearDown(self):
        self.db.close()
        self.database.dispose()

    def _stored(self):
        return self.database.fetch(Rental, self.rental_id)

    def test_renter_requests_return(self):
        rental = request_return(self.db, self.rental_id, requester_id=self.renter_id, now=datetime(2026, 1, 5))
        self.assertEqual(rental.Status, RentalStatus.RETURN_REQUESTED)
        self.assertEqual(self._stored().Status, RentalStatus.RETURN_REQUESTED)

    def test_only_the_renter_may_request_return(self):
        with self.assertRaises(NotOwnerError):
            request_return(self.db, self.rental_id, requester_id=self.other_id)
        with self.assertRaises(InvalidInputError):
            request_return(self.db, self.rental_id)
        self.assertEqual(self._stored().Status, RentalStatus.ACTIVE)

    def test_second_request_is_invalid_state(self):
        request_return(self.db, self.rental_id, requester_id=self.renter_id)
        with self.assertRaises(InvalidStateError):
            request_return(self.db, self.rental_id, requester_id=self.renter_id)

    def test_decline_puts_rental_back_to_active(self):
        request_return(self.db, self.rental_id, requester_id=self.renter_id)
        rental = decline_return(self.db, self.rental_id, actor_id=self.other_id)
        self.assertEqual(rental.Status, RentalStatus.ACTIVE)
        with self.assertRaises(InvalidStateError):
            decline_return(self.db, self.rental_id)

    def test_accept_late_return_finalizes_record_and_restores_copies(self):
        provisional_invoice = self._stored().InvoiceID
        returned_at = datetime(2026, 1, 15, 9, 0)
        request_return(self.db, self.rental_id, requester_id=self.renter_id, now=returned_at)

        rental = accept_return(self.db, self.rental_id, actor_id=self.other_id, now=returned_at)

        self.assertEqual(rental.Status, RentalStatus.INACTIVE)
        self.assertEqual(rental.ReturnDate, returned_at)
        self.assertEqual(rental.BillType, RecordKind.RECEIPT)
        self.assertNotEqual(rental.InvoiceID, provisional_invoice)
        self.assertEqual(rental.RentalPeriodDays, 9)
        self.assertEqual(rental.LateFee, Decimal("250.00"))
        self.assertEqual(rental.TotalAmount, Decimal("295.00"))
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 2)

    def test_on_time_return_has_no_late_fee(self):
        returned_at = datetime(2026, 1, 10, 18, 0)
        request_return(self.db, self.rental_id, requester_id=self.renter_id, now=returned_at)
        rental = accept_return(self.db, self.rental_id, now=returned_at)
        self.assertEqual(rental.LateFee, Decimal("0.00"))
        self.assertEqual(rental.TotalAmount, Decimal("45.00"))

    def test_accept_without_request_changes_nothing(self):
        before = self._stored()
        with self.assertRaises(InvalidStateError):
            accept_return(self.db, self.rental_id)

        after = self._stored()
        self.assertEqual(after.Status, RentalStatus.ACTIVE)
        self.assertIsNone(after.ReturnDate)
        self.assertEqual(after.InvoiceID, before.InvoiceID)
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 1)

    def test_inactive_rental_is_terminal(self):
        request_return(self.db, self.rental_id, requester_id=self.renter_id)
        accept_return(self.db, self.rental_id)

        for attempt in (
            lambda: request_return(self.db, self.rental_id, requester_id=self.renter_id),
            lambda: decline_return(self.db, self.rental_id),
            lambda: accept_return(self.db, self.rental_id),
        ):
            with self.assertRaises(InvalidStateError):
                attempt()
        self.assertEqual(self._stored().Status, RentalStatus.INACTIVE)
        self.assertEqual(self.database.fetch(Item, self.item_id).AvailableCopies, 2)

    def test_sweeper_trigger_requires_expired_rental(self):
        with self.assertRaises(InvalidStateError):
            request_return(self.db, self.rental_id, trigger=ReturnTrigger.SWEEPER, now=datetime(2026, 1, 9))
        rental = request_return(self.db, self.rental_id, trigger=ReturnTrigger.SWEEPER, now=datetime(2026, 1, 11))
        self.assertEqual(rental.Status, RentalStatus.RETURN_REQUESTED)

    def test_unknown_rental(self):
        with self.assertRaises(NotFoundError):
            request_return(self.db, 777, requester_id=self.renter_id)
        with self.assertRaises(NotFoundError):
            accept_return(self.db, 777)


class RentalQueryTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()
        self.renter_id = self.database.add_user(email="renter@example.com")
        self.other_id = self.database.add_user(email="other@example.com")
        self.item_id = self.database.add_item(title="Ronin", total_copies=5, price="3.00")
        self.active_id = self.database.add_rental(self.renter_id, self.item_id, START, END)
        self.requested_id = self.database.add_rental(self.renter_id, self.item_id, START, END, status=RentalStatus.RETURN_REQUESTED)
        self.others_id = self.database.add_rental(self.other_id, self.item_id, START, END)
        self.db = self.database.session()

    def tearDown(self):
        self.db.close()
        self.database.dispose()

    def test_filter_parsing(self):
        self.assertEqual(parse_rental_filter("historical"), RentalStatus.INACTIVE)
        self.assertEqual(parse_rental_filter("active"), RentalStatus.ACTIVE)
        self.assertIsNone(parse_rental_filter("everything"))

    def test_user_rentals(self):
        self.assertEqual(len(list_user_rentals(self.db, self.renter_id)), 2)
        active = list_user_rentals(self.db, self.renter_id, RentalStatus.ACTIVE)
        self.assertEqual([r.RentalID for r in active], [self.active_id])

    def test_return_requests_queue(self):
        self.assertEqual([r.RentalID for r in list_return_requests(self.db)], [self.requested_id])

    def test_transactions_are_owner_scoped(self):
        self.assertEqual(len(list_user_transactions(self.db, self.renter_id)), 2)
        with self.assertRaises(NotOwnerError):
            get_rental_for_document(self.db, self.others_id, self.renter_id)
        rental = get_rental_for_document(self.db, self.others_id, self.renter_id, is_admin=True)
        payload = serialize_transaction(rental)
        self.assertEqual(payload["billType"], "INVOICE")
        self.assertFalse(payload["isFinal"])
        self.assertEqual(payload["totalAmount"], Decimal("27.00"))


if __name__ == "__main__":
    unittest.main()
