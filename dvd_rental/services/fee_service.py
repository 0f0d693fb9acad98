"""Rental fee arithmetic and financial-record composition.

Everything here is a pure function of its arguments. Amounts are ``Decimal``
rounded half-up to cents; day counts are whole days.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from models.rental_models import RecordKind, Rental
from services.clock import utcnow
from services.errors import ComputationError


LOGGER = logging.getLogger("dvd_rental.fees")

LATE_FEE_MULTIPLIER = Decimal("10")
INVOICE_PREFIX = "INV-"
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FinancialRecord:
    invoice_id: str
    item_title: str
    rental_period_days: int
    price_per_day: Decimal
    late_fee: Decimal
    total_amount: Decimal
    generated_at: datetime
    bill_type: RecordKind

    def to_dict(self) -> dict:
        return {
            "invoiceID": self.invoice_id,
            "itemTitle": self.item_title,
            "rentalPeriodDays": self.rental_period_days,
            "pricePerDay": self.price_per_day,
            "lateFee": self.late_fee,
            "totalAmount": self.total_amount,
            "generatedAt": self.generated_at,
            "billType": self.bill_type.value,
        }


def generate_invoice_id() -> str:
    return INVOICE_PREFIX + uuid.uuid4().hex[:8].upper()


def to_money(value) -> Decimal:
    if value is None:
        raise ComputationError("Monetary amount is missing.")
    try:
        return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ComputationError(f"Invalid monetary amount: {value!r}") from exc


def calculate_rental_days(rental_start: datetime, rental_end: datetime) -> int:
    """Whole days in the window, any started day counted as a full day."""
    if rental_start is None or rental_end is None:
        raise ComputationError("Rental window is incomplete.")
    hours = int((rental_end - rental_start).total_seconds() // 3600)
    return max(0, math.ceil(hours / 24))


def calculate_base_amount(price_per_day, rental_days: int, copy_count: int) -> Decimal:
    if rental_days is None or copy_count is None:
        raise ComputationError("Rental days and copy count are required.")
    return to_money(to_money(price_per_day) * rental_days * copy_count)


def calculate_total_amount(base_amount: Decimal, late_fee: Decimal) -> Decimal:
    return to_money(to_money(base_amount) + to_money(late_fee))


def calculate_overdue_days(rental_end: datetime | date, return_date: datetime | date) -> int:
    if rental_end is None:
        raise ComputationError("Rental end date is missing.")
    if return_date is None:
        raise ComputationError("Return date is missing; the rental has not been returned.")
    return max(0, (_as_date(return_date) - _as_date(rental_end)).days)


def calculate_late_fee(rental_end: datetime | date, return_date: datetime | date, price_per_day) -> Decimal:
    overdue_days = calculate_overdue_days(rental_end, return_date)
    if overdue_days == 0:
        return to_money(0)
    return to_money(overdue_days * to_money(price_per_day) * LATE_FEE_MULTIPLIER)


def build_provisional_record(
    item_title: str,
    price_per_day,
    rental_start: datetime,
    rental_end: datetime,
    copy_count: int,
    now: datetime | None = None,
) -> FinancialRecord:
    rental_days = calculate_rental_days(rental_start, rental_end)
    return FinancialRecord(
        invoice_id=generate_invoice_id(),
        item_title=item_title,
        rental_period_days=rental_days,
        price_per_day=to_money(price_per_day),
        late_fee=to_money(0),
        total_amount=calculate_base_amount(price_per_day, rental_days, copy_count),
        generated_at=now or utcnow(),
        bill_type=RecordKind.INVOICE,
    )


def generate_transaction(rental: Rental, item_title: str, price_per_day, now: datetime | None = None) -> FinancialRecord:
    """Compose the finalized receipt for a returned rental."""
    if rental.ReturnDate is None:
        raise ComputationError(f"Rental {rental.RentalID} has no return date.", rental_id=rental.RentalID)
    LOGGER.info("Transaction generation started rental_id=%s", rental.RentalID)

    rental_days = calculate_rental_days(rental.RentalStart, rental.RentalEnd)
    base_amount = calculate_base_amount(price_per_day, rental_days, rental.Count)
    late_fee = calculate_late_fee(rental.RentalEnd, rental.ReturnDate, price_per_day)
    total_amount = calculate_total_amount(base_amount, late_fee)

    record = FinancialRecord(
        invoice_id=generate_invoice_id(),
        item_title=item_title,
        rental_period_days=rental_days,
        price_per_day=to_money(price_per_day),
        late_fee=late_fee,
        total_amount=total_amount,
        generated_at=now or utcnow(),
        bill_type=RecordKind.RECEIPT,
    )
    LOGGER.info(
        "Transaction generation completed rental_id=%s total=%s late_fee=%s days=%s",
        rental.RentalID,
        total_amount,
        late_fee,
        rental_days,
    )
    return record


def apply_financial_record(rental: Rental, record: FinancialRecord) -> None:
    rental.InvoiceID = record.invoice_id
    rental.ItemTitle = record.item_title
    rental.RentalPeriodDays = record.rental_period_days
    rental.PricePerDay = record.price_per_day
    rental.LateFee = record.late_fee
    rental.TotalAmount = record.total_amount
    rental.GeneratedAt = record.generated_at
    rental.BillType = record.bill_type


def financial_record_of(rental: Rental) -> FinancialRecord | None:
    if not rental.InvoiceID:
        return None
    return FinancialRecord(
        invoice_id=rental.InvoiceID,
        item_title=rental.ItemTitle,
        rental_period_days=int(rental.RentalPeriodDays or 0),
        price_per_day=to_money(rental.PricePerDay),
        late_fee=to_money(rental.LateFee),
        total_amount=to_money(rental.TotalAmount),
        generated_at=rental.GeneratedAt,
        bill_type=rental.BillType,
    )


def _as_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
