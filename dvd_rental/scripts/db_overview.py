#!/usr/bin/env python3
"""Database overview and integrity checks for the DVD rental store."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import MetaData, Table, create_engine, func, inspect, select, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "Items",
    "Users",
    "Reservations",
    "Rentals",
    "ItemReminders",
    "AuditLogs",
    "NotificationQueue",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Items": ["ItemID", "Title", "RentalPricePerDay", "IsRentable", "TotalCopies", "AvailableCopies", "Version"],
    "Reservations": ["ReservationID", "UserID", "ItemID", "RentalStart", "RentalEnd", "Count", "Status", "Version"],
    "Rentals": [
        "RentalID",
        "UserID",
        "ItemID",
        "Count",
        "RentalStart",
        "RentalEnd",
        "Status",
        "ReturnDate",
        "InvoiceID",
        "RentalPeriodDays",
        "PricePerDay",
        "LateFee",
        "TotalAmount",
        "GeneratedAt",
        "BillType",
        "Version",
    ],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
}

INTEGRITY_QUERIES: list[tuple[str, list[str], str]] = [
    (
        "items:available_copies_out_of_range",
        ["Items"],
        "SELECT COUNT(*) FROM Items WHERE AvailableCopies < 0 OR AvailableCopies > TotalCopies",
    ),
    (
        "items:rentable_flag_mismatch",
        ["Items"],
        """
        SELECT COUNT(*) FROM Items
        WHERE (AvailableCopies > 0 AND IsRentable = 0) OR (AvailableCopies = 0 AND IsRentable = 1)
        """,
    ),
    (
        "rentals:inactive_without_return_date",
        ["Rentals"],
        "SELECT COUNT(*) FROM Rentals WHERE Status = 'INACTIVE' AND ReturnDate IS NULL",
    ),
    (
        "rentals:negative_late_fee",
        ["Rentals"],
        "SELECT COUNT(*) FROM Rentals WHERE LateFee < 0",
    ),
    (
        "rentals:missing_financial_record",
        ["Rentals"],
        "SELECT COUNT(*) FROM Rentals WHERE InvoiceID IS NULL OR TotalAmount IS NULL",
    ),
    (
        "reservations:non_positive_count",
        ["Reservations"],
        "SELECT COUNT(*) FROM Reservations WHERE Count <= 0",
    ),
    (
        "reservations:orphan_itemid",
        ["Reservations", "Items"],
        """
        SELECT COUNT(*)
        FROM Reservations r
        LEFT JOIN Items i ON i.ItemID = r.ItemID
        WHERE i.ItemID IS NULL
        """,
    ),
]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, statement, params: dict | None = None):
    if isinstance(statement, str):
        statement = text(statement)
    with engine.connect() as conn:
        return conn.execute(statement, params or {}).scalar()


def _run_existence_checks(existing: set[str]) -> list[CheckResult]:
    results: list[CheckResult] = []
    for table in EXPECTED_TABLES:
        exists = table in existing
        results.append(CheckResult(f"table:{table}", exists, "present" if exists else "missing"))
    return results


def _run_column_checks(engine: Engine, existing: set[str]) -> list[CheckResult]:
    inspector = inspect(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in existing:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _run_integrity_checks(engine: Engine, existing: set[str]) -> list[CheckResult]:
    checks: list[CheckResult] = []
    for name, tables, sql in INTEGRITY_QUERIES:
        if any(table not in existing for table in tables):
            continue
        count = int(_scalar(engine, sql) or 0)
        checks.append(CheckResult(name, count == 0, f"count={count}"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine, existing: set[str]) -> None:
    _print_section("Row Counts")
    metadata = MetaData()
    for table_name in EXPECTED_TABLES:
        if table_name not in existing:
            print(f"{table_name}: missing")
            continue
        table = Table(table_name, metadata, autoload_with=engine)
        count = _scalar(engine, select(func.count()).select_from(table))
        print(f"{table_name}: {int(count or 0)}")


def _print_index_summary(engine: Engine, existing: set[str]) -> None:
    _print_section("Index Summary (key tables)")
    inspector = inspect(engine)
    for table in ["Items", "Reservations", "Rentals", "ItemReminders"]:
        if table not in existing:
            print(f"{table}: missing")
            continue
        print(f"{table}:")
        for index in inspector.get_indexes(table):
            print(f"  - {index['name']} unique={bool(index.get('unique'))} cols={','.join(str(c) for c in index['column_names'])}")


def _print_samples(engine: Engine, existing: set[str], sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    metadata = MetaData()

    samples = [
        ("Rentals", ["RentalID", "UserID", "ItemID", "Status", "RentalEnd", "InvoiceID", "TotalAmount"], "RentalID"),
        ("AuditLogs", ["AuditID", "EntityType", "Action", "UserID", "CreatedAt"], "AuditID"),
    ]
    for table_name, columns, order_column in samples:
        if table_name not in existing:
            continue
        table = Table(table_name, metadata, autoload_with=engine)
        stmt = select(*[table.c[name] for name in columns]).order_by(table.c[order_column].desc()).limit(sample_size)
        with engine.connect() as conn:
            rows = conn.execute(stmt).all()
        print(f"{table_name} (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="DVD rental DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existing = set(inspect(engine).get_table_names())
    _print_results("Table Existence", _run_existence_checks(existing))
    _print_results("Column Checks", _run_column_checks(engine, existing))
    _print_results("Integrity Checks", _run_integrity_checks(engine, existing))
    _print_row_counts(engine, existing)
    _print_index_summary(engine, existing)
    _print_samples(engine, existing, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
