import importlib.util
import io
import sys
import unittest
from contextlib import redirect_stdout
from datetime import datetime
from pathlib import Path
from unittest import mock

from sqlalchemy import inspect, text


TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from rental_fixtures import APP_DIR, TempDatabase

_SPEC = importlib.util.spec_from_file_location("db_overview", APP_DIR / "scripts" / "db_overview.py")
db_overview = importlib.util.module_from_spec(_SPEC)
sys.modules[_SPEC.name] = db_overview
_SPEC.loader.exec_module(db_overview)


class DbOverviewTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()
        renter_id = self.database.add_user()
        self.item_id = self.database.add_item(total_copies=2)
        self.database.add_rental(renter_id, self.item_id, datetime(2026, 1, 1), datetime(2026, 1, 4))

    def tearDown(self):
        self.database.dispose()

    def _existing(self):
        return set(inspect(self.database.engine).get_table_names())

    def test_existence_checks_report_missing_tables(self):
        results = db_overview._run_existence_checks(self._existing() - {"ItemReminders"})

        self.assertEqual([row.name for row in results if not row.ok], ["table:ItemReminders"])
        self.assertEqual(len(results), len(db_overview.EXPECTED_TABLES))

    def test_healthy_schema_passes_every_check(self):
        existing = self._existing()
        self.assertTrue(all(row.ok for row in db_overview._run_existence_checks(existing)))
        self.assertTrue(all(row.ok for row in db_overview._run_column_checks(self.database.engine, existing)))
        self.assertTrue(all(row.ok for row in db_overview._run_integrity_checks(self.database.engine, existing)))

    def test_orphaned_reservation_is_flagged(self):
        with self.database.engine.begin() as conn:
            conn.execute(text('DELETE FROM "Items" WHERE "ItemID" = :item_id'), {"item_id": self.item_id})

        failed = [row.name for row in db_overview._run_integrity_checks(self.database.engine, self._existing()) if not row.ok]
        self.assertEqual(failed, ["reservations:orphan_itemid"])

    def test_main_prints_sections_and_exits_cleanly(self):
        out = io.StringIO()
        with mock.patch.object(sys, "argv", ["db_overview.py", "--db-url", self.database.url, "--samples", "1"]):
            with redirect_stdout(out):
                code = db_overview.main()

        self.assertEqual(code, 0)
        self.assertIn("=== Table Existence ===", out.getvalue())
        self.assertIn("[OK] table:Rentals :: present", out.getvalue())


if __name__ == "__main__":
    unittest.main()
