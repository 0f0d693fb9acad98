import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.clock import as_naive_utc, utcnow


class ClockTests(unittest.TestCase):
    def test_aware_values_convert_to_naive_utc(self):
        value = datetime(2026, 3, 1, 0, 30, tzinfo=timezone(timedelta(hours=-5)))
        self.assertEqual(as_naive_utc(value), datetime(2026, 3, 1, 5, 30))
        self.assertIsNone(as_naive_utc(value).tzinfo)

    def test_naive_values_and_none_pass_through(self):
        value = datetime(2026, 3, 1, 5, 30)
        self.assertIs(as_naive_utc(value), value)
        self.assertIsNone(as_naive_utc(None))

    def test_utcnow_is_naive_and_current(self):
        now = utcnow()
        self.assertIsNone(now.tzinfo)
        reference = datetime.now(timezone.utc).replace(tzinfo=None)
        self.assertLess(abs(reference - now), timedelta(seconds=5))


if __name__ == "__main__":
    unittest.main()
