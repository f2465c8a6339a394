from datetime import UTC, datetime, timedelta, timezone
import unittest

from washremind.utils import booking_job_key, to_utc_iso


class UtilsTest(unittest.TestCase):
    def test_to_utc_iso_is_fixed_width_utc(self) -> None:
        value = datetime(2026, 3, 12, 13, 0, tzinfo=timezone(timedelta(hours=1)))
        self.assertEqual(to_utc_iso(value), "2026-03-12T12:00:00.000000+00:00")

    def test_iso_strings_sort_in_time_order(self) -> None:
        earlier = datetime(2026, 3, 12, 12, 0, 0, tzinfo=UTC)
        later = earlier + timedelta(microseconds=1)
        self.assertLess(to_utc_iso(earlier), to_utc_iso(later))

    def test_booking_job_key(self) -> None:
        appointment = datetime(2026, 3, 12, 12, 0, tzinfo=UTC)
        key = booking_job_key("Sam@Example.com ", appointment)
        self.assertEqual(len(key), 64)
        self.assertEqual(key, booking_job_key("sam@example.com", appointment))
        self.assertNotEqual(key, booking_job_key("sam@example.com", appointment + timedelta(hours=1)))


if __name__ == "__main__":
    unittest.main()
