import dataclasses
from zoneinfo import ZoneInfo
import unittest

from washremind.models import BookingSnapshot, ValidationError


def booking_dict(**overrides: object) -> dict:
    data = {
        "customerName": "Sam Taylor",
        "customerEmail": "sam@example.com",
        "vehicleMake": "Ford",
        "vehicleModel": "Focus",
        "packageName": "Full Valet",
        "extras": ["Engine Bay", "Pet Hair"],
        "date": "2026-03-12",
        "time": "12:00",
        "estimatedTime": "2 hours",
    }
    data.update(overrides)
    return data


class BookingSnapshotTest(unittest.TestCase):
    def test_from_dict_keeps_wire_keys(self) -> None:
        data = booking_dict()
        snapshot = BookingSnapshot.from_dict(data)
        self.assertEqual(snapshot.extras, ("Engine Bay", "Pet Hair"))
        self.assertEqual(snapshot.to_dict(), data)

    def test_vehicle_defaults_to_unknown(self) -> None:
        snapshot = BookingSnapshot.from_dict(booking_dict(vehicleMake=None, vehicleModel=""))
        self.assertEqual(snapshot.vehicle_make, "Unknown")
        self.assertEqual(snapshot.vehicle_model, "Unknown")

    def test_missing_extras_is_empty(self) -> None:
        data = booking_dict()
        del data["extras"]
        self.assertEqual(BookingSnapshot.from_dict(data).extras, ())

    def test_snapshot_is_frozen(self) -> None:
        snapshot = BookingSnapshot.from_dict(booking_dict())
        with self.assertRaises(dataclasses.FrozenInstanceError):
            snapshot.customer_email = "other@example.com"  # type: ignore[misc]

    def test_required_fields(self) -> None:
        for key in ["customerName", "customerEmail", "date", "time"]:
            with self.subTest(key=key):
                with self.assertRaises(ValidationError):
                    BookingSnapshot.from_dict(booking_dict(**{key: "  "}))

    def test_malformed_email(self) -> None:
        with self.assertRaises(ValidationError):
            BookingSnapshot.from_dict(booking_dict(customerEmail="not-an-address"))

    def test_unparseable_date_or_time(self) -> None:
        with self.assertRaises(ValidationError):
            BookingSnapshot.from_dict(booking_dict(date="2026-02-30"))
        with self.assertRaises(ValidationError):
            BookingSnapshot.from_dict(booking_dict(time="25:00"))

    def test_appointment_at_uses_local_zone(self) -> None:
        snapshot = BookingSnapshot.from_dict(booking_dict(date="2026-07-01", time="09:30:00"))
        appointment = snapshot.appointment_at(ZoneInfo("Europe/London"))
        self.assertEqual(appointment.utcoffset().total_seconds(), 3600)
        self.assertEqual((appointment.hour, appointment.minute), (9, 30))

    def test_time_skipped_by_clock_change_is_rejected(self) -> None:
        snapshot = BookingSnapshot.from_dict(booking_dict(date="2026-03-29", time="01:30"))
        with self.assertRaises(ValidationError):
            snapshot.appointment_at(ZoneInfo("Europe/London"))


if __name__ == "__main__":
    unittest.main()
