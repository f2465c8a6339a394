from __future__ import annotations

from dataclasses import dataclass

from .models import UNKNOWN

VAN_1_MAX_LENGTH_CM = 480.0
# Upper bounds in cubic metres; anything larger is Volume 4.
CAR_VOLUME_BANDS: tuple[tuple[float, str, bool], ...] = (
    (9.7, "Volume 1", False),
    (11.3, "Volume 2", True),
    (13.7, "Volume 3", True),
)


@dataclass(frozen=True, slots=True)
class VehicleClass:
    vehicle_type: str
    category: str
    make: str = UNKNOWN
    model: str = UNKNOWN
    length_cm: float | None = None
    volume_m3: float | None = None


def classify_vehicle(
    length_mm: float | None,
    width_mm: float | None,
    height_mm: float | None,
    body_type: str | None = None,
    make: str | None = None,
    model: str | None = None,
) -> VehicleClass:
    """Price category for a vehicle from its registration-lookup dimensions.

    Vans are banded by length, everything else by bounding-box volume.
    """
    if not length_mm or not width_mm or not height_mm:
        raise ValueError("Missing vehicle dimensions")
    make = make or UNKNOWN
    model = model or UNKNOWN

    if body_type and "van" in body_type.lower():
        length_cm = length_mm / 10
        category = "Van 1" if length_cm <= VAN_1_MAX_LENGTH_CM else "Van 2/3"
        return VehicleClass("van", category, make, model, length_cm=round(length_cm, 1))

    volume_m3 = (length_mm * width_mm * height_mm) / 1_000_000_000
    category = "Volume 4"
    for bound, name, inclusive in CAR_VOLUME_BANDS:
        if volume_m3 < bound or (inclusive and volume_m3 == bound):
            category = name
            break
    return VehicleClass("car", category, make, model, volume_m3=round(volume_m3, 2))
