import math
from typing import Optional

DEFAULT_RATES = {
    "BIKE": 50.0,
    "CAR": 100.0,
    "MICROBUS": 150.0,
    "TRUCK": 200.0,
}
FALLBACK_RATE = 100.0


def billable_hours(duration_minutes: int) -> int:
    """Minimum one hour, then rounded up to the next whole hour."""
    if duration_minutes < 60:
        return 1
    return int(math.ceil(duration_minutes / 60.0))


def default_rate(vehicle_type: Optional[str]) -> float:
    if not vehicle_type:
        return FALLBACK_RATE
    return DEFAULT_RATES.get(vehicle_type.upper(), FALLBACK_RATE)


def compute_charge(duration_minutes: int, hourly_rate: float) -> tuple[int, float]:
    hours = billable_hours(duration_minutes)
    return hours, round(hours * hourly_rate, 2)
