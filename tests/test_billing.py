import pytest

from smart_parking.billing import billable_hours, compute_charge, default_rate


@pytest.mark.parametrize(
    "minutes, hours",
    [(-5, 1), (0, 1), (15, 1), (45, 1), (59, 1), (60, 1), (61, 2), (120, 2), (121, 3), (24 * 60, 24)],
)
def test_billable_hours_rounds_up_with_one_hour_minimum(minutes, hours):
    assert billable_hours(minutes) == hours


@pytest.mark.parametrize(
    "vehicle_type, rate",
    [("BIKE", 50.0), ("car", 100.0), ("MICROBUS", 150.0), ("Truck", 200.0), ("SUV", 100.0), (None, 100.0)],
)
def test_default_rates(vehicle_type, rate):
    assert default_rate(vehicle_type) == rate


def test_compute_charge():
    assert compute_charge(90, 100.0) == (2, 200.0)
    assert compute_charge(10, 50.0) == (1, 50.0)
