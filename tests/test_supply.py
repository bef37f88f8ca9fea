"""Tests for the supply tracker."""
import pytest

from custom_components.medication_tracker.const import (
    SUPPLY_GOOD, SUPPLY_LOW, SUPPLY_MEDIUM,
)
from custom_components.medication_tracker.supply import (
    supply_percentage, supply_status,
)

from .conftest import make_medication


def test_low_supply_below_threshold():
    """10% left with a 20% threshold is low."""
    medication = make_medication(current_supply=10, total_supply=100, refill_at=20)
    assert supply_percentage(medication) == 10
    assert supply_status(medication) == SUPPLY_LOW


@pytest.mark.parametrize(
    ("current", "total", "refill_at", "expected"),
    [
        (20, 100, 20, SUPPLY_LOW),  # threshold is inclusive
        (21, 100, 20, SUPPLY_MEDIUM),
        (50, 100, 20, SUPPLY_MEDIUM),
        (51, 100, 20, SUPPLY_GOOD),
        (55, 100, 60, SUPPLY_LOW),  # high threshold beats the medium cutoff
        (100, 100, 100, SUPPLY_LOW),
    ],
)
def test_supply_status_tiers(current, total, refill_at, expected):
    medication = make_medication(
        current_supply=current, total_supply=total, refill_at=refill_at
    )
    assert supply_status(medication) == expected


def test_percentage_clamped_when_over_total():
    medication = make_medication(current_supply=150, total_supply=100)
    assert supply_percentage(medication) == 100
    assert supply_status(medication) == SUPPLY_GOOD


def test_zero_total_supply_is_empty():
    medication = make_medication(current_supply=5, total_supply=0, refill_at=0)
    assert supply_percentage(medication) == 0
    assert supply_status(medication) == SUPPLY_LOW
