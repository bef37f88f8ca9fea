"""Supply Tracker: refill status of a single medication."""
from __future__ import annotations

import logging

from homeassistant.util import dt as dt_util

from .const import SUPPLY_GOOD, SUPPLY_LOW, SUPPLY_MEDIUM, SUPPLY_MEDIUM_CUTOFF
from .models import Medication
from .registry import MedicationRegistry

_LOGGER = logging.getLogger(__name__)


def supply_percentage(medication: Medication) -> float:
    """Remaining supply in percent, clamped to [0, 100]."""
    if medication.total_supply <= 0:
        return 0.0
    percentage = medication.current_supply / medication.total_supply * 100
    return max(0.0, min(100.0, percentage))


def supply_status(medication: Medication) -> str:
    percentage = supply_percentage(medication)
    # The refill threshold wins even when it is above the medium cutoff
    if percentage <= medication.refill_at:
        return SUPPLY_LOW
    if percentage <= SUPPLY_MEDIUM_CUTOFF:
        return SUPPLY_MEDIUM
    return SUPPLY_GOOD


def is_low(medication: Medication) -> bool:
    return supply_status(medication) == SUPPLY_LOW


async def async_record_refill(
    registry: MedicationRegistry, medication_id: str
) -> Medication:
    """Top the supply back up to the total and stamp the refill date."""
    medication = registry.async_get(medication_id)
    medication.current_supply = medication.total_supply
    medication.last_refill_date = dt_util.now()
    updated = await registry.async_update(medication)
    _LOGGER.info("Recorded refill of %s to %d units", updated.name, updated.total_supply)
    return updated


async def async_consume_dose(
    registry: MedicationRegistry, medication_id: str
) -> Medication | None:
    """Take one unit from the supply of a known medication."""
    medication = registry.async_lookup(medication_id)
    if medication is None or medication.current_supply <= 0:
        return medication
    medication.current_supply -= 1
    return await registry.async_update(medication)
