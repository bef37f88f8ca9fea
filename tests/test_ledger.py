"""Tests for the dose ledger."""
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util
from homeassistant.util.file import WriteError

from custom_components.medication_tracker.const import UNKNOWN_MEDICATION
from custom_components.medication_tracker.exceptions import PersistenceError
from custom_components.medication_tracker.ledger import (
    DoseLedger, group_by_date, resolve_medication,
)
from custom_components.medication_tracker.registry import MedicationRegistry
from custom_components.medication_tracker.store import MedicationStore

from .conftest import make_medication


@pytest.fixture
async def store(hass: HomeAssistant):
    return MedicationStore(hass)


@pytest.fixture
async def ledger(store):
    ledger = DoseLedger(store)
    await ledger.async_load()
    return ledger


def _at(day: date, hour: int) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=dt_util.DEFAULT_TIME_ZONE)


async def test_record_appends_in_order(ledger):
    first = await ledger.async_record("med1", True, _at(date(2024, 1, 2), 9))
    second = await ledger.async_record("med2", False, _at(date(2024, 1, 1), 9))

    assert first.taken and not second.taken
    assert ledger.async_list() == [first, second]


async def test_record_defaults_to_now(ledger):
    event = await ledger.async_record("med1", True)
    assert abs(event.timestamp - dt_util.now()) < timedelta(seconds=5)


async def test_naive_timestamp_is_local(ledger):
    event = await ledger.async_record("med1", True, "2024-01-01T09:00:00")
    assert event.timestamp.tzinfo is not None
    assert event.local_date == date(2024, 1, 1)


async def test_filters(ledger):
    day1, day2, day3 = date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)
    a = await ledger.async_record("med1", True, _at(day1, 9))
    b = await ledger.async_record("med1", False, _at(day2, 9))
    c = await ledger.async_record("med2", True, _at(day3, 9))

    assert ledger.async_list(medication_id="med1") == [a, b]
    assert ledger.async_list(taken=True) == [a, c]
    assert ledger.async_list(taken=False) == [b]
    assert ledger.async_list(start=day2) == [b, c]
    assert ledger.async_list(start=day1, end=day2) == [a, b]
    assert ledger.async_list(start=day2, end=day2, medication_id="med2") == []


async def test_events_survive_reload(store, ledger):
    event = await ledger.async_record("med1", True)

    reloaded = DoseLedger(store)
    await reloaded.async_load()
    assert reloaded.async_list() == [event]


async def test_clear_all(ledger):
    await ledger.async_record("med1", True)
    await ledger.async_clear_all()
    assert ledger.async_list() == []


async def test_failed_write_is_not_recorded(ledger):
    first = await ledger.async_record("med1", True)

    with patch(
        "homeassistant.helpers.storage.Store._async_write_data",
        AsyncMock(side_effect=WriteError("disk full")),
    ):
        with pytest.raises(PersistenceError):
            await ledger.async_record("med1", False)
        with pytest.raises(PersistenceError):
            await ledger.async_clear_all()

    assert ledger.async_list() == [first]


async def test_deleted_medication_resolves_to_unknown(store, ledger):
    """Removing a medication keeps its doses; they show as unknown."""
    registry = MedicationRegistry(store)
    await registry.async_load()
    medication = await registry.async_add(make_medication())
    event = await ledger.async_record(medication.id, True)

    assert resolve_medication(event, registry.async_list()).medication_name == "Aspirin"

    await registry.async_remove(medication.id)

    assert ledger.async_list() == [event]
    resolved = resolve_medication(event, registry.async_list())
    assert resolved.medication is None
    assert resolved.medication_name == UNKNOWN_MEDICATION


async def test_group_by_date(ledger):
    day1, day2 = date(2024, 1, 1), date(2024, 1, 2)
    a = await ledger.async_record("med1", True, _at(day1, 9))
    b = await ledger.async_record("med1", True, _at(day2, 9))
    c = await ledger.async_record("med1", True, _at(day2, 21))

    grouped = group_by_date(ledger.async_list())
    assert list(grouped) == [day2, day1]
    assert grouped[day2] == [c, b]
    assert grouped[day1] == [a]
