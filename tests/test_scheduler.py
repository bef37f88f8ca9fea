"""Tests for the reminder scheduler."""
import asyncio
from dataclasses import replace
from datetime import time

import pytest

from custom_components.medication_tracker.const import (
    REMINDER_KIND_DOSE, REMINDER_KIND_REFILL,
)
from custom_components.medication_tracker.exceptions import SchedulingError
from custom_components.medication_tracker.notifications import (
    DailyTrigger, OneShotTrigger,
)
from custom_components.medication_tracker.scheduler import (
    ReminderScheduler, ReminderState,
)

from .conftest import make_medication


@pytest.fixture
def medications():
    """Stands in for the registry lookup."""
    return {}


@pytest.fixture
def scheduler(fake_backend, medications):
    return ReminderScheduler(fake_backend, medications.get, time(10, 0))


def _track(medications, medication):
    medications[medication.id] = medication
    return medication


async def test_one_reminder_per_slot(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))

    reminders = await scheduler.async_sync_for_medication(medication)

    assert reminders.state is ReminderState.SCHEDULED
    assert sorted(reminders.dose_handles) == ["09:00", "21:00"]
    assert len(fake_backend.active) == 2
    trigger = reminders.dose_handles["21:00"].trigger
    assert isinstance(trigger, DailyTrigger)
    assert trigger.time_of_day == time(21, 0)
    assert trigger.end is None
    assert all(h.payload["kind"] == REMINDER_KIND_DOSE for h in fake_backend.active)


async def test_sync_is_idempotent(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))

    for _ in range(3):
        await scheduler.async_sync_for_medication(medication)

    assert len(fake_backend.active) == 2
    assert scheduler.reminders_for("med1").state is ReminderState.RESCHEDULED


async def test_editing_times_replaces_reminders(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1", times=["09:00"]))
    await scheduler.async_sync_for_medication(medication)

    edited = _track(medications, replace(medication, times=["09:00", "21:00"]))
    await scheduler.async_sync_for_medication(edited)

    assert len(fake_backend.active) == 2
    assert sorted(h.payload["slot"] for h in fake_backend.active) == ["09:00", "21:00"]


async def test_concurrent_syncs_do_not_duplicate(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))

    await asyncio.gather(
        *(scheduler.async_sync_for_medication(medication) for _ in range(5))
    )

    assert len(fake_backend.active) == 2


async def test_fixed_duration_ends_reminders(scheduler, medications):
    medication = _track(medications, make_medication(id="med1", duration=14))
    reminders = await scheduler.async_sync_for_medication(medication)

    trigger = reminders.dose_handles["09:00"].trigger
    assert trigger.start == medication.start_date
    assert trigger.end == medication.end_date


async def test_reminders_disabled(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))
    await scheduler.async_sync_for_medication(medication)

    disabled = _track(medications, replace(medication, reminder_enabled=False))
    reminders = await scheduler.async_sync_for_medication(disabled)

    assert fake_backend.active == []
    assert reminders.state is ReminderState.CANCELLED


async def test_never_enabled_stays_unscheduled(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1", reminder_enabled=False))
    reminders = await scheduler.async_sync_for_medication(medication)

    assert reminders.state is ReminderState.UNSCHEDULED
    assert fake_backend.active == []


async def test_refill_alert_fires_now_when_low(scheduler, fake_backend, medications):
    medication = _track(
        medications, make_medication(id="med1", refill_reminder=True, current_supply=10)
    )

    reminders = await scheduler.async_sync_for_medication(medication)

    assert len(fake_backend.active) == 3
    assert reminders.refill_handle.payload["kind"] == REMINDER_KIND_REFILL
    assert isinstance(reminders.refill_handle.trigger, OneShotTrigger)


async def test_refill_check_runs_daily_when_not_low(scheduler, fake_backend, medications):
    medication = _track(
        medications,
        make_medication(id="med1", refill_reminder=True, current_supply=80),
    )

    reminders = await scheduler.async_sync_for_medication(medication)
    handle = reminders.refill_handle

    assert isinstance(handle.trigger, DailyTrigger)
    assert handle.trigger.time_of_day == time(10, 0)
    assert handle.should_fire() is False

    # The check reads the latest state when it runs
    medications["med1"] = replace(medication, current_supply=5)
    assert handle.should_fire() is True
    medications["med1"] = replace(medication, current_supply=5, refill_reminder=False)
    assert handle.should_fire() is False


async def test_repeated_refill_sync_keeps_one_alert(scheduler, fake_backend, medications):
    medication = _track(
        medications, make_medication(id="med1", refill_reminder=True, reminder_enabled=False)
    )

    await scheduler.async_sync_for_medication(medication)
    await scheduler.async_sync_for_medication(medication)

    assert len(fake_backend.active) == 1


async def test_cancel_for_medication(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1", refill_reminder=True))
    other = _track(medications, make_medication(id="med2", name="Zinc"))
    await scheduler.async_sync_for_medication(medication)
    await scheduler.async_sync_for_medication(other)

    await scheduler.async_cancel_for_medication("med1")

    assert fake_backend.for_medication("med1") == []
    assert len(fake_backend.for_medication("med2")) == 2
    assert scheduler.reminders_for("med1").state is ReminderState.CANCELLED


async def test_sync_after_removal_schedules_nothing(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))
    await scheduler.async_sync_for_medication(medication)

    del medications["med1"]
    reminders = await scheduler.async_sync_for_medication(medication)

    assert fake_backend.active == []
    assert reminders.state is ReminderState.CANCELLED


async def test_cancel_all(scheduler, fake_backend, medications):
    for medication_id in ("med1", "med2"):
        await scheduler.async_sync_for_medication(
            _track(medications, make_medication(id=medication_id))
        )

    await scheduler.async_cancel_all()

    assert fake_backend.active == []
    assert scheduler.reminders_for("med2").state is ReminderState.CANCELLED


async def test_scheduling_failure_is_reported(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))
    fake_backend.failing_ids.add("med1")

    with pytest.raises(SchedulingError):
        await scheduler.async_sync_for_medication(medication)

    assert scheduler.reminders_for("med1").last_error is not None


async def test_sync_all_isolates_failures(scheduler, fake_backend, medications):
    broken = _track(medications, make_medication(id="med1"))
    healthy = _track(medications, make_medication(id="med2", name="Zinc"))
    fake_backend.failing_ids.add("med1")

    failures = await scheduler.async_sync_all([broken, healthy])

    assert list(failures) == ["med1"]
    assert len(fake_backend.for_medication("med2")) == 2


async def test_low_supply_alerts_once_per_episode(scheduler, fake_backend, medications):
    medication = _track(
        medications, make_medication(id="med1", refill_reminder=True, current_supply=10)
    )

    first = await scheduler.async_sync_for_medication(medication)
    edited = _track(medications, replace(medication, notes="after breakfast"))
    second = await scheduler.async_sync_for_medication(edited)

    assert isinstance(first.refill_handle.trigger, OneShotTrigger)
    # Still low: back to the daily check instead of another immediate alert
    assert isinstance(second.refill_handle.trigger, DailyTrigger)
    assert second.refill_handle.should_fire() is True

    refilled = _track(medications, replace(edited, current_supply=100))
    await scheduler.async_sync_for_medication(refilled)
    low_again = _track(medications, replace(refilled, current_supply=5))
    third = await scheduler.async_sync_for_medication(low_again)

    assert isinstance(third.refill_handle.trigger, OneShotTrigger)


async def test_disabling_dose_reminders_cancels_with_refill_on(
    scheduler, fake_backend, medications
):
    medication = _track(
        medications, make_medication(id="med1", refill_reminder=True, current_supply=80)
    )
    await scheduler.async_sync_for_medication(medication)

    disabled = _track(medications, replace(medication, reminder_enabled=False))
    reminders = await scheduler.async_sync_for_medication(disabled)

    assert reminders.state is ReminderState.CANCELLED
    assert reminders.dose_handles == {}
    assert reminders.refill_handle is not None
    assert len(fake_backend.active) == 1

    enabled = _track(medications, replace(disabled, reminder_enabled=True))
    reminders = await scheduler.async_sync_for_medication(enabled)
    assert reminders.state is ReminderState.SCHEDULED


async def test_removed_medication_is_forgotten(scheduler, fake_backend, medications):
    medication = _track(medications, make_medication(id="med1"))
    await scheduler.async_sync_for_medication(medication)

    del medications["med1"]
    await scheduler.async_cancel_for_medication("med1")

    assert "med1" not in scheduler._entries
    assert "med1" not in scheduler._locks
    assert fake_backend.active == []
    assert scheduler.reminders_for("med1").state is ReminderState.CANCELLED
