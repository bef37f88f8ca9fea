"""Reminder Scheduler: keeps scheduled reminders in line with medications."""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import time
from enum import StrEnum
import logging
from typing import Any, Protocol

from homeassistant.core import callback
from homeassistant.util import dt as dt_util

from .const import (
    ATTR_MEDICATION_ID, DOMAIN, REFILL_SLOT,
    REMINDER_KIND_DOSE, REMINDER_KIND_REFILL,
)
from .exceptions import SchedulingError
from .models import Medication
from .notifications import DailyTrigger, OneShotTrigger, Trigger
from .supply import is_low

_LOGGER = logging.getLogger(__name__)


class ReminderBackend(Protocol):
    """The local notification service the scheduler drives."""

    async def async_schedule(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        should_fire: Callable[[], bool] | None = None,
    ) -> Any: ...

    async def async_cancel(self, handle: Any) -> None: ...

    async def async_cancel_all(self) -> None: ...


class ReminderState(StrEnum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


@dataclass
class MedicationReminders:
    """Reminder bookkeeping for one medication id.

    ``state`` follows the dose reminders only. The refill alert lives in
    ``refill_handle`` whatever the state.
    """

    state: ReminderState = ReminderState.UNSCHEDULED
    dose_handles: dict[str, Any] = field(default_factory=dict)
    refill_handle: Any = None
    last_error: str | None = None
    # Set once the immediate alert of the current low-supply episode is out
    low_supply_alerted: bool = False

    @property
    def handles(self) -> list[Any]:
        handles = list(self.dose_handles.values())
        if self.refill_handle is not None:
            handles.append(self.refill_handle)
        return handles

    @property
    def is_active(self) -> bool:
        return self.state in (ReminderState.SCHEDULED, ReminderState.RESCHEDULED)

    def snapshot(self) -> MedicationReminders:
        return replace(self, dose_handles=dict(self.dose_handles))


def dose_payload(medication: Medication, slot: str) -> dict[str, Any]:
    return {
        ATTR_MEDICATION_ID: medication.id,
        "kind": REMINDER_KIND_DOSE,
        "slot": slot,
        "title": "Medication Reminder",
        "message": f"Time to take {medication.name} ({medication.dosage})",
        "notification_id": f"{DOMAIN}_{medication.id}_{slot}",
    }


def refill_payload(medication: Medication) -> dict[str, Any]:
    return {
        ATTR_MEDICATION_ID: medication.id,
        "kind": REMINDER_KIND_REFILL,
        "slot": REFILL_SLOT,
        "title": "Refill Reminder",
        "message": f"Your {medication.name} supply is running low. Time to refill.",
        "notification_id": f"{DOMAIN}_{medication.id}_{REFILL_SLOT}",
    }


class ReminderScheduler:
    """Sole owner of reminder handles.

    Every sync cancels all handles of the medication before scheduling new
    ones, so repeated syncs with the same input leave the same set behind.
    Syncs for the same medication id run one at a time.
    """

    def __init__(
        self,
        backend: ReminderBackend,
        lookup: Callable[[str], Medication | None],
        refill_check_time: time,
    ) -> None:
        self._backend = backend
        self._lookup = lookup
        self._refill_check_time = refill_check_time
        self._entries: dict[str, MedicationReminders] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @callback
    def reminders_for(self, medication_id: str) -> MedicationReminders:
        if (entry := self._entries.get(medication_id)) is not None:
            return entry.snapshot()
        if self._lookup(medication_id) is None:
            return MedicationReminders(state=ReminderState.CANCELLED)
        return MedicationReminders()

    def _lock_for(self, medication_id: str) -> asyncio.Lock:
        return self._locks.setdefault(medication_id, asyncio.Lock())

    async def async_sync_for_medication(self, medication: Medication) -> MedicationReminders:
        """Cancel the medication's reminders and schedule them again."""
        async with self._lock_for(medication.id):
            entry = self._entries.setdefault(medication.id, MedicationReminders())
            await self._async_cancel_handles(entry)

            if self._lookup(medication.id) is None:
                # Removed while this sync was waiting
                entry.state = ReminderState.CANCELLED
                self._forget(medication.id)
                return entry.snapshot()

            errors: list[SchedulingError] = []
            if medication.reminder_enabled:
                for slot in medication.times:
                    try:
                        entry.dose_handles[slot] = await self._backend.async_schedule(
                            DailyTrigger(
                                dt_util.parse_time(slot),
                                medication.start_date,
                                medication.end_date,
                            ),
                            dose_payload(medication, slot),
                        )
                    except SchedulingError as err:
                        errors.append(err)

            if medication.refill_reminder:
                try:
                    entry.refill_handle = await self._async_schedule_refill(medication, entry)
                except SchedulingError as err:
                    errors.append(err)

            if entry.dose_handles:
                entry.state = (
                    ReminderState.RESCHEDULED if entry.is_active else ReminderState.SCHEDULED
                )
            elif entry.state is not ReminderState.UNSCHEDULED:
                entry.state = ReminderState.CANCELLED

            entry.last_error = str(errors[0]) if errors else None
            if errors:
                _LOGGER.warning(
                    "Could not schedule %d reminder(s) for %s: %s",
                    len(errors), medication.name, errors[0],
                )
                raise SchedulingError(
                    f"Reminders for {medication.name} were not fully scheduled: {errors[0]}"
                ) from errors[0]

            _LOGGER.debug(
                "Synced %d reminder(s) for %s", len(entry.handles), medication.name
            )
            return entry.snapshot()

    async def _async_schedule_refill(
        self, medication: Medication, entry: MedicationReminders
    ) -> Any:
        payload = refill_payload(medication)
        if not is_low(medication):
            entry.low_supply_alerted = False
        elif not entry.low_supply_alerted:
            handle = await self._backend.async_schedule(
                OneShotTrigger(dt_util.utcnow()), payload
            )
            entry.low_supply_alerted = True
            return handle

        medication_id = medication.id

        def refill_due() -> bool:
            current = self._lookup(medication_id)
            return current is not None and current.refill_reminder and is_low(current)

        return await self._backend.async_schedule(
            DailyTrigger(self._refill_check_time, dt_util.now().date()),
            payload,
            should_fire=refill_due,
        )

    async def async_cancel_for_medication(self, medication_id: str) -> None:
        async with self._lock_for(medication_id):
            entry = self._entries.setdefault(medication_id, MedicationReminders())
            await self._async_cancel_handles(entry)
            entry.state = ReminderState.CANCELLED
            entry.last_error = None
            if self._lookup(medication_id) is None:
                self._forget(medication_id)

    async def async_cancel_all(self) -> None:
        for medication_id in list(self._entries):
            await self.async_cancel_for_medication(medication_id)
        await self._backend.async_cancel_all()

    async def async_sync_all(
        self, medications: list[Medication]
    ) -> dict[str, SchedulingError]:
        """Reconcile every medication; one failure never blocks the rest."""
        failures: dict[str, SchedulingError] = {}
        for medication in medications:
            try:
                await self.async_sync_for_medication(medication)
            except SchedulingError as err:
                failures[medication.id] = err
        return failures

    def _forget(self, medication_id: str) -> None:
        """Drop bookkeeping of a medication that no longer exists."""
        self._entries.pop(medication_id, None)
        self._locks.pop(medication_id, None)

    async def _async_cancel_handles(self, entry: MedicationReminders) -> None:
        for handle in entry.handles:
            await self._backend.async_cancel(handle)
        entry.dose_handles = {}
        entry.refill_handle = None
