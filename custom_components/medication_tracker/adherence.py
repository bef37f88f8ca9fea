"""Adherence Calculator: progress and dose status derived on read."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from homeassistant.util import dt as dt_util

from .const import STATUS_MISSED, STATUS_PENDING, STATUS_TAKEN
from .models import DoseEvent, Medication


@dataclass(frozen=True)
class DayProgress:
    total_expected: int = 0
    total_taken: int = 0

    @property
    def percentage(self) -> float:
        if self.total_expected == 0:
            return 0.0
        return self.total_taken / self.total_expected * 100


def is_active_on(medication: Medication, day: date) -> bool:
    """Whether the day falls in [start_date, start_date + duration)."""
    if day < medication.start_date:
        return False
    end = medication.end_date
    return end is None or day < end


def _taken_ids_by_medication(
    events: Iterable[DoseEvent], day: date
) -> dict[str, set[str]]:
    taken: dict[str, set[str]] = {}
    for event in events:
        if event.taken and event.local_date == day:
            taken.setdefault(event.medication_id, set()).add(event.id)
    return taken


def progress_for_day(
    medications: Iterable[Medication], events: Iterable[DoseEvent], day: date
) -> DayProgress:
    """Sum expected and taken doses across medications active on the day."""
    taken_by_medication = _taken_ids_by_medication(events, day)
    expected = taken = 0

    for medication in medications:
        if not is_active_on(medication, day):
            continue
        taken_count = len(taken_by_medication.get(medication.id, ()))
        if medication.is_as_needed:
            # As-needed doses only count once one was actually taken
            if taken_count:
                expected += 1
                taken += 1
            continue
        slots = len(medication.times)
        expected += slots
        taken += min(taken_count, slots)

    return DayProgress(expected, taken)


def status_for_medication_on_date(
    medication_id: str,
    events: Iterable[DoseEvent],
    day: date,
    now: datetime | None = None,
) -> str:
    if now is None:
        now = dt_util.now()
    for event in events:
        if event.medication_id == medication_id and event.taken and event.local_date == day:
            return STATUS_TAKEN
    if day < dt_util.as_local(now).date():
        return STATUS_MISSED
    return STATUS_PENDING
