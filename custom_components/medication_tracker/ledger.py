"""Dose Ledger: append-only history of dose events."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
import logging
import uuid

from homeassistant.core import callback
from homeassistant.util import dt as dt_util

from .const import UNKNOWN_MEDICATION
from .exceptions import PersistenceError
from .models import DoseEvent, Medication, parse_timestamp
from .store import MedicationStore

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedDose:
    """A dose event paired with its medication, if it still exists."""

    event: DoseEvent
    medication: Medication | None

    @property
    def medication_name(self) -> str:
        if self.medication is None:
            return UNKNOWN_MEDICATION
        return self.medication.name


def resolve_medication(
    event: DoseEvent, medications: Iterable[Medication]
) -> ResolvedDose:
    """Look up the event's medication, falling back to unknown."""
    for medication in medications:
        if medication.id == event.medication_id:
            return ResolvedDose(event, medication)
    return ResolvedDose(event, None)


def group_by_date(events: Iterable[DoseEvent]) -> dict[date, list[DoseEvent]]:
    """Group events by local date, newest date and newest event first."""
    grouped: dict[date, list[DoseEvent]] = {}
    for event in sorted(events, key=lambda e: e.timestamp, reverse=True):
        grouped.setdefault(event.local_date, []).append(event)
    return grouped


class DoseLedger:
    """Source of truth for adherence and history."""

    def __init__(self, store: MedicationStore) -> None:
        self._store = store
        self._events: list[DoseEvent] = []

    async def async_load(self) -> None:
        events = []
        for item in await self._store.async_load_doses():
            try:
                events.append(DoseEvent.from_dict(item))
            except (KeyError, ValueError) as err:
                _LOGGER.error("Skipping unreadable dose event %s: %s", item, err)
        self._events = events

    async def async_record(
        self,
        medication_id: str,
        taken: bool,
        timestamp: datetime | str | None = None,
    ) -> DoseEvent:
        """Append a dose event. The medication id is not checked."""
        event = DoseEvent(
            id=uuid.uuid4().hex,
            medication_id=medication_id,
            timestamp=dt_util.now() if timestamp is None else parse_timestamp(timestamp),
            taken=taken,
        )
        self._events.append(event)
        try:
            await self._async_save()
        except PersistenceError:
            self._events.pop()
            raise
        return event

    @callback
    def async_list(
        self,
        start: date | None = None,
        end: date | None = None,
        medication_id: str | None = None,
        taken: bool | None = None,
    ) -> list[DoseEvent]:
        """Events in ledger order, optionally filtered.

        ``start`` and ``end`` are inclusive local dates.
        """
        events = []
        for event in self._events:
            day = event.local_date
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            if medication_id is not None and event.medication_id != medication_id:
                continue
            if taken is not None and event.taken != taken:
                continue
            events.append(event)
        return events

    async def async_clear_all(self) -> None:
        previous = self._events
        self._events = []
        try:
            await self._async_save()
        except PersistenceError:
            self._events = previous
            raise

    async def _async_save(self) -> None:
        await self._store.async_save_doses([event.as_dict() for event in self._events])
