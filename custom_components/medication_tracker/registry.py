"""Medication Registry: CRUD over medications on top of the store."""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any

import voluptuous as vol

from homeassistant.core import callback

from .const import (
    CONF_CURRENT_SUPPLY, CONF_DOSAGE, CONF_DURATION, CONF_NAME,
    CONF_REFILL_AT, CONF_TIMES, CONF_TOTAL_SUPPLY, DURATION_ONGOING,
)
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import Medication
from .store import MedicationStore

_LOGGER = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _non_empty(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise vol.Invalid("must not be empty")
    return value


def _time_of_day(value: Any) -> str:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise vol.Invalid(f"invalid time of day {value!r}, expected HH:MM")
    return value


def _unique_times(value: list[str]) -> list[str]:
    if len(set(value)) != len(value):
        raise vol.Invalid("duplicate time of day")
    return value


def _duration(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise vol.Invalid("duration must be an integer")
    if value != DURATION_ONGOING and value < 1:
        raise vol.Invalid("duration must be positive or ongoing")
    return value


def _supply(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise vol.Invalid("must be a non-negative integer")
    return value


MEDICATION_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_NAME): _non_empty,
        vol.Required(CONF_DOSAGE): _non_empty,
        vol.Required(CONF_TIMES): vol.All([_time_of_day], _unique_times),
        vol.Required(CONF_DURATION): _duration,
        vol.Required(CONF_CURRENT_SUPPLY): _supply,
        vol.Required(CONF_TOTAL_SUPPLY): _supply,
        vol.Required(CONF_REFILL_AT): vol.All(
            vol.Coerce(int), vol.Range(min=0, max=100)
        ),
    },
    extra=vol.ALLOW_EXTRA,
)


def validate_medication(medication: Medication) -> Medication:
    """Return a checked copy of the medication or raise ValidationError.

    Text fields are stored exactly as given.
    """
    try:
        cleaned = MEDICATION_SCHEMA(medication.as_dict())
    except vol.Invalid as err:
        raise ValidationError(f"Invalid medication: {err}") from err

    result = medication.copy()
    result.refill_at = cleaned[CONF_REFILL_AT]
    return result


class MedicationRegistry:
    """Owns medication identity and schema validity."""

    def __init__(self, store: MedicationStore) -> None:
        self._store = store
        self._medications: dict[str, Medication] = {}
        self._retired_ids: set[str] = set()

    async def async_load(self) -> None:
        raw, retired = await self._store.async_load_medications()
        medications: dict[str, Medication] = {}
        for item in raw:
            try:
                medication = Medication.from_dict(item)
            except (KeyError, ValueError) as err:
                _LOGGER.error("Skipping unreadable medication %s: %s", item, err)
                continue
            medications[medication.id] = medication
        self._medications = medications
        self._retired_ids = set(retired)
        _LOGGER.debug("Loaded %d medications", len(medications))

    @callback
    def async_get(self, medication_id: str) -> Medication:
        if (medication := self._medications.get(medication_id)) is None:
            raise NotFoundError(medication_id)
        return medication.copy()

    @callback
    def async_lookup(self, medication_id: str) -> Medication | None:
        """Return a snapshot or None for an unknown id."""
        medication = self._medications.get(medication_id)
        return medication.copy() if medication else None

    @callback
    def async_list(self) -> list[Medication]:
        return [medication.copy() for medication in self._medications.values()]

    async def async_add(self, medication: Medication) -> Medication:
        stored = validate_medication(medication)
        if stored.id is None:
            stored.id = self._new_id()
        elif stored.id in self._medications or stored.id in self._retired_ids:
            raise ValidationError(f"Medication id {stored.id} is already used")

        previous = dict(self._medications)
        self._medications[stored.id] = stored
        await self._async_commit(previous, set(self._retired_ids))
        _LOGGER.info("Added medication %s (%s)", stored.name, stored.id)
        return stored.copy()

    async def async_update(self, medication: Medication) -> Medication:
        """Replace the full record that has the same id."""
        if medication.id is None or medication.id not in self._medications:
            raise NotFoundError(medication.id)
        stored = validate_medication(medication)

        previous = dict(self._medications)
        self._medications[stored.id] = stored
        await self._async_commit(previous, set(self._retired_ids))
        return stored.copy()

    async def async_remove(self, medication_id: str) -> None:
        if medication_id not in self._medications:
            raise NotFoundError(medication_id)

        previous = dict(self._medications)
        previous_retired = set(self._retired_ids)
        del self._medications[medication_id]
        self._retired_ids.add(medication_id)
        await self._async_commit(previous, previous_retired)
        _LOGGER.info("Removed medication %s", medication_id)

    async def async_clear_all(self) -> None:
        previous = dict(self._medications)
        previous_retired = set(self._retired_ids)
        self._retired_ids.update(self._medications)
        self._medications = {}
        await self._async_commit(previous, previous_retired)

    def _new_id(self) -> str:
        while True:
            new_id = uuid.uuid4().hex
            if new_id not in self._medications and new_id not in self._retired_ids:
                return new_id

    async def _async_commit(
        self, previous: dict[str, Medication], previous_retired: set[str]
    ) -> None:
        """Persist current state; restore the previous state on failure."""
        try:
            await self._store.async_save_medications(
                [medication.as_dict() for medication in self._medications.values()],
                sorted(self._retired_ids),
            )
        except PersistenceError:
            self._medications = previous
            self._retired_ids = previous_retired
            raise
