"""The Medication Tracker integration."""
from __future__ import annotations

from dataclasses import dataclass, replace
import logging

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import (
    HomeAssistant, ServiceCall, ServiceResponse, SupportsResponse,
)
from homeassistant.exceptions import ConfigEntryNotReady, ServiceValidationError
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers.dispatcher import async_dispatcher_send
from homeassistant.util import dt as dt_util

from .adherence import progress_for_day, status_for_medication_on_date
from .const import (
    ATTR_DATE, ATTR_END, ATTR_MEDICATION_ID, ATTR_PIN, ATTR_START,
    ATTR_TAKEN, ATTR_TIMESTAMP, CONF_CURRENT_SUPPLY, CONF_DOSAGE,
    CONF_DURATION, CONF_NAME, CONF_NOTES, CONF_NOTIFY_SERVICE,
    CONF_REFILL_AT, CONF_REFILL_CHECK_TIME, CONF_REFILL_REMINDER,
    CONF_REMINDER_ENABLED, CONF_START_DATE, CONF_TIMES, CONF_TOTAL_SUPPLY,
    DEFAULT_REFILL_CHECK_TIME, DOMAIN, DURATION_ONGOING,
    SIGNAL_MEDICATION_ADDED, SIGNAL_MEDICATION_REMOVED, SIGNAL_UPDATED,
)
from .exceptions import PersistenceError, ValidationError
from .ledger import DoseLedger, resolve_medication
from .models import Medication
from .notifications import HassReminderBackend
from .registry import MedicationRegistry
from .scheduler import ReminderScheduler
from .store import MedicationStore
from .supply import async_consume_dose, async_record_refill

_LOGGER = logging.getLogger(__name__)

PLATFORMS = ["sensor"]

CONFIG_SCHEMA = cv.config_entry_only_config_schema(DOMAIN)

SERVICE_ADD = "add_medication"
SERVICE_UPDATE = "update_medication"
SERVICE_REMOVE = "remove_medication"
SERVICE_TAKE = "take_dose"
SERVICE_REFILL = "record_refill"
SERVICE_CLEAR = "clear_all_data"
SERVICE_SET_PIN = "set_pin"
SERVICE_VERIFY_PIN = "verify_pin"
SERVICE_CLEAR_PIN = "clear_pin"
SERVICE_HISTORY = "get_history"
SERVICE_PROGRESS = "get_progress"

MEDICATION_FIELDS = {
    vol.Optional(CONF_TIMES): vol.All(cv.ensure_list, [cv.string]),
    vol.Optional(CONF_START_DATE): cv.date,
    vol.Optional(CONF_DURATION): vol.Coerce(int),
    vol.Optional(CONF_REMINDER_ENABLED): cv.boolean,
    vol.Optional(CONF_CURRENT_SUPPLY): vol.Coerce(int),
    vol.Optional(CONF_TOTAL_SUPPLY): vol.Coerce(int),
    vol.Optional(CONF_REFILL_AT): vol.Coerce(int),
    vol.Optional(CONF_REFILL_REMINDER): cv.boolean,
    vol.Optional(CONF_NOTES): cv.string,
}

ADD_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_NAME): cv.string,
        vol.Required(CONF_DOSAGE): cv.string,
        **MEDICATION_FIELDS,
    }
)

UPDATE_SCHEMA = vol.Schema(
    {
        vol.Required(ATTR_MEDICATION_ID): cv.string,
        vol.Optional(CONF_NAME): cv.string,
        vol.Optional(CONF_DOSAGE): cv.string,
        **MEDICATION_FIELDS,
    }
)

MEDICATION_ID_SCHEMA = vol.Schema({vol.Required(ATTR_MEDICATION_ID): cv.string})

TAKE_SCHEMA = vol.Schema(
    {
        vol.Required(ATTR_MEDICATION_ID): cv.string,
        vol.Optional(ATTR_TAKEN, default=True): cv.boolean,
        vol.Optional(ATTR_TIMESTAMP): cv.datetime,
    }
)

PIN_SCHEMA = vol.Schema({vol.Required(ATTR_PIN): cv.string})

HISTORY_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_START): cv.date,
        vol.Optional(ATTR_END): cv.date,
        vol.Optional(ATTR_MEDICATION_ID): cv.string,
        vol.Optional(ATTR_TAKEN): cv.boolean,
    }
)

PROGRESS_SCHEMA = vol.Schema({vol.Optional(ATTR_DATE): cv.date})


@dataclass
class MedicationTrackerData:
    """Runtime objects shared by services, flows and entities."""

    store: MedicationStore
    registry: MedicationRegistry
    ledger: DoseLedger
    scheduler: ReminderScheduler


def get_tracker_data(hass: HomeAssistant) -> MedicationTrackerData:
    if (data := hass.data.get(DOMAIN)) is None:
        raise ServiceValidationError("Medication Tracker is not set up")
    return data


async def async_sync_reminders(
    hass: HomeAssistant, data: MedicationTrackerData, medication: Medication
) -> None:
    """Reconcile reminders for a medication, then tell entities to re-read."""
    try:
        await data.scheduler.async_sync_for_medication(medication)
    finally:
        async_dispatcher_send(hass, SIGNAL_UPDATED)


async def async_add_medication(
    hass: HomeAssistant, data: MedicationTrackerData, medication: Medication
) -> Medication:
    stored = await data.registry.async_add(medication)
    async_dispatcher_send(hass, SIGNAL_MEDICATION_ADDED, stored.id)
    await async_sync_reminders(hass, data, stored)
    return stored


async def async_update_medication(
    hass: HomeAssistant, data: MedicationTrackerData, medication: Medication
) -> Medication:
    stored = await data.registry.async_update(medication)
    await async_sync_reminders(hass, data, stored)
    return stored


async def async_remove_medication(
    hass: HomeAssistant, data: MedicationTrackerData, medication_id: str
) -> None:
    await data.registry.async_remove(medication_id)
    await data.scheduler.async_cancel_for_medication(medication_id)
    async_dispatcher_send(hass, SIGNAL_MEDICATION_REMOVED, medication_id)
    async_dispatcher_send(hass, SIGNAL_UPDATED)


async def async_setup(hass: HomeAssistant, config: dict) -> bool:
    """Set up the Medication Tracker services."""

    # 1. Medication Services
    async def handle_add_medication(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        fields = dict(call.data)
        fields.setdefault(CONF_START_DATE, dt_util.now().date())
        fields.setdefault(CONF_DURATION, DURATION_ONGOING)
        await async_add_medication(hass, data, Medication(**fields))

    async def handle_update_medication(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        fields = dict(call.data)
        medication = data.registry.async_get(fields.pop(ATTR_MEDICATION_ID))
        await async_update_medication(hass, data, replace(medication, **fields))

    async def handle_remove_medication(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        await async_remove_medication(hass, data, call.data[ATTR_MEDICATION_ID])

    # 2. Dose and Refill Services
    async def handle_take_dose(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        medication_id = call.data[ATTR_MEDICATION_ID]
        taken = call.data[ATTR_TAKEN]
        await data.ledger.async_record(
            medication_id, taken, call.data.get(ATTR_TIMESTAMP)
        )
        if taken:
            await async_consume_dose(data.registry, medication_id)
        async_dispatcher_send(hass, SIGNAL_UPDATED)

    async def handle_record_refill(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        medication = await async_record_refill(
            data.registry, call.data[ATTR_MEDICATION_ID]
        )
        await async_sync_reminders(hass, data, medication)

    # 3. Reset Services
    async def handle_clear_all_data(call: ServiceCall) -> None:
        data = get_tracker_data(hass)
        medication_ids = [medication.id for medication in data.registry.async_list()]
        await data.registry.async_clear_all()
        try:
            await data.ledger.async_clear_all()
        finally:
            # Medications are gone even if the history could not be cleared
            await data.scheduler.async_cancel_all()
            for medication_id in medication_ids:
                async_dispatcher_send(hass, SIGNAL_MEDICATION_REMOVED, medication_id)
            async_dispatcher_send(hass, SIGNAL_UPDATED)

    async def handle_set_pin(call: ServiceCall) -> None:
        await get_tracker_data(hass).store.async_set_pin(call.data[ATTR_PIN])

    async def handle_verify_pin(call: ServiceCall) -> ServiceResponse:
        store = get_tracker_data(hass).store
        return {"valid": await store.async_check_pin(call.data[ATTR_PIN])}

    async def handle_clear_pin(call: ServiceCall) -> None:
        """Remove the app lock; the current PIN is required."""
        store = get_tracker_data(hass).store
        if not await store.async_check_pin(call.data[ATTR_PIN]):
            raise ValidationError("Incorrect PIN")
        await store.async_clear_pin()

    # 4. Read Services
    async def handle_get_history(call: ServiceCall) -> ServiceResponse:
        data = get_tracker_data(hass)
        medications = data.registry.async_list()
        events = data.ledger.async_list(
            start=call.data.get(ATTR_START),
            end=call.data.get(ATTR_END),
            medication_id=call.data.get(ATTR_MEDICATION_ID),
            taken=call.data.get(ATTR_TAKEN),
        )
        events.sort(key=lambda event: event.timestamp, reverse=True)
        doses = []
        for event in events:
            resolved = resolve_medication(event, medications)
            doses.append(
                {
                    **event.as_dict(),
                    CONF_NAME: resolved.medication_name,
                    CONF_DOSAGE: resolved.medication.dosage if resolved.medication else None,
                }
            )
        return {"doses": doses}

    async def handle_get_progress(call: ServiceCall) -> ServiceResponse:
        data = get_tracker_data(hass)
        day = call.data.get(ATTR_DATE) or dt_util.now().date()
        medications = data.registry.async_list()
        events = data.ledger.async_list(start=day, end=day)
        progress = progress_for_day(medications, events, day)
        return {
            ATTR_DATE: day.isoformat(),
            "total_expected": progress.total_expected,
            "total_taken": progress.total_taken,
            "percentage": round(progress.percentage, 1),
            "medications": [
                {
                    ATTR_MEDICATION_ID: medication.id,
                    CONF_NAME: medication.name,
                    "status": status_for_medication_on_date(medication.id, events, day),
                }
                for medication in medications
            ],
        }

    hass.services.async_register(DOMAIN, SERVICE_ADD, handle_add_medication, ADD_SCHEMA)
    hass.services.async_register(DOMAIN, SERVICE_UPDATE, handle_update_medication, UPDATE_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_REMOVE, handle_remove_medication, MEDICATION_ID_SCHEMA
    )
    hass.services.async_register(DOMAIN, SERVICE_TAKE, handle_take_dose, TAKE_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_REFILL, handle_record_refill, MEDICATION_ID_SCHEMA
    )
    hass.services.async_register(DOMAIN, SERVICE_CLEAR, handle_clear_all_data)
    hass.services.async_register(DOMAIN, SERVICE_SET_PIN, handle_set_pin, PIN_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_VERIFY_PIN, handle_verify_pin, PIN_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )
    hass.services.async_register(DOMAIN, SERVICE_CLEAR_PIN, handle_clear_pin, PIN_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_HISTORY, handle_get_history, HISTORY_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )
    hass.services.async_register(
        DOMAIN, SERVICE_PROGRESS, handle_get_progress, PROGRESS_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )

    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Medication Tracker from a config entry."""
    options = {**entry.data, **entry.options}

    store = MedicationStore(hass)
    registry = MedicationRegistry(store)
    ledger = DoseLedger(store)
    try:
        await registry.async_load()
        await ledger.async_load()
    except PersistenceError as err:
        raise ConfigEntryNotReady(str(err)) from err

    backend = HassReminderBackend(hass, options.get(CONF_NOTIFY_SERVICE))
    scheduler = ReminderScheduler(
        backend,
        registry.async_lookup,
        dt_util.parse_time(options.get(CONF_REFILL_CHECK_TIME) or DEFAULT_REFILL_CHECK_TIME),
    )
    hass.data[DOMAIN] = MedicationTrackerData(store, registry, ledger, scheduler)

    failures = await scheduler.async_sync_all(registry.async_list())
    if failures:
        _LOGGER.warning("Reminders could not be scheduled for %d medication(s)", len(failures))

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    entry.async_on_unload(entry.add_update_listener(update_listener))
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok and (data := hass.data.pop(DOMAIN, None)) is not None:
        await data.scheduler.async_cancel_all()
    return unload_ok


async def update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the integration when options are updated."""
    await hass.config_entries.async_reload(entry.entry_id)
