"""Platform for Medication Tracker sensor."""
from __future__ import annotations

from datetime import datetime
import logging

from homeassistant.components.sensor import (
    SensorDeviceClass, SensorEntity, SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import PERCENTAGE
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers import entity_registry as er
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.event import async_track_time_change
from homeassistant.util import dt as dt_util

from .adherence import progress_for_day, status_for_medication_on_date
from .const import (
    ATTR_DATE, CONF_CURRENT_SUPPLY, CONF_DOSAGE, CONF_LAST_REFILL_DATE,
    CONF_REFILL_AT, CONF_REFILL_REMINDER, CONF_REMINDER_ENABLED, CONF_TIMES,
    CONF_TOTAL_SUPPLY, DOMAIN, SIGNAL_MEDICATION_ADDED,
    SIGNAL_MEDICATION_REMOVED, SIGNAL_UPDATED, SUPPLY_GOOD, SUPPLY_LOW,
    SUPPLY_MEDIUM,
)
from .supply import supply_percentage, supply_status

_LOGGER = logging.getLogger(__name__)

STATUS_ICONS = {
    SUPPLY_LOW: "mdi:pill-off",
    SUPPLY_MEDIUM: "mdi:pill",
    SUPPLY_GOOD: "mdi:pill-multiple",
}


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the sensor platform from UI Config Entry."""
    data = hass.data[DOMAIN]

    sensors: list[SensorEntity] = [AdherenceSensor(data, entry.entry_id)]
    for medication in data.registry.async_list():
        sensors.append(MedicationSensor(data, entry.entry_id, medication.id))
    async_add_entities(sensors)

    @callback
    def _async_medication_added(medication_id: str) -> None:
        _LOGGER.debug("Adding sensor for medication %s", medication_id)
        async_add_entities([MedicationSensor(data, entry.entry_id, medication_id)])

    entry.async_on_unload(
        async_dispatcher_connect(hass, SIGNAL_MEDICATION_ADDED, _async_medication_added)
    )


class _TrackerSensor(SensorEntity):
    """Re-reads registry and ledger state whenever it changes."""

    _attr_should_poll = False

    def __init__(self, data) -> None:
        self._data = data

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        self.async_on_remove(
            async_dispatcher_connect(self.hass, SIGNAL_UPDATED, self._async_refresh)
        )
        # Day boundaries change today's status and progress
        self.async_on_remove(
            async_track_time_change(
                self.hass, self._async_midnight, hour=0, minute=0, second=0
            )
        )
        self._update_state()

    @callback
    def _async_midnight(self, now: datetime) -> None:
        self._async_refresh()

    @callback
    def _async_refresh(self) -> None:
        self._update_state()
        self.async_write_ha_state()

    def _update_state(self) -> None:
        raise NotImplementedError


class MedicationSensor(_TrackerSensor):
    """Supply status of one medication."""

    _attr_device_class = SensorDeviceClass.ENUM
    _attr_options = [SUPPLY_LOW, SUPPLY_MEDIUM, SUPPLY_GOOD]

    def __init__(self, data, entry_id: str, medication_id: str) -> None:
        super().__init__(data)
        self._medication_id = medication_id
        self._attr_unique_id = f"{entry_id}_{medication_id}"
        medication = data.registry.async_lookup(medication_id)
        self._attr_name = medication.name if medication else medication_id
        self._attr_native_value = None
        self._attr_extra_state_attributes = {}

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass, SIGNAL_MEDICATION_REMOVED, self._async_medication_removed
            )
        )

    @callback
    def _async_medication_removed(self, medication_id: str) -> None:
        if medication_id != self._medication_id:
            return
        _LOGGER.debug("Removing sensor %s", self.entity_id)
        registry = er.async_get(self.hass)
        if registry.async_get(self.entity_id):
            registry.async_remove(self.entity_id)
        else:
            self.hass.async_create_task(self.async_remove(force_remove=True))

    def _update_state(self) -> None:
        medication = self._data.registry.async_lookup(self._medication_id)
        if medication is None:
            self._attr_native_value = None
            self._attr_available = False
            return

        self._attr_available = True
        self._attr_name = medication.name
        status = supply_status(medication)
        self._attr_native_value = status
        self._attr_icon = STATUS_ICONS[status]

        today = dt_util.now().date()
        events = self._data.ledger.async_list(
            start=today, end=today, medication_id=medication.id
        )
        reminders = self._data.scheduler.reminders_for(medication.id)
        upcoming = [
            handle.next_fire
            for handle in reminders.handles
            if getattr(handle, "next_fire", None) is not None
        ]

        attributes = {
            CONF_DOSAGE: medication.dosage,
            CONF_TIMES: medication.times,
            "supply_percentage": round(supply_percentage(medication), 1),
            CONF_CURRENT_SUPPLY: medication.current_supply,
            CONF_TOTAL_SUPPLY: medication.total_supply,
            CONF_REFILL_AT: medication.refill_at,
            CONF_REFILL_REMINDER: medication.refill_reminder,
            CONF_REMINDER_ENABLED: medication.reminder_enabled,
            "today_status": status_for_medication_on_date(medication.id, events, today),
            "reminder_state": str(reminders.state),
        }
        if medication.last_refill_date:
            attributes[CONF_LAST_REFILL_DATE] = medication.last_refill_date.isoformat()
        if upcoming:
            attributes["next_reminder"] = min(upcoming).isoformat()
        self._attr_extra_state_attributes = attributes


class AdherenceSensor(_TrackerSensor):
    """Share of today's expected doses that were taken."""

    _attr_name = "Medication Adherence Today"
    _attr_icon = "mdi:check-circle-outline"
    _attr_native_unit_of_measurement = PERCENTAGE
    _attr_state_class = SensorStateClass.MEASUREMENT

    def __init__(self, data, entry_id: str) -> None:
        super().__init__(data)
        self._attr_unique_id = f"{entry_id}_adherence"
        self._attr_native_value = 0.0
        self._attr_extra_state_attributes = {}

    def _update_state(self) -> None:
        today = dt_util.now().date()
        progress = progress_for_day(
            self._data.registry.async_list(),
            self._data.ledger.async_list(start=today, end=today),
            today,
        )
        self._attr_native_value = round(progress.percentage, 1)
        self._attr_extra_state_attributes = {
            ATTR_DATE: today.isoformat(),
            "total_expected": progress.total_expected,
            "total_taken": progress.total_taken,
        }
