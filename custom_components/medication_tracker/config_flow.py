"""Config flow for Medication Tracker integration."""
from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.data_entry_flow import FlowResult
from homeassistant.helpers.selector import (
    BooleanSelector,
    DateSelector,
    NumberSelector,
    NumberSelectorConfig,
    NumberSelectorMode,
    SelectOptionDict,
    SelectSelector,
    SelectSelectorConfig,
    SelectSelectorMode,
    TextSelector,
    TextSelectorConfig,
    TimeSelector,
)
from homeassistant.util import dt as dt_util

from . import (
    async_add_medication, async_remove_medication, async_update_medication,
)
from .const import (
    ATTR_MEDICATION_ID, CONF_CURRENT_SUPPLY, CONF_DOSAGE, CONF_DURATION,
    CONF_FREQUENCY, CONF_NAME, CONF_NOTES, CONF_NOTIFY_SERVICE,
    CONF_REFILL_AT, CONF_REFILL_CHECK_TIME, CONF_REFILL_REMINDER,
    CONF_REMINDER_ENABLED, CONF_START_DATE, CONF_TIMES, CONF_TOTAL_SUPPLY,
    DEFAULT_REFILL_CHECK_TIME, DOMAIN, DURATION_OPTIONS, FREQUENCY_TIMES,
)
from .exceptions import (
    NotFoundError, PersistenceError, SchedulingError, ValidationError,
)
from .models import Medication

_LOGGER = logging.getLogger(__name__)

FREQUENCY_OPTIONS = [
    SelectOptionDict(value="once_daily", label="Once daily"),
    SelectOptionDict(value="twice_daily", label="Twice daily"),
    SelectOptionDict(value="three_times_daily", label="Three times daily"),
    SelectOptionDict(value="four_times_daily", label="Four times daily"),
    SelectOptionDict(value="as_needed", label="As needed"),
]

DURATION_SELECT_OPTIONS = [
    SelectOptionDict(value="7", label="7 days"),
    SelectOptionDict(value="14", label="14 days"),
    SelectOptionDict(value="30", label="30 days"),
    SelectOptionDict(value="90", label="90 days"),
    SelectOptionDict(value="ongoing", label="Ongoing"),
]

SUPPLY_SELECTOR = NumberSelector(
    NumberSelectorConfig(min=0, max=10000, step=1, mode=NumberSelectorMode.BOX)
)


def _duration_key(duration: int) -> str:
    for key, value in DURATION_OPTIONS.items():
        if value == duration:
            return key
    return str(duration)


def _frequency_key(times: list[str]) -> str:
    for key, preset in FREQUENCY_TIMES.items():
        if preset == times:
            return key
    return "once_daily"


def _normalize_time(value: str) -> str:
    """TimeSelector yields HH:MM:SS; medications store HH:MM."""
    return value[:5]


def get_medication_schema(defaults: Medication | None = None):
    """Build the schema for a single medication."""
    if defaults is None:
        defaults = Medication(name="", dosage="", times=list(FREQUENCY_TIMES["once_daily"]))

    schema = {
        vol.Required(CONF_NAME, default=defaults.name): str,
        vol.Required(CONF_DOSAGE, default=defaults.dosage): str,
        vol.Required(CONF_FREQUENCY, default=_frequency_key(defaults.times)): SelectSelector(
            SelectSelectorConfig(options=FREQUENCY_OPTIONS, mode=SelectSelectorMode.DROPDOWN)
        ),
        # Overrides the preset slots of the chosen frequency
        vol.Optional(CONF_TIMES, default=defaults.times): TextSelector(
            TextSelectorConfig(multiple=True)
        ),
        vol.Required(CONF_START_DATE, default=defaults.start_date.isoformat()): DateSelector(),
        vol.Required(CONF_DURATION, default=_duration_key(defaults.duration)): SelectSelector(
            SelectSelectorConfig(options=DURATION_SELECT_OPTIONS, mode=SelectSelectorMode.DROPDOWN)
        ),
        vol.Required(CONF_REMINDER_ENABLED, default=defaults.reminder_enabled): BooleanSelector(),
        vol.Required(CONF_CURRENT_SUPPLY, default=defaults.current_supply): SUPPLY_SELECTOR,
        vol.Required(CONF_TOTAL_SUPPLY, default=defaults.total_supply): SUPPLY_SELECTOR,
        vol.Required(CONF_REFILL_AT, default=defaults.refill_at): NumberSelector(
            NumberSelectorConfig(min=0, max=100, step=1, mode=NumberSelectorMode.SLIDER)
        ),
        vol.Required(CONF_REFILL_REMINDER, default=defaults.refill_reminder): BooleanSelector(),
        vol.Optional(CONF_NOTES, default=defaults.notes): TextSelector(
            TextSelectorConfig(multiline=True)
        ),
    }
    return vol.Schema(schema)


def medication_from_input(user_input: dict[str, Any], base: Medication | None = None) -> Medication:
    """Turn submitted form values into a Medication."""
    frequency = user_input[CONF_FREQUENCY]
    default_frequency = _frequency_key(base.times) if base else "once_daily"
    times = [_normalize_time(t) for t in user_input.get(CONF_TIMES) or [] if t]
    # A newly picked frequency replaces the slots with its presets
    if frequency != default_frequency or frequency == "as_needed" or not times:
        times = list(FREQUENCY_TIMES[frequency])

    duration = user_input[CONF_DURATION]
    fields = {
        CONF_NAME: user_input[CONF_NAME],
        CONF_DOSAGE: user_input[CONF_DOSAGE],
        CONF_TIMES: times,
        CONF_START_DATE: dt_util.parse_date(user_input[CONF_START_DATE]),
        CONF_DURATION: (
            DURATION_OPTIONS[duration] if duration in DURATION_OPTIONS else int(duration)
        ),
        CONF_REMINDER_ENABLED: user_input[CONF_REMINDER_ENABLED],
        CONF_CURRENT_SUPPLY: int(user_input[CONF_CURRENT_SUPPLY]),
        CONF_TOTAL_SUPPLY: int(user_input[CONF_TOTAL_SUPPLY]),
        CONF_REFILL_AT: int(user_input[CONF_REFILL_AT]),
        CONF_REFILL_REMINDER: user_input[CONF_REFILL_REMINDER],
        CONF_NOTES: user_input.get(CONF_NOTES, ""),
    }
    if base is None:
        return Medication(**fields)
    return replace(base, **fields)


class MedicationTrackerConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Medication Tracker."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        return MedicationTrackerOptionsFlowHandler(config_entry)

    async def async_step_user(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Step 1: Notification settings. One tracker per installation."""
        if self._async_current_entries():
            return self.async_abort(reason="single_instance_allowed")

        if user_input is not None:
            return self.async_create_entry(
                title="Medication Tracker",
                data={
                    CONF_NOTIFY_SERVICE: user_input.get(CONF_NOTIFY_SERVICE),
                    CONF_REFILL_CHECK_TIME: _normalize_time(
                        user_input.get(CONF_REFILL_CHECK_TIME, DEFAULT_REFILL_CHECK_TIME)
                    ),
                },
            )

        return self.async_show_form(step_id="user", data_schema=_settings_schema())


def _settings_schema(notify_service: str | None = None, check_time: str | None = None):
    schema = {
        vol.Optional(
            CONF_NOTIFY_SERVICE,
            description={"suggested_value": notify_service},
        ): str,
        vol.Required(
            CONF_REFILL_CHECK_TIME, default=check_time or DEFAULT_REFILL_CHECK_TIME
        ): TimeSelector(),
    }
    return vol.Schema(schema)


class MedicationTrackerOptionsFlowHandler(config_entries.OptionsFlow):
    """Handle options flow."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        # Settings as they were when the flow opened
        self._settings = {**config_entry.data, **config_entry.options}
        self._editing_id: str | None = None

    async def async_step_init(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Menu: Add/Edit/Remove/Settings."""
        return self.async_show_menu(
            step_id="init",
            menu_options=["add_medication", "edit_medication", "remove_medication", "settings"],
        )

    def _tracker(self):
        return self.hass.data.get(DOMAIN)

    def _medication_options(self) -> list[SelectOptionDict]:
        return [
            SelectOptionDict(value=medication.id, label=medication.name)
            for medication in self._tracker().registry.async_list()
        ]

    # --- SETTINGS ---
    async def async_step_settings(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Update notification settings."""
        if user_input is not None:
            return self.async_create_entry(
                title="",
                data={
                    CONF_NOTIFY_SERVICE: user_input.get(CONF_NOTIFY_SERVICE),
                    CONF_REFILL_CHECK_TIME: _normalize_time(user_input[CONF_REFILL_CHECK_TIME]),
                },
            )

        return self.async_show_form(
            step_id="settings",
            data_schema=_settings_schema(
                self._settings.get(CONF_NOTIFY_SERVICE),
                self._settings.get(CONF_REFILL_CHECK_TIME),
            ),
        )

    # --- ADD ---
    async def async_step_add_medication(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Form to add a new medication."""
        if self._tracker() is None:
            return self.async_abort(reason="not_loaded")

        errors: dict[str, str] = {}
        if user_input is not None:
            errors = await self._async_save(
                lambda data: async_add_medication(
                    self.hass, data, medication_from_input(user_input)
                )
            )
            if not errors:
                return self._done()

        return self.async_show_form(
            step_id="add_medication",
            data_schema=get_medication_schema(),
            errors=errors,
        )

    # --- EDIT ---
    async def async_step_edit_medication(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        if self._tracker() is None:
            return self.async_abort(reason="not_loaded")
        if not self._tracker().registry.async_list():
            return self.async_abort(reason="no_medications")

        if user_input is not None:
            self._editing_id = user_input[ATTR_MEDICATION_ID]
            return await self.async_step_edit_medication_details()

        schema = vol.Schema({
            vol.Required(ATTR_MEDICATION_ID): SelectSelector(
                SelectSelectorConfig(options=self._medication_options())
            )
        })
        return self.async_show_form(step_id="edit_medication", data_schema=schema)

    async def async_step_edit_medication_details(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        tracker = self._tracker()
        try:
            existing = tracker.registry.async_get(self._editing_id)
        except NotFoundError:
            return self.async_abort(reason="no_medications")

        errors: dict[str, str] = {}
        if user_input is not None:
            errors = await self._async_save(
                lambda data: async_update_medication(
                    self.hass, data, medication_from_input(user_input, existing)
                )
            )
            if not errors:
                return self._done()

        return self.async_show_form(
            step_id="edit_medication_details",
            data_schema=get_medication_schema(defaults=existing),
            errors=errors,
        )

    # --- REMOVE ---
    async def async_step_remove_medication(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        if self._tracker() is None:
            return self.async_abort(reason="not_loaded")
        if not self._tracker().registry.async_list():
            return self.async_abort(reason="no_medications")

        if user_input is not None:
            try:
                await async_remove_medication(
                    self.hass, self._tracker(), user_input[ATTR_MEDICATION_ID]
                )
            except NotFoundError:
                return self.async_abort(reason="no_medications")
            return self._done()

        schema = vol.Schema({
            vol.Required(ATTR_MEDICATION_ID): SelectSelector(
                SelectSelectorConfig(options=self._medication_options())
            )
        })
        return self.async_show_form(step_id="remove_medication", data_schema=schema)

    async def _async_save(self, action) -> dict[str, str]:
        """Run a registry mutation and map failures to form errors."""
        try:
            await action(self._tracker())
        except ValidationError as err:
            _LOGGER.debug("Rejected medication: %s", err)
            return {"base": "invalid_medication"}
        except PersistenceError as err:
            _LOGGER.error("Failed to save medication: %s", err)
            return {"base": "storage_error"}
        except SchedulingError as err:
            # The medication is saved; reminders are best effort
            _LOGGER.warning("Medication saved but reminders failed: %s", err)
        return {}

    def _done(self) -> FlowResult:
        """Finish without touching the stored settings."""
        return self.async_create_entry(title="", data=dict(self.config_entry.options))
