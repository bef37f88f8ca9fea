"""Local persistence for medications, dose events and the device PIN."""
from __future__ import annotations

import hmac
import logging
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.storage import Store

from .const import (
    PIN_MAX_LENGTH, PIN_MIN_LENGTH, STORAGE_KEY_DOSES,
    STORAGE_KEY_MEDICATIONS, STORAGE_KEY_PIN, STORAGE_VERSION,
)
from .exceptions import PersistenceError, ValidationError

_LOGGER = logging.getLogger(__name__)

KEY_MEDICATIONS = "medications"
KEY_RETIRED_IDS = "retired_ids"
KEY_DOSES = "doses"
KEY_PIN = "pin"


class _CollectionStore(Store[dict[str, Any]]):
    """Store whose failed writes reach the caller instead of only the log."""

    async def _async_write_data(self, path: str, data: dict) -> None:
        try:
            await super()._async_write_data(path, data)
        except (HomeAssistantError, OSError) as err:
            raise PersistenceError(f"Failed to write {self.key}: {err}") from err


class MedicationStore:
    """Key-value storage of the three collections. No business logic."""

    def __init__(self, hass: HomeAssistant) -> None:
        self._medications: _CollectionStore = _CollectionStore(
            hass, STORAGE_VERSION, STORAGE_KEY_MEDICATIONS
        )
        self._doses: _CollectionStore = _CollectionStore(
            hass, STORAGE_VERSION, STORAGE_KEY_DOSES
        )
        self._pin: _CollectionStore = _CollectionStore(
            hass, STORAGE_VERSION, STORAGE_KEY_PIN
        )

    async def _async_load(self, store: Store, default: dict[str, Any]) -> dict[str, Any]:
        try:
            data = await store.async_load()
        except (HomeAssistantError, OSError, ValueError) as err:
            raise PersistenceError(f"Failed to read {store.key}: {err}") from err
        if data is None:
            return default
        return data

    async def _async_save(self, store: Store, data: dict[str, Any]) -> None:
        try:
            await store.async_save(data)
        except PersistenceError:
            raise
        except (HomeAssistantError, OSError, ValueError, TypeError) as err:
            raise PersistenceError(f"Failed to write {store.key}: {err}") from err
        _LOGGER.debug("Saved %s", store.key)

    async def async_load_medications(self) -> tuple[list[dict[str, Any]], list[str]]:
        """Return stored medications and every id ever retired."""
        data = await self._async_load(
            self._medications, {KEY_MEDICATIONS: [], KEY_RETIRED_IDS: []}
        )
        return data.get(KEY_MEDICATIONS, []), data.get(KEY_RETIRED_IDS, [])

    async def async_save_medications(
        self, medications: list[dict[str, Any]], retired_ids: list[str]
    ) -> None:
        await self._async_save(
            self._medications,
            {KEY_MEDICATIONS: medications, KEY_RETIRED_IDS: retired_ids},
        )

    async def async_load_doses(self) -> list[dict[str, Any]]:
        data = await self._async_load(self._doses, {KEY_DOSES: []})
        return data.get(KEY_DOSES, [])

    async def async_save_doses(self, doses: list[dict[str, Any]]) -> None:
        await self._async_save(self._doses, {KEY_DOSES: doses})

    async def async_get_pin(self) -> str | None:
        data = await self._async_load(self._pin, {KEY_PIN: None})
        return data.get(KEY_PIN)

    async def async_set_pin(self, pin: str) -> None:
        """Store the app-lock PIN (4 to 6 digits)."""
        if not pin.isdigit() or not PIN_MIN_LENGTH <= len(pin) <= PIN_MAX_LENGTH:
            raise ValidationError(
                f"PIN must be {PIN_MIN_LENGTH}-{PIN_MAX_LENGTH} digits"
            )
        await self._async_save(self._pin, {KEY_PIN: pin})

    async def async_clear_pin(self) -> None:
        await self._async_save(self._pin, {KEY_PIN: None})

    async def async_check_pin(self, candidate: str) -> bool:
        stored = await self.async_get_pin()
        if stored is None:
            return False
        return hmac.compare_digest(stored.encode(), candidate.encode())
