"""Errors raised by the Medication Tracker integration."""
from __future__ import annotations

from homeassistant.exceptions import HomeAssistantError


class MedicationTrackerError(HomeAssistantError):
    """Base error for the integration."""


class ValidationError(MedicationTrackerError):
    """A medication or PIN was rejected before being persisted."""


class NotFoundError(MedicationTrackerError):
    """No medication exists with the requested id."""

    def __init__(self, medication_id: str) -> None:
        super().__init__(f"Medication {medication_id} not found")
        self.medication_id = medication_id


class PersistenceError(MedicationTrackerError):
    """Reading or writing local storage failed."""


class SchedulingError(MedicationTrackerError):
    """A reminder could not be scheduled."""
