"""Data model for medications and dose events."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any

from homeassistant.util import dt as dt_util

from .const import (
    ATTR_MEDICATION_ID, ATTR_TAKEN, ATTR_TIMESTAMP,
    CONF_CURRENT_SUPPLY, CONF_DOSAGE, CONF_DURATION, CONF_ID,
    CONF_LAST_REFILL_DATE, CONF_NAME, CONF_NOTES, CONF_REFILL_AT,
    CONF_REFILL_REMINDER, CONF_REMINDER_ENABLED, CONF_START_DATE,
    CONF_TIMES, CONF_TOTAL_SUPPLY, DURATION_ONGOING,
)


def parse_start_date(value: Any) -> date:
    """Accept a date, a datetime or an ISO date/datetime string."""
    if isinstance(value, datetime):
        return dt_util.as_local(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        parsed = dt_util.parse_date(value)
        if parsed is not None:
            return parsed
        parsed_dt = dt_util.parse_datetime(value)
        if parsed_dt is not None:
            return dt_util.as_local(parsed_dt).date()
    raise ValueError(f"Invalid start date: {value!r}")


def parse_timestamp(value: Any) -> datetime:
    """Return an aware datetime; naive values are taken as local time."""
    if isinstance(value, str):
        parsed = dt_util.parse_datetime(value)
        if parsed is None:
            raise ValueError(f"Invalid timestamp: {value!r}")
        value = parsed
    if not isinstance(value, datetime):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_util.DEFAULT_TIME_ZONE)
    return value


@dataclass
class Medication:
    """A tracked medication and its dosing schedule."""

    name: str
    dosage: str
    times: list[str] = field(default_factory=list)
    start_date: date = field(default_factory=lambda: dt_util.now().date())
    duration: int = DURATION_ONGOING
    reminder_enabled: bool = True
    current_supply: int = 0
    total_supply: int = 0
    refill_at: int = 0
    refill_reminder: bool = False
    last_refill_date: datetime | None = None
    notes: str = ""
    id: str | None = None

    @property
    def is_ongoing(self) -> bool:
        return self.duration == DURATION_ONGOING

    @property
    def is_as_needed(self) -> bool:
        return not self.times

    @property
    def end_date(self) -> date | None:
        """First day the schedule is no longer active."""
        if self.is_ongoing:
            return None
        return self.start_date + timedelta(days=self.duration)

    def copy(self) -> Medication:
        return replace(self, times=list(self.times))

    def as_dict(self) -> dict[str, Any]:
        return {
            CONF_ID: self.id,
            CONF_NAME: self.name,
            CONF_DOSAGE: self.dosage,
            CONF_TIMES: list(self.times),
            CONF_START_DATE: self.start_date.isoformat(),
            CONF_DURATION: self.duration,
            CONF_REMINDER_ENABLED: self.reminder_enabled,
            CONF_CURRENT_SUPPLY: self.current_supply,
            CONF_TOTAL_SUPPLY: self.total_supply,
            CONF_REFILL_AT: self.refill_at,
            CONF_REFILL_REMINDER: self.refill_reminder,
            CONF_LAST_REFILL_DATE: (
                self.last_refill_date.isoformat() if self.last_refill_date else None
            ),
            CONF_NOTES: self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Medication:
        last_refill = data.get(CONF_LAST_REFILL_DATE)
        return cls(
            id=data.get(CONF_ID),
            name=data[CONF_NAME],
            dosage=data[CONF_DOSAGE],
            times=list(data.get(CONF_TIMES, [])),
            start_date=parse_start_date(data[CONF_START_DATE]),
            duration=data.get(CONF_DURATION, DURATION_ONGOING),
            reminder_enabled=data.get(CONF_REMINDER_ENABLED, True),
            current_supply=data.get(CONF_CURRENT_SUPPLY, 0),
            total_supply=data.get(CONF_TOTAL_SUPPLY, 0),
            refill_at=data.get(CONF_REFILL_AT, 0),
            refill_reminder=data.get(CONF_REFILL_REMINDER, False),
            last_refill_date=parse_timestamp(last_refill) if last_refill else None,
            notes=data.get(CONF_NOTES) or "",
        )


@dataclass(frozen=True)
class DoseEvent:
    """An immutable record that a dose was taken or missed."""

    id: str
    medication_id: str
    timestamp: datetime
    taken: bool

    @property
    def local_date(self) -> date:
        return dt_util.as_local(self.timestamp).date()

    def as_dict(self) -> dict[str, Any]:
        return {
            CONF_ID: self.id,
            ATTR_MEDICATION_ID: self.medication_id,
            ATTR_TIMESTAMP: self.timestamp.isoformat(),
            ATTR_TAKEN: self.taken,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DoseEvent:
        return cls(
            id=data[CONF_ID],
            medication_id=data[ATTR_MEDICATION_ID],
            timestamp=parse_timestamp(data[ATTR_TIMESTAMP]),
            taken=bool(data[ATTR_TAKEN]),
        )
