"""Global fixtures for Medication Tracker integration."""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

import pytest

from custom_components.medication_tracker.const import (
    CONF_NOTIFY_SERVICE, CONF_REFILL_CHECK_TIME, DOMAIN,
)
from custom_components.medication_tracker.exceptions import SchedulingError
from custom_components.medication_tracker.models import Medication

from pytest_homeassistant_custom_component.common import MockConfigEntry

pytest_plugins = "pytest_homeassistant_custom_component"


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations):
    """Enable custom integrations defined in the test dir."""
    yield


@dataclass(eq=False)
class FakeHandle:
    trigger: Any
    payload: dict
    should_fire: Callable[[], bool] | None = None


@dataclass
class FakeBackend:
    """Records scheduled reminders instead of arming timers."""

    active: list = field(default_factory=list)
    failing_ids: set = field(default_factory=set)
    schedule_calls: int = 0

    async def async_schedule(self, trigger, payload, should_fire=None):
        self.schedule_calls += 1
        if payload["medication_id"] in self.failing_ids:
            raise SchedulingError("Notification permission revoked")
        handle = FakeHandle(trigger, payload, should_fire)
        self.active.append(handle)
        return handle

    async def async_cancel(self, handle):
        if handle in self.active:
            self.active.remove(handle)

    async def async_cancel_all(self):
        self.active.clear()

    def for_medication(self, medication_id):
        return [h for h in self.active if h.payload["medication_id"] == medication_id]


@pytest.fixture
def fake_backend():
    return FakeBackend()


def make_medication(**overrides) -> Medication:
    fields = {
        "name": "Aspirin",
        "dosage": "100mg",
        "times": ["09:00", "21:00"],
        "start_date": date(2024, 1, 1),
        "refill_at": 20,
        "current_supply": 10,
        "total_supply": 100,
    }
    fields.update(overrides)
    return Medication(**fields)


@pytest.fixture
async def init_integration(hass):
    """Set up the integration with a loaded config entry."""
    entry = MockConfigEntry(
        domain=DOMAIN,
        data={CONF_NOTIFY_SERVICE: None, CONF_REFILL_CHECK_TIME: "10:00"},
        entry_id="test_entry_id",
    )
    entry.add_to_hass(hass)
    assert await hass.config_entries.async_setup(entry.entry_id)
    await hass.async_block_till_done()
    return entry
