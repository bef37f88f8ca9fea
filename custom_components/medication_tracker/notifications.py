"""Local reminder scheduling on top of Home Assistant's timer registry."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Any
import uuid

from dateutil import rrule

from homeassistant.components import persistent_notification
from homeassistant.core import CALLBACK_TYPE, HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.event import async_track_point_in_utc_time
from homeassistant.util import dt as dt_util

from .const import EVENT_REMINDER
from .exceptions import SchedulingError

_LOGGER = logging.getLogger(__name__)

NOTIFY_DOMAIN = "notify"


@dataclass(frozen=True)
class DailyTrigger:
    """Every day at a local time of day, from start until end (exclusive)."""

    time_of_day: time
    start: date
    end: date | None = None

    def next_fire(self, after: datetime, inclusive: bool) -> datetime | None:
        local_after = dt_util.as_local(after)
        # No need to walk the rule from a start date far in the past
        first_day = max(self.start, local_after.date() - timedelta(days=1))
        tz = dt_util.DEFAULT_TIME_ZONE
        until = None
        if self.end is not None:
            if first_day >= self.end:
                return None
            until = datetime.combine(
                self.end - timedelta(days=1), self.time_of_day, tzinfo=tz
            )
        rule = rrule.rrule(
            rrule.DAILY,
            dtstart=datetime.combine(first_day, self.time_of_day, tzinfo=tz),
            until=until,
        )
        occurrence = rule.after(local_after, inc=inclusive)
        return dt_util.as_utc(occurrence) if occurrence else None


@dataclass(frozen=True)
class OneShotTrigger:
    """Fire once at fire_at, or as soon as possible if it already passed."""

    fire_at: datetime

    def next_fire(self, after: datetime, inclusive: bool) -> datetime | None:
        if not inclusive:
            return None
        return dt_util.as_utc(max(self.fire_at, after))


Trigger = DailyTrigger | OneShotTrigger


class ReminderHandle:
    """Opaque reference to one scheduled reminder."""

    def __init__(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        should_fire: Callable[[], bool] | None = None,
    ) -> None:
        self.handle_id = uuid.uuid4().hex
        self.trigger = trigger
        self.payload = payload
        self.should_fire = should_fire
        self.next_fire: datetime | None = None
        self.cancelled = False
        self._unsub: CALLBACK_TYPE | None = None

    @property
    def active(self) -> bool:
        return not self.cancelled and self._unsub is not None

    @callback
    def arm(self, fire_at: datetime, unsub: CALLBACK_TYPE) -> None:
        self.next_fire = fire_at
        self._unsub = unsub

    @callback
    def disarm(self) -> None:
        self.next_fire = None
        self._unsub = None

    @callback
    def cancel(self) -> None:
        self.cancelled = True
        if self._unsub is not None:
            self._unsub()
        self.disarm()

    def __repr__(self) -> str:
        return f"<ReminderHandle {self.handle_id} next={self.next_fire}>"


class HassReminderBackend:
    """Schedules reminders and delivers them when they come due.

    Delivery fires an event on the bus, creates a persistent notification
    and, when configured, calls a notify service.
    """

    def __init__(self, hass: HomeAssistant, notify_service: str | None = None) -> None:
        self.hass = hass
        self._notify_service = _service_name(notify_service)
        self._handles: set[ReminderHandle] = set()

    @property
    def handles(self) -> list[ReminderHandle]:
        return [handle for handle in self._handles if handle.active]

    async def async_schedule(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        should_fire: Callable[[], bool] | None = None,
    ) -> ReminderHandle:
        if self._notify_service and not self.hass.services.has_service(
            NOTIFY_DOMAIN, self._notify_service
        ):
            raise SchedulingError(
                f"Notify service {NOTIFY_DOMAIN}.{self._notify_service} is not available"
            )
        handle = ReminderHandle(trigger, payload, should_fire)
        self._handles.add(handle)
        self._arm(handle, dt_util.utcnow(), inclusive=True)
        return handle

    async def async_cancel(self, handle: ReminderHandle) -> None:
        handle.cancel()
        self._handles.discard(handle)

    async def async_cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    @callback
    def _arm(self, handle: ReminderHandle, after: datetime, inclusive: bool) -> None:
        fire_at = handle.trigger.next_fire(after, inclusive)
        if fire_at is None:
            handle.disarm()
            self._handles.discard(handle)
            return

        async def _fire(now: datetime) -> None:
            await self._async_fire(handle, fire_at)

        handle.arm(fire_at, async_track_point_in_utc_time(self.hass, _fire, fire_at))

    async def _async_fire(self, handle: ReminderHandle, fire_at: datetime) -> None:
        handle.disarm()
        if handle.cancelled:
            return
        try:
            await self._async_deliver(handle)
        finally:
            if not handle.cancelled:
                self._arm(handle, fire_at, inclusive=False)

    async def _async_deliver(self, handle: ReminderHandle) -> None:
        if handle.should_fire is not None and not handle.should_fire():
            _LOGGER.debug("Skipping reminder %s, condition not met", handle.handle_id)
            return

        payload = handle.payload
        self.hass.bus.async_fire(EVENT_REMINDER, payload)
        persistent_notification.async_create(
            self.hass,
            payload["message"],
            title=payload["title"],
            notification_id=payload.get("notification_id"),
        )
        if not self._notify_service:
            return
        try:
            await self.hass.services.async_call(
                NOTIFY_DOMAIN,
                self._notify_service,
                {"title": payload["title"], "message": payload["message"]},
                blocking=True,
            )
        except HomeAssistantError as err:
            _LOGGER.error(
                "Failed to deliver reminder via %s.%s: %s",
                NOTIFY_DOMAIN, self._notify_service, err,
            )


def _service_name(notify_service: str | None) -> str | None:
    """Accept both 'notify.mobile_app_x' and 'mobile_app_x'."""
    if not notify_service:
        return None
    prefix = f"{NOTIFY_DOMAIN}."
    if notify_service.startswith(prefix):
        return notify_service[len(prefix):]
    return notify_service
