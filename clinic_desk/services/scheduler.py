from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

import pytz

from clinic_desk.models.records import APPOINTMENT_FILTERS, Appointment, STATUS_PENDING


DEFAULT_HOURS_AHEAD = 48


def sort_ascending(appointments: Iterable[Appointment]) -> List[Appointment]:
    """Stable sort by timestamp; equal times keep their relative order."""
    return sorted(appointments, key=lambda a: a.timestamp)


def local_day(moment: datetime, tz=pytz.UTC) -> date:
    """Calendar day of `moment` in the clinic timezone, time zeroed."""
    if moment.tzinfo is None:
        moment = tz.localize(moment)
    return moment.astimezone(tz).date()


def filter_appointments(
    appointments: Iterable[Appointment],
    mode: str,
    now: datetime,
    tz=pytz.UTC,
) -> List[Appointment]:
    """
    Calendar-day filters used by the appointment list.

    - all: everything
    - today: same local day as `now`
    - upcoming: today or later
    - overdue: before today and still pending
    Unknown modes behave like `all`.
    """
    mode = mode if mode in APPOINTMENT_FILTERS else "all"
    items = list(appointments)
    if mode == "all":
        return items

    today = local_day(now, tz)
    if mode == "today":
        return [a for a in items if local_day(a.date, tz) == today]
    if mode == "upcoming":
        return [a for a in items if local_day(a.date, tz) >= today]
    return [
        a for a in items
        if local_day(a.date, tz) < today and a.status == STATUS_PENDING
    ]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class ReminderSlot:
    appointment: Appointment
    hours_until: int

    @property
    def unit(self) -> str:
        return "h" if self.hours_until < 24 else "d"

    @property
    def value(self) -> int:
        if self.hours_until < 24:
            return self.hours_until
        return _round_half_up(self.hours_until / 24)

    @property
    def label(self) -> str:
        return f"{self.value}{self.unit}"


def hours_until(moment: datetime, now: datetime) -> float:
    return (moment - now) / timedelta(hours=1)


def reminder_window(
    appointments: Iterable[Appointment],
    now: datetime,
    hours_ahead: Optional[float] = DEFAULT_HOURS_AHEAD,
    tz=pytz.UTC,
) -> List[ReminderSlot]:
    """
    Pending appointments with 0 < (date - now) <= hours_ahead, earliest first.
    A naive `now` is read in `tz`.
    """
    if hours_ahead is None:
        hours_ahead = DEFAULT_HOURS_AHEAD
    if now.tzinfo is None:
        now = tz.localize(now)

    selected = []
    for appt in appointments:
        if appt.status != STATUS_PENDING:
            continue
        diff = hours_until(appt.date, now)
        if 0 < diff <= hours_ahead:
            selected.append(appt)

    return [
        ReminderSlot(appointment=a, hours_until=_round_half_up(hours_until(a.date, now)))
        for a in sort_ascending(selected)
    ]
