"""Slot generation from a doctor's weekly template and conflict filtering.

``generate_slots`` and ``filter_available`` are pure functions of their
arguments; all instants they produce or compare are UTC-aware.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinic_api.models.appointment import AppointmentStatus, status_value
from clinic_api.services.availability import WEEKDAYS, minutes_since_midnight, parse_time_of_day

logger = logging.getLogger(__name__)

DEFAULT_APPOINTMENT_DURATION_MINUTES = 30
BLOCKING_STATUSES = frozenset({
    AppointmentStatus.PENDING_PAYMENT.value,
    AppointmentStatus.BOOKED.value,
    AppointmentStatus.CONFIRMED.value,
})

REASON_OPEN = 'open'
REASON_CLOSED = 'closed'
REASON_NO_FIT = 'no_fit'
REASON_MALFORMED = 'malformed'


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    duration: int


@dataclass(frozen=True)
class SlotSchedule:
    slots: list[Slot] = field(default_factory=list)
    reason: str = REASON_OPEN
    message: str | None = None


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == 'UTC':
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning('Unknown clinic time zone %r, falling back to UTC', name)
        return timezone.utc


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def _malformed(message: str) -> SlotSchedule:
    return SlotSchedule(slots=[], reason=REASON_MALFORMED, message=message)


def generate_slots(availability, day: date, tz: tzinfo = timezone.utc) -> SlotSchedule:
    """Lay fixed-length slots over ``day`` according to ``availability``.

    ``availability`` needs ``days``, ``start_time``, ``end_time`` and
    ``slot_duration`` attributes. Bad stored data yields a ``malformed``
    schedule instead of an exception.
    """
    days = getattr(availability, 'days', None)
    if not isinstance(days, (list, tuple, set, frozenset)):
        return _malformed('Doctor schedule is malformed: working days are missing.')

    working_days = {str(name).strip().lower() for name in days}
    if weekday_name(day) not in working_days:
        return SlotSchedule(slots=[], reason=REASON_CLOSED, message='Doctor not available on this day')

    try:
        start_of_day = parse_time_of_day(getattr(availability, 'start_time', None))
        end_of_day = parse_time_of_day(getattr(availability, 'end_time', None))
    except ValueError:
        return _malformed('Doctor schedule is malformed: invalid start or end time.')

    slot_duration = getattr(availability, 'slot_duration', None)
    if isinstance(slot_duration, bool) or not isinstance(slot_duration, int) or slot_duration <= 0:
        return _malformed('Doctor schedule is malformed: invalid slot duration.')

    if minutes_since_midnight(end_of_day) <= minutes_since_midnight(start_of_day):
        return _malformed('Doctor schedule is malformed: end time is not after start time.')

    window_start = datetime.combine(day, start_of_day, tzinfo=tz).astimezone(timezone.utc)
    window_end = datetime.combine(day, end_of_day, tzinfo=tz).astimezone(timezone.utc)
    step = timedelta(minutes=slot_duration)

    slots: list[Slot] = []
    cursor = window_start
    while cursor + step <= window_end:
        slots.append(Slot(start=cursor, end=cursor + step, duration=slot_duration))
        cursor += step

    if not slots:
        return SlotSchedule(slots=[], reason=REASON_NO_FIT, message='Slot duration is longer than the working window')

    return SlotSchedule(slots=slots)


def appointment_window(scheduled_at: datetime, duration_minutes: int | None) -> tuple[datetime, datetime]:
    if not duration_minutes or duration_minutes <= 0:
        duration_minutes = DEFAULT_APPOINTMENT_DURATION_MINUTES
    return scheduled_at, scheduled_at + timedelta(minutes=duration_minutes)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def blocking_windows(appointments: Iterable) -> list[tuple[datetime, datetime]]:
    return [
        appointment_window(appointment.scheduled_at, appointment.duration_minutes)
        for appointment in appointments
        if status_value(appointment.status) in BLOCKING_STATUSES and appointment.scheduled_at is not None
    ]


def filter_available(candidates: Sequence[Slot], appointments: Iterable) -> list[Slot]:
    """Drop every candidate that overlaps a non-terminal appointment.

    Appointments need ``scheduled_at``, ``duration_minutes`` and ``status``.
    """
    windows = blocking_windows(appointments)
    return [
        slot
        for slot in candidates
        if not any(intervals_overlap(slot.start, slot.end, start, end) for start, end in windows)
    ]


def format_display_time(instant: datetime, tz: tzinfo = timezone.utc) -> str:
    return instant.astimezone(tz).strftime('%I:%M %p')
