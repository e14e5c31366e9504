"""Doctor weekly availability template and its write-time validation."""

import re
from datetime import time
from typing import NamedTuple

from pydantic import BaseModel, field_validator, model_validator

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
MIN_SLOT_DURATION_MINUTES = 10
MAX_SLOT_DURATION_MINUTES = 240
TIME_OF_DAY_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


class AvailabilitySnapshot(NamedTuple):
    """Availability as stored, without any validation applied."""

    days: object
    start_time: object
    end_time: object
    slot_duration: object

    @classmethod
    def from_profile(cls, profile) -> 'AvailabilitySnapshot':
        return cls(
            days=profile.availability_days,
            start_time=profile.availability_start_time,
            end_time=profile.availability_end_time,
            slot_duration=profile.slot_duration,
        )

    def as_dict(self) -> dict:
        return {
            'days': self.days,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'slotDuration': self.slot_duration,
        }


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:mm`` (or ``H:mm``) string; raises ``ValueError`` otherwise."""
    if not isinstance(value, str):
        raise ValueError('Time must be a string in HH:mm format.')
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise ValueError('Invalid time format. Use HH:mm.')
    return time(int(match.group(1)), int(match.group(2)))


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


class DoctorAvailability(BaseModel):
    days: list[str]
    start_time: str
    end_time: str
    slot_duration: int

    @field_validator('days')
    @classmethod
    def validate_days(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for day in value:
            day_name = day.strip().lower()
            if day_name not in WEEKDAYS:
                raise ValueError(f'Invalid weekday: {day}.')
            if day_name not in normalized:
                normalized.append(day_name)
        return sorted(normalized, key=WEEKDAYS.index)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        return parse_time_of_day(value).strftime('%H:%M')

    @field_validator('slot_duration')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value < MIN_SLOT_DURATION_MINUTES or value > MAX_SLOT_DURATION_MINUTES:
            raise ValueError(
                f'Slot duration must be between {MIN_SLOT_DURATION_MINUTES} and '
                f'{MAX_SLOT_DURATION_MINUTES} minutes.'
            )
        return value

    @model_validator(mode='after')
    def validate_window(self) -> 'DoctorAvailability':
        start = minutes_since_midnight(parse_time_of_day(self.start_time))
        end = minutes_since_midnight(parse_time_of_day(self.end_time))
        if end <= start:
            raise ValueError('End time must be after start time.')
        if self.slot_duration > end - start:
            raise ValueError('Slot duration cannot exceed the availability window.')
        return self


def apply_availability(profile, availability: DoctorAvailability) -> None:
    profile.availability_days = list(availability.days)
    profile.availability_start_time = availability.start_time
    profile.availability_end_time = availability.end_time
    profile.slot_duration = availability.slot_duration
