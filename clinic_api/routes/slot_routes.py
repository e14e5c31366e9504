import logging
import re
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.core import config
from clinic_api.core.errors import InvalidRequestError, NotFoundError
from clinic_api.database import get_db, parse_record_id
from clinic_api.services.appointments import get_active_doctor_profile, list_blocking_appointments
from clinic_api.services.availability import AvailabilitySnapshot
from clinic_api.services.slots import (
    REASON_MALFORMED,
    filter_available,
    format_display_time,
    generate_slots,
    resolve_timezone,
)

router = APIRouter(tags=['slots'])
logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$', re.ASCII)
SLOTS_UNAVAILABLE_MESSAGE = 'Slots are temporarily unavailable. Please try again later.'


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    duration: int
    display_time: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DoctorScheduleResponse(BaseModel):
    id: int
    availability: dict


class SlotListData(BaseModel):
    slots: list[SlotResponse]
    doctor: DoctorScheduleResponse | None = None
    message: str | None = None


class SlotListResponse(BaseModel):
    success: bool = True
    data: SlotListData


def parse_slot_query(doctor_id: str | None, date_value: str | None) -> tuple[int, date]:
    if not doctor_id or not date_value:
        raise InvalidRequestError('doctorId and date are required')
    doctor_user_id = parse_record_id(doctor_id)
    if doctor_user_id is None:
        raise InvalidRequestError('Invalid doctor ID')
    if not DATE_PATTERN.match(date_value.strip()):
        raise InvalidRequestError('Invalid date format. Use YYYY-MM-DD')
    try:
        day = date.fromisoformat(date_value.strip())
    except ValueError as exc:
        raise InvalidRequestError('Invalid date format. Use YYYY-MM-DD') from exc
    return doctor_user_id, day


def _degraded(message: str, doctor: DoctorScheduleResponse | None = None) -> SlotListResponse:
    return SlotListResponse(data=SlotListData(slots=[], doctor=doctor, message=message))


@router.get('', response_model=SlotListResponse)
def list_available_slots(
    doctor_id: str | None = Query(default=None, alias='doctorId'),
    date_value: str | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    doctor_user_id, day = parse_slot_query(doctor_id, date_value)

    try:
        profile = get_active_doctor_profile(db, doctor_user_id)
    except SQLAlchemyError:
        logger.exception('Could not load doctor %s for slot listing', doctor_user_id)
        return _degraded(SLOTS_UNAVAILABLE_MESSAGE)

    if profile is None:
        raise NotFoundError('Doctor not found')

    availability = AvailabilitySnapshot.from_profile(profile)
    doctor = DoctorScheduleResponse(id=profile.user_id, availability=availability.as_dict())
    clinic_tz = resolve_timezone(config.CLINIC_TIMEZONE)

    schedule = generate_slots(availability, day, clinic_tz)
    if schedule.reason == REASON_MALFORMED:
        logger.warning('Doctor %s has a malformed schedule: %s', doctor_user_id, schedule.message)
    if not schedule.slots:
        return _degraded(schedule.message, doctor)

    try:
        appointments = list_blocking_appointments(
            db,
            profile.user_id,
            schedule.slots[0].start,
            schedule.slots[-1].end,
        )
    except SQLAlchemyError:
        logger.exception('Could not load appointments for doctor %s on %s', doctor_user_id, day)
        return _degraded(SLOTS_UNAVAILABLE_MESSAGE, doctor)

    available = filter_available(schedule.slots, appointments)
    slots = [
        SlotResponse(
            start=slot.start,
            end=slot.end,
            duration=slot.duration,
            display_time=format_display_time(slot.start, clinic_tz),
        )
        for slot in available
    ]
    return SlotListResponse(data=SlotListData(slots=slots, doctor=doctor))
