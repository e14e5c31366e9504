import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.auth.dependencies import require_roles
from clinic_api.core.audit import log_security_event
from clinic_api.core.errors import NotFoundError, StorageUnavailableError
from clinic_api.database import get_db, parse_record_id
from clinic_api.models.catalog import Department
from clinic_api.models.doctor_profile import DoctorProfile
from clinic_api.models.user import User
from clinic_api.services.appointment_status import ROLE_ADMIN
from clinic_api.services.appointments import get_active_doctor_profile
from clinic_api.services.availability import AvailabilitySnapshot, DoctorAvailability, apply_availability

router = APIRouter(tags=['doctors'])
logger = logging.getLogger(__name__)


class UpdateAvailabilityRequest(DoctorAvailability):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DoctorResponse(BaseModel):
    id: int
    name: str
    email: str
    department_id: int
    department_name: str | None = None
    qualifications: str | None = None
    experience_years: int | None = None
    consultation_fee: float | None = None
    availability: dict

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DoctorEnvelope(BaseModel):
    success: bool = True
    data: dict[str, DoctorResponse]


class DoctorListEnvelope(BaseModel):
    success: bool = True
    count: int
    data: list[DoctorResponse]


def to_doctor_response(profile: DoctorProfile, user: User, department: Department | None) -> DoctorResponse:
    return DoctorResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        department_id=profile.department_id,
        department_name=department.name if department else None,
        qualifications=profile.qualifications,
        experience_years=profile.experience_years,
        consultation_fee=profile.consultation_fee,
        availability=AvailabilitySnapshot.from_profile(profile).as_dict(),
    )


@router.get('', response_model=DoctorListEnvelope)
def list_doctors(
    department: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    query = (
        db.query(DoctorProfile, User, Department)
        .join(User, User.id == DoctorProfile.user_id)
        .outerjoin(Department, Department.id == DoctorProfile.department_id)
        .filter(DoctorProfile.is_active.is_(True))
    )
    if department:
        department_id = parse_record_id(department)
        if department_id is not None:
            query = query.filter(DoctorProfile.department_id == department_id)
        else:
            query = query.filter(Department.slug == department.strip().lower())

    doctors = [to_doctor_response(profile, user, dept) for profile, user, dept in query.order_by(User.name).all()]
    return DoctorListEnvelope(count=len(doctors), data=doctors)


def _load_doctor(db: Session, doctor_id: int) -> tuple[DoctorProfile, User, Department | None]:
    profile = get_active_doctor_profile(db, doctor_id)
    if profile is None:
        raise NotFoundError('Doctor not found')
    user = db.get(User, profile.user_id)
    if user is None:
        raise NotFoundError('Doctor not found')
    return profile, user, db.get(Department, profile.department_id)


@router.get('/{doctor_id}', response_model=DoctorEnvelope)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    profile, user, department = _load_doctor(db, doctor_id)
    return DoctorEnvelope(data={'doctor': to_doctor_response(profile, user, department)})


@router.put('/{doctor_id}/availability', response_model=DoctorEnvelope)
def update_doctor_availability(
    doctor_id: int,
    payload: UpdateAvailabilityRequest,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    profile, user, department = _load_doctor(db, doctor_id)
    apply_availability(profile, payload)

    try:
        db.commit()
        db.refresh(profile)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not update availability for doctor %s', doctor_id)
        raise StorageUnavailableError() from exc

    log_security_event(
        'DOCTOR_AVAILABILITY_UPDATED',
        doctor_id=doctor_id,
        updated_by=current_user.id,
        availability=AvailabilitySnapshot.from_profile(profile).as_dict(),
    )
    return DoctorEnvelope(data={'doctor': to_doctor_response(profile, user, department)})
