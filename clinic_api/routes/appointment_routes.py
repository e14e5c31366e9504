from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from clinic_api.auth.dependencies import get_current_user, require_roles
from clinic_api.core import config
from clinic_api.core.rate_limit import client_ip, create_rate_limiter
from clinic_api.database import get_db
from clinic_api.models.appointment import Appointment
from clinic_api.models.catalog import Department, Service
from clinic_api.models.user import User
from clinic_api.services import appointments as appointment_service
from clinic_api.services.appointment_status import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT

router = APIRouter(tags=['appointments'])

booking_rate_limiter = create_rate_limiter(
    limit=config.RATE_LIMIT_BOOKING_PER_HOUR,
    window_seconds=3600,
    key_prefix='rate_limit:booking',
)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class CreateAppointmentRequest(CamelModel):
    doctor_id: int
    service_id: int
    scheduled_at: datetime
    duration_minutes: int | None = None


class UpdateStatusRequest(CamelModel):
    status: str
    notes: str | None = None
    reason: str | None = None

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()


class PartyResponse(CamelModel):
    id: int
    name: str
    email: str | None = None


class PaymentResultResponse(CamelModel):
    transaction_id: str
    payment_id: str | None = None
    status: str | None = None
    amount: float | None = None
    paid_at: datetime | None = None


class AppointmentResponse(CamelModel):
    id: int
    appointment_number: str
    patient_id: int
    doctor_id: int
    department_id: int
    service_id: int
    scheduled_at: datetime
    duration_minutes: int
    status: str
    payment_status: str
    consultation_fee: float
    notes: str | None = None
    payment_result: PaymentResultResponse | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_reason: str | None = None
    completed_at: datetime | None = None
    patient: PartyResponse | None = None
    doctor: PartyResponse | None = None
    department: PartyResponse | None = None
    service: PartyResponse | None = None


class AppointmentEnvelope(BaseModel):
    success: bool = True
    data: dict[str, AppointmentResponse]


class AppointmentListEnvelope(BaseModel):
    success: bool = True
    count: int
    data: list[AppointmentResponse]


def populate_appointment(db: Session, appointment: Appointment) -> AppointmentResponse:
    """Attach patient, doctor, department and service references."""
    response = AppointmentResponse.model_validate(appointment)
    patient = db.get(User, appointment.patient_id)
    doctor = db.get(User, appointment.doctor_id)
    department = db.get(Department, appointment.department_id)
    service = db.get(Service, appointment.service_id)
    return response.model_copy(update={
        'patient': PartyResponse(id=patient.id, name=patient.name, email=patient.email) if patient else None,
        'doctor': PartyResponse(id=doctor.id, name=doctor.name, email=doctor.email) if doctor else None,
        'department': PartyResponse(id=department.id, name=department.name) if department else None,
        'service': PartyResponse(id=service.id, name=service.name) if service else None,
    })


def _list_envelope(db: Session, appointments: list[Appointment]) -> AppointmentListEnvelope:
    return AppointmentListEnvelope(
        count=len(appointments),
        data=[populate_appointment(db, appointment) for appointment in appointments],
    )


@router.post(
    '',
    response_model=AppointmentEnvelope,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_appointment(
    payload: CreateAppointmentRequest,
    request: Request,
    current_user: User = Depends(require_roles(ROLE_PATIENT)),
    db: Session = Depends(get_db),
):
    appointment = appointment_service.create_appointment(
        db,
        current_user,
        doctor_id=payload.doctor_id,
        service_id=payload.service_id,
        scheduled_at=payload.scheduled_at,
        duration_minutes=payload.duration_minutes,
        client_ip=client_ip(request),
    )
    return AppointmentEnvelope(data={'appointment': populate_appointment(db, appointment)})


@router.get('/me', response_model=AppointmentListEnvelope)
def list_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _list_envelope(db, appointment_service.list_patient_appointments(db, current_user))


@router.get('/doctor', response_model=AppointmentListEnvelope)
def list_doctor_appointments(
    doctor_id: int | None = Query(default=None, alias='doctorId'),
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    appointments = appointment_service.list_doctor_appointments(db, current_user, doctor_id=doctor_id)
    return _list_envelope(db, appointments)


@router.get('/{appointment_id}', response_model=AppointmentEnvelope)
def get_appointment(
    appointment_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    appointment = appointment_service.get_appointment_for_user(
        db, appointment_id, current_user, client_ip=client_ip(request)
    )
    return AppointmentEnvelope(data={'appointment': populate_appointment(db, appointment)})


@router.patch('/{appointment_id}/status', response_model=AppointmentEnvelope)
def update_appointment_status(
    appointment_id: int,
    payload: UpdateStatusRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    appointment, _ = appointment_service.update_appointment_status(
        db,
        appointment_id,
        current_user,
        payload.status,
        notes=payload.notes,
        client_ip=client_ip(request),
        reason=payload.reason,
    )
    return AppointmentEnvelope(data={'appointment': populate_appointment(db, appointment)})
