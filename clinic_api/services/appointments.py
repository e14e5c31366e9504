"""Booking and appointment management."""

import logging
import secrets
import time
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.core.audit import log_security_event
from clinic_api.core.errors import InvalidRequestError, NotFoundError, PermissionDeniedError, SlotUnavailableError, StorageUnavailableError
from clinic_api.database import as_utc, utcnow
from clinic_api.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from clinic_api.models.catalog import Service
from clinic_api.models.doctor_profile import DoctorProfile
from clinic_api.models.user import User
from clinic_api.services.appointment_status import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, Actor, StatusChange, apply_status_change
from clinic_api.services.slots import BLOCKING_STATUSES, appointment_window, intervals_overlap

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 240
DEFAULT_DURATION_MINUTES = 30


def generate_appointment_number() -> str:
    return f'APT-{int(time.time() * 1000):013d}-{1000 + secrets.randbelow(9000)}'


def round_fee(amount) -> Decimal:
    fee = Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    if fee < 0:
        raise InvalidRequestError('Consultation fee cannot be negative')
    return fee


def build_appointment(
    *,
    patient_id: int,
    profile: DoctorProfile,
    service: Service,
    scheduled_at: datetime,
    duration_minutes: int | None,
) -> Appointment:
    """Construct a new pending appointment with its invariants applied."""
    duration = duration_minutes or DEFAULT_DURATION_MINUTES
    if duration < MIN_DURATION_MINUTES or duration > MAX_DURATION_MINUTES:
        raise InvalidRequestError(
            f'Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes'
        )

    fee_source = profile.consultation_fee if profile.consultation_fee else service.price
    now = utcnow()
    return Appointment(
        appointment_number=generate_appointment_number(),
        patient_id=patient_id,
        doctor_id=profile.user_id,
        department_id=profile.department_id,
        service_id=service.id,
        scheduled_at=as_utc(scheduled_at),
        duration_minutes=duration,
        consultation_fee=round_fee(fee_source or 0),
        status=AppointmentStatus.PENDING_PAYMENT.value,
        payment_status=PaymentStatus.UNPAID.value,
        created_at=now,
        updated_at=now,
    )


def find_conflicting_appointment(
    db: Session,
    doctor_id: int,
    start: datetime,
    end: datetime,
) -> Appointment | None:
    for candidate in list_blocking_appointments(db, doctor_id, start, end):
        existing_start, existing_end = appointment_window(candidate.scheduled_at, candidate.duration_minutes)
        if intervals_overlap(start, end, existing_start, existing_end):
            return candidate
    return None


def get_active_doctor_profile(db: Session, doctor_id: int) -> DoctorProfile | None:
    return db.query(DoctorProfile).filter(
        DoctorProfile.user_id == doctor_id,
        DoctorProfile.is_active.is_(True),
    ).first()


def create_appointment(
    db: Session,
    patient: User,
    *,
    doctor_id: int,
    service_id: int,
    scheduled_at: datetime,
    duration_minutes: int | None = None,
    client_ip: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    profile = get_active_doctor_profile(db, doctor_id)
    if profile is None:
        raise NotFoundError('Doctor not found or inactive')

    service = db.query(Service).filter(Service.id == service_id, Service.is_active.is_(True)).first()
    if service is None:
        raise NotFoundError('Service not found')

    scheduled_at = as_utc(scheduled_at)
    if scheduled_at <= (now or utcnow()):
        raise InvalidRequestError('Scheduled time must be in the future')

    appointment = build_appointment(
        patient_id=patient.id,
        profile=profile,
        service=service,
        scheduled_at=scheduled_at,
        duration_minutes=duration_minutes,
    )

    # Check-then-insert: two concurrent bookings can still both pass.
    start, end = appointment_window(appointment.scheduled_at, appointment.duration_minutes)
    if find_conflicting_appointment(db, doctor_id, start, end) is not None:
        raise SlotUnavailableError('Time slot already booked')

    try:
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not create appointment for patient %s', patient.id)
        raise StorageUnavailableError() from exc

    log_security_event(
        'APPOINTMENT_CREATED',
        appointment_id=appointment.id,
        patient_id=patient.id,
        doctor_id=doctor_id,
        ip=client_ip,
    )
    return appointment


def list_patient_appointments(db: Session, patient: User) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.patient_id == patient.id,
    ).order_by(Appointment.scheduled_at.desc()).all()


def list_doctor_appointments(db: Session, user: User, doctor_id: int | None = None) -> list[Appointment]:
    if user.role not in (ROLE_DOCTOR, ROLE_ADMIN):
        raise PermissionDeniedError('Access denied')

    target_doctor_id = doctor_id if user.role == ROLE_ADMIN and doctor_id else user.id
    return db.query(Appointment).filter(
        Appointment.doctor_id == target_doctor_id,
    ).order_by(Appointment.scheduled_at.desc()).all()


def get_appointment_for_user(db: Session, appointment_id: int, user: User, client_ip: str | None = None) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found')

    is_party = user.id in (appointment.patient_id, appointment.doctor_id)
    if not is_party and user.role != ROLE_ADMIN:
        log_security_event('UNAUTHORIZED_APPOINTMENT_ACCESS', user_id=user.id, appointment_id=appointment_id, ip=client_ip)
        raise PermissionDeniedError('Access denied')
    return appointment


def update_appointment_status(
    db: Session,
    appointment_id: int,
    user: User,
    status: str,
    notes: str | None = None,
    client_ip: str | None = None,
    reason: str | None = None,
) -> tuple[Appointment, StatusChange]:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found')

    actor = Actor.from_user(user)
    try:
        change = apply_status_change(appointment, actor, status, notes=notes, reason=reason)
    except PermissionDeniedError as exc:
        db.rollback()
        log_security_event(
            'UNAUTHORIZED_APPOINTMENT_UPDATE',
            user_id=user.id,
            appointment_id=appointment_id,
            requested_status=status,
            reason=exc.message,
            ip=client_ip,
        )
        raise
    except InvalidRequestError:
        db.rollback()
        raise

    if not change.changed:
        return appointment, change

    try:
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not update appointment %s', appointment_id)
        raise StorageUnavailableError() from exc

    log_security_event(
        'APPOINTMENT_CANCELLED_BY_PATIENT' if actor.role == ROLE_PATIENT else 'APPOINTMENT_STATUS_UPDATED',
        appointment_id=appointment_id,
        old_status=change.previous_status.value,
        new_status=change.status.value,
        updated_by=user.id,
        ip=client_ip,
    )
    return appointment, change


def list_blocking_appointments(db: Session, doctor_id: int, start: datetime, end: datetime) -> list[Appointment]:
    """Non-terminal appointments of ``doctor_id`` that may reach into [start, end).

    Appointments never run longer than MAX_DURATION_MINUTES, which bounds how
    far before ``start`` an overlapping one can begin.
    """
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(BLOCKING_STATUSES),
        Appointment.scheduled_at < end,
        Appointment.scheduled_at > start - timedelta(minutes=MAX_DURATION_MINUTES),
    ).all()
