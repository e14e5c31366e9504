"""eSewa payment initiation and callback handling for appointments."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.core import config
from clinic_api.core.audit import log_security_event
from clinic_api.core.errors import InvalidRequestError, NotFoundError, PaymentVerificationError, StorageUnavailableError
from clinic_api.database import utcnow
from clinic_api.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from clinic_api.models.catalog import Department, Service
from clinic_api.models.user import User
from clinic_api.services import esewa
from clinic_api.services.notifications import AppointmentConfirmation, Notifier

logger = logging.getLogger(__name__)

PAYMENT_STATE_PENDING = 'pending'
PAYMENT_STATE_COMPLETED = 'completed'
PAYMENT_STATE_FAILED = 'failed'
ESEWA_STATUS_COMPLETE = 'COMPLETE'


@dataclass(frozen=True)
class PaymentOutcome:
    success: bool
    appointment_id: int | None = None
    reason: str | None = None
    duplicate: bool = False


def initiate_payment(db: Session, appointment_id: int, patient: User, callback_base_url: str) -> dict:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.patient_id == patient.id,
    ).first()
    if appointment is None:
        raise NotFoundError('Appointment not found')
    if appointment.payment_status == PaymentStatus.PAID.value:
        raise InvalidRequestError('Appointment already paid')
    if appointment.status != AppointmentStatus.PENDING_PAYMENT.value:
        raise InvalidRequestError('Appointment is not awaiting payment')

    transaction_uuid = esewa.generate_transaction_uuid()
    appointment.payment_transaction_id = transaction_uuid
    appointment.payment_state = PAYMENT_STATE_PENDING
    appointment.payment_amount = appointment.consultation_fee
    appointment.payment_status = PaymentStatus.UNPAID.value

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailableError() from exc

    form_data = esewa.build_payment_form(
        total_amount=appointment.consultation_fee,
        transaction_uuid=transaction_uuid,
        product_code=config.ESEWA_PRODUCT_CODE,
        success_url=f'{callback_base_url}/success',
        failure_url=f'{callback_base_url}/failure',
        secret_key=config.ESEWA_SECRET_KEY,
    )

    log_security_event(
        'PAYMENT_INITIATED',
        appointment_id=appointment.id,
        patient_id=patient.id,
        amount=form_data['total_amount'],
    )

    return {
        'formData': form_data,
        'esewaUrl': config.ESEWA_FORM_URL,
        'transactionUUID': transaction_uuid,
    }


def _mark_paid(db: Session, appointment_id: int, paid_at: datetime, payment_id: str | None = None) -> int:
    result = db.execute(
        update(Appointment)
        .where(
            Appointment.id == appointment_id,
            Appointment.payment_status != PaymentStatus.PAID.value,
            Appointment.status == AppointmentStatus.PENDING_PAYMENT.value,
        )
        .values(
            payment_status=PaymentStatus.PAID.value,
            status=AppointmentStatus.BOOKED.value,
            payment_state=PAYMENT_STATE_COMPLETED,
            paid_at=paid_at,
            payment_id=payment_id,
            updated_at=paid_at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def confirm_payment(
    db: Session,
    params: dict,
    *,
    notifier: Notifier,
    secret_key: str | None = None,
    client_ip: str | None = None,
    now: datetime | None = None,
) -> PaymentOutcome:
    """Apply a success callback from eSewa.

    The appointment is moved to booked/paid by a single guarded UPDATE, so a
    retried or concurrent callback for the same transaction changes nothing
    and is reported as a duplicate. Every failure rolls the session back.
    """
    secret_key = secret_key or config.ESEWA_SECRET_KEY
    transaction_uuid = None

    try:
        payload = esewa.decode_callback_payload(params)
        transaction_uuid = payload.get('transaction_uuid')

        if not esewa.verify_callback_signature(payload, secret_key):
            log_security_event('PAYMENT_SIGNATURE_INVALID', transaction_id=transaction_uuid, ip=client_ip)
            raise PaymentVerificationError('Invalid signature')

        if not transaction_uuid:
            raise PaymentVerificationError('Missing transaction id')

        appointment = db.query(Appointment).filter(
            Appointment.payment_transaction_id == str(transaction_uuid),
        ).first()
        if appointment is None:
            raise PaymentVerificationError('Appointment not found')

        appointment_id = appointment.id
        if appointment.payment_status == PaymentStatus.PAID.value:
            db.rollback()
            log_security_event('PAYMENT_DUPLICATE_CALLBACK', appointment_id=appointment_id, transaction_id=transaction_uuid, ip=client_ip)
            return PaymentOutcome(success=True, appointment_id=appointment_id, duplicate=True)

        if str(payload.get('status', '')).strip().upper() != ESEWA_STATUS_COMPLETE:
            raise PaymentVerificationError('Payment not completed')

        expected_amount = appointment.payment_amount if appointment.payment_amount is not None else appointment.consultation_fee
        if not esewa.amounts_match(payload.get('total_amount'), expected_amount):
            log_security_event(
                'PAYMENT_AMOUNT_MISMATCH',
                appointment_id=appointment_id,
                transaction_id=transaction_uuid,
                reported=payload.get('total_amount'),
                ip=client_ip,
            )
            raise PaymentVerificationError('Amount mismatch')

        transaction_code = payload.get('transaction_code')
        payment_id = str(transaction_code)[:200] if transaction_code else None
        if _mark_paid(db, appointment_id, now or utcnow(), payment_id=payment_id) != 1:
            db.rollback()
            db.expire_all()
            current = db.get(Appointment, appointment_id)
            if current is not None and current.payment_status == PaymentStatus.PAID.value:
                log_security_event('PAYMENT_DUPLICATE_CALLBACK', appointment_id=appointment_id, transaction_id=transaction_uuid, ip=client_ip)
                return PaymentOutcome(success=True, appointment_id=appointment_id, duplicate=True)
            raise PaymentVerificationError('Appointment is not awaiting payment')

        db.commit()
    except esewa.CallbackDecodeError as exc:
        db.rollback()
        log_security_event('PAYMENT_CALLBACK_ERROR', error=str(exc), ip=client_ip)
        return PaymentOutcome(success=False, reason=str(exc))
    except PaymentVerificationError as exc:
        db.rollback()
        log_security_event('PAYMENT_CALLBACK_ERROR', error=exc.message, transaction_id=transaction_uuid, ip=client_ip)
        return PaymentOutcome(success=False, reason=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Payment confirmation failed for transaction %s', transaction_uuid)
        log_security_event('PAYMENT_CALLBACK_ERROR', error='storage failure', transaction_id=transaction_uuid, ip=client_ip)
        return PaymentOutcome(success=False, reason='Storage failure')

    log_security_event(
        'APPOINTMENT_PAYMENT_SUCCESS',
        appointment_id=appointment_id,
        transaction_id=transaction_uuid,
        ip=client_ip,
    )
    send_confirmation(db, appointment_id, notifier)
    return PaymentOutcome(success=True, appointment_id=appointment_id)


def send_confirmation(db: Session, appointment_id: int, notifier: Notifier) -> bool:
    """Notify the patient; runs after the payment commit and never raises."""
    try:
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            return False
        patient = db.get(User, appointment.patient_id)
        doctor = db.get(User, appointment.doctor_id)
        department = db.get(Department, appointment.department_id)
        service = db.get(Service, appointment.service_id)
        if patient is None:
            return False
        details = AppointmentConfirmation(
            appointment_number=appointment.appointment_number,
            patient_email=patient.email,
            patient_name=patient.name,
            doctor_name=doctor.name if doctor else '',
            department_name=department.name if department else '',
            service_name=service.name if service else '',
            scheduled_at=appointment.scheduled_at,
            consultation_fee=esewa.format_amount(appointment.consultation_fee),
        )
        return notifier.send_appointment_confirmation(details)
    except Exception:
        logger.exception('Could not send confirmation for appointment %s', appointment_id)
        return False


def record_payment_failure(db: Session, params: dict, client_ip: str | None = None) -> None:
    """Handle eSewa's failure redirect. Never raises."""
    try:
        payload = esewa.decode_callback_payload(params)
    except esewa.CallbackDecodeError:
        log_security_event('PAYMENT_CALLBACK_ERROR', error='undecodable failure callback', ip=client_ip)
        return

    transaction_uuid = payload.get('transaction_uuid')
    if not transaction_uuid:
        return

    try:
        db.execute(
            update(Appointment)
            .where(
                Appointment.payment_transaction_id == str(transaction_uuid),
                Appointment.payment_status != PaymentStatus.PAID.value,
                Appointment.status == AppointmentStatus.PENDING_PAYMENT.value,
            )
            .values(payment_state=PAYMENT_STATE_FAILED, payment_status=PaymentStatus.UNPAID.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not record payment failure for transaction %s', transaction_uuid)
        return

    log_security_event('APPOINTMENT_PAYMENT_FAILED', transaction_id=transaction_uuid, ip=client_ip)


def get_payment_status(db: Session, appointment_id: int, patient: User) -> dict:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.patient_id == patient.id,
    ).first()
    if appointment is None:
        raise NotFoundError('Appointment not found')
    return {'paymentStatus': appointment.payment_status, 'status': appointment.status}
