from decimal import Decimal

import pytest

from clinic_api.core.errors import InvalidRequestError, NotFoundError, PermissionDeniedError, SlotUnavailableError
from clinic_api.services import appointments
from conftest import utc

NOW = utc(2030, 1, 1, 0, 0)
TEN_AM = utc(2030, 1, 7, 10, 0)


def book(db, clinic, scheduled_at=TEN_AM, **kwargs):
    return appointments.create_appointment(
        db,
        clinic.patient,
        doctor_id=kwargs.pop('doctor_id', clinic.doctor.id),
        service_id=kwargs.pop('service_id', clinic.service.id),
        scheduled_at=scheduled_at,
        now=NOW,
        **kwargs,
    )


def test_create_appointment_starts_pending_payment(db, clinic) -> None:
    appointment = book(db, clinic)

    assert appointment.id is not None
    assert appointment.status == 'pending_payment'
    assert appointment.payment_status == 'unpaid'
    assert appointment.consultation_fee == Decimal('800.00')
    assert appointment.duration_minutes == 30
    assert appointment.department_id == clinic.department.id
    assert appointment.appointment_number.startswith('APT-')


def test_create_appointment_falls_back_to_service_price(db, clinic) -> None:
    appointment = book(db, clinic, doctor_id=clinic.other_doctor.id)

    assert appointment.consultation_fee == Decimal('500.00')


def test_create_appointment_rejects_past_time(db, clinic) -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        book(db, clinic, scheduled_at=utc(2029, 12, 31, 10, 0))

    assert exception_info.value.message == 'Scheduled time must be in the future'


def test_create_appointment_rejects_inactive_doctor(db, clinic) -> None:
    clinic.profile.is_active = False
    db.commit()

    with pytest.raises(NotFoundError) as exception_info:
        book(db, clinic)

    assert exception_info.value.message == 'Doctor not found or inactive'


def test_create_appointment_rejects_unknown_service(db, clinic) -> None:
    with pytest.raises(NotFoundError):
        book(db, clinic, service_id=999)


@pytest.mark.parametrize('duration', [10, 241])
def test_create_appointment_rejects_out_of_range_duration(db, clinic, duration: int) -> None:
    with pytest.raises(InvalidRequestError):
        book(db, clinic, duration_minutes=duration)


@pytest.mark.parametrize('start', [TEN_AM, utc(2030, 1, 7, 10, 15), utc(2030, 1, 7, 9, 45)])
def test_create_appointment_rejects_overlap(db, clinic, make_appointment, start) -> None:
    make_appointment(TEN_AM, status='booked')

    with pytest.raises(SlotUnavailableError) as exception_info:
        book(db, clinic, scheduled_at=start)

    assert exception_info.value.message == 'Time slot already booked'


def test_create_appointment_allows_adjacent_slot(db, clinic, make_appointment) -> None:
    make_appointment(TEN_AM, status='booked')

    appointment = book(db, clinic, scheduled_at=utc(2030, 1, 7, 10, 30))

    assert appointment.status == 'pending_payment'


def test_create_appointment_sees_long_appointments_starting_earlier(db, clinic, make_appointment) -> None:
    make_appointment(utc(2030, 1, 7, 8, 0), status='confirmed', duration_minutes=180)

    with pytest.raises(SlotUnavailableError):
        book(db, clinic, scheduled_at=utc(2030, 1, 7, 10, 30))


def test_create_appointment_ignores_cancelled_booking(db, clinic, make_appointment) -> None:
    make_appointment(TEN_AM, status='cancelled')

    assert book(db, clinic).scheduled_at == TEN_AM


def test_update_appointment_status_cancels_for_patient(db, clinic, make_appointment) -> None:
    appointment = make_appointment(TEN_AM, status='booked')

    updated, change = appointments.update_appointment_status(db, appointment.id, clinic.patient, 'cancelled')

    assert change.changed
    assert updated.status == 'cancelled'
    assert updated.cancelled_at is not None


def test_update_appointment_status_denies_other_patient(db, clinic, make_appointment) -> None:
    appointment = make_appointment(TEN_AM, status='booked')

    with pytest.raises(PermissionDeniedError):
        appointments.update_appointment_status(db, appointment.id, clinic.other_patient, 'cancelled')

    db.refresh(appointment)
    assert appointment.status == 'booked'


def test_update_appointment_status_missing_appointment(db, clinic) -> None:
    with pytest.raises(NotFoundError):
        appointments.update_appointment_status(db, 999, clinic.admin, 'cancelled')


def test_list_doctor_appointments_requires_doctor_or_admin(db, clinic, make_appointment) -> None:
    make_appointment(TEN_AM)

    with pytest.raises(PermissionDeniedError):
        appointments.list_doctor_appointments(db, clinic.patient)

    assert len(appointments.list_doctor_appointments(db, clinic.doctor)) == 1
    assert appointments.list_doctor_appointments(db, clinic.other_doctor) == []
    assert len(appointments.list_doctor_appointments(db, clinic.admin, doctor_id=clinic.doctor.id)) == 1


def test_list_patient_appointments_newest_first(db, clinic, make_appointment) -> None:
    earlier = make_appointment(TEN_AM)
    later = make_appointment(utc(2030, 1, 8, 10, 0))

    assert [a.id for a in appointments.list_patient_appointments(db, clinic.patient)] == [later.id, earlier.id]
    assert appointments.list_patient_appointments(db, clinic.other_patient) == []


def test_get_appointment_for_user_checks_parties(db, clinic, make_appointment) -> None:
    appointment = make_appointment(TEN_AM)

    assert appointments.get_appointment_for_user(db, appointment.id, clinic.patient).id == appointment.id
    assert appointments.get_appointment_for_user(db, appointment.id, clinic.doctor).id == appointment.id
    assert appointments.get_appointment_for_user(db, appointment.id, clinic.admin).id == appointment.id
    with pytest.raises(PermissionDeniedError):
        appointments.get_appointment_for_user(db, appointment.id, clinic.other_patient)
