from types import SimpleNamespace

import pytest

from clinic_api.core.errors import InvalidRequestError, PermissionDeniedError
from clinic_api.models.appointment import AppointmentStatus
from clinic_api.services.appointment_status import (
    Actor,
    apply_status_change,
    can_transition,
    sanitize_notes,
)
from conftest import utc

PATIENT = Actor(user_id=10, role='patient')
DOCTOR = Actor(user_id=20, role='doctor')
ADMIN = Actor(user_id=30, role='admin')
NOW = utc(2026, 1, 5, 8, 0)


def appointment(status: str = 'booked', **overrides) -> SimpleNamespace:
    values = {
        'status': status,
        'patient_id': PATIENT.user_id,
        'doctor_id': DOCTOR.user_id,
        'notes': None,
        'updated_at': None,
        'completed_at': None,
        'cancelled_at': None,
        'cancelled_reason': None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.parametrize(
    ('current', 'target', 'allowed'),
    [
        ('pending_payment', 'booked', True),
        ('pending_payment', 'cancelled', True),
        ('pending_payment', 'completed', False),
        ('booked', 'confirmed', True),
        ('booked', 'no_show', True),
        ('confirmed', 'completed', True),
        ('confirmed', 'booked', False),
        ('completed', 'booked', False),
        ('cancelled', 'booked', False),
        ('no_show', 'completed', False),
    ],
)
def test_can_transition(current: str, target: str, allowed: bool) -> None:
    assert can_transition(AppointmentStatus(current), AppointmentStatus(target)) is allowed


def test_patient_cancels_own_booking() -> None:
    record = appointment('booked')

    change = apply_status_change(record, PATIENT, 'cancelled', now=NOW)

    assert change.changed
    assert change.previous_status is AppointmentStatus.BOOKED
    assert record.status == 'cancelled'
    assert record.cancelled_at == NOW
    assert record.updated_at == NOW


@pytest.mark.parametrize(
    ('actor', 'reason', 'expected'),
    [
        (PATIENT, 'Travelling that week', 'Travelling that week'),
        (PATIENT, None, 'Cancelled by patient'),
        (DOCTOR, '   ', 'Cancelled by doctor'),
        (ADMIN, '<b>Clinic closed</b>', 'bClinic closed/b'),
        (ADMIN, 'x' * 300, 'x' * 200),
    ],
)
def test_cancellation_records_reason(actor: Actor, reason, expected: str) -> None:
    record = appointment('booked')

    apply_status_change(record, actor, 'cancelled', now=NOW, reason=reason)

    assert record.cancelled_reason == expected


def test_reason_is_ignored_unless_cancelling() -> None:
    record = appointment('booked')

    apply_status_change(record, DOCTOR, 'confirmed', now=NOW, reason='not a cancellation')

    assert record.cancelled_reason is None


def test_patient_cancelling_twice_is_a_no_op() -> None:
    record = appointment('cancelled', cancelled_at=NOW)

    change = apply_status_change(record, PATIENT, 'cancelled', now=utc(2026, 1, 6, 8, 0))

    assert not change.changed
    assert record.status == 'cancelled'
    assert record.cancelled_at == NOW


def test_patient_cannot_cancel_completed_appointment() -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        apply_status_change(appointment('completed'), PATIENT, 'cancelled')

    assert exception_info.value.message == 'Completed appointments cannot be cancelled'


def test_patient_can_only_cancel() -> None:
    with pytest.raises(PermissionDeniedError) as exception_info:
        apply_status_change(appointment('booked'), PATIENT, 'completed')

    assert exception_info.value.message == 'Patients can only cancel appointments'


def test_patient_cannot_touch_someone_elses_appointment() -> None:
    record = appointment('booked', patient_id=99)

    with pytest.raises(PermissionDeniedError) as exception_info:
        apply_status_change(record, PATIENT, 'cancelled')

    assert exception_info.value.message == 'Access denied'
    assert record.status == 'booked'


def test_patient_notes_are_ignored() -> None:
    record = appointment('booked')

    apply_status_change(record, PATIENT, 'cancelled', notes='please refund')

    assert record.notes is None


def test_doctor_cannot_reopen_completed_appointment() -> None:
    record = appointment('completed', notes='done')

    with pytest.raises(InvalidRequestError) as exception_info:
        apply_status_change(record, DOCTOR, 'booked', notes='reopened')

    assert exception_info.value.message == 'Cannot change status from completed to booked'
    assert record.status == 'completed'
    assert record.notes == 'done'


def test_doctor_cannot_complete_unpaid_appointment() -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        apply_status_change(appointment('pending_payment'), DOCTOR, 'completed')

    assert exception_info.value.message == 'Cannot change status from pending_payment to completed'


def test_doctor_cannot_update_another_doctors_appointment() -> None:
    with pytest.raises(PermissionDeniedError):
        apply_status_change(appointment('booked', doctor_id=77), DOCTOR, 'completed')


def test_doctor_completes_appointment_with_notes() -> None:
    record = appointment('confirmed')

    change = apply_status_change(record, DOCTOR, 'completed', notes='  Follow <up> next week  ', now=NOW)

    assert change.status is AppointmentStatus.COMPLETED
    assert record.status == 'completed'
    assert record.completed_at == NOW
    assert record.notes == 'Follow up next week'


def test_same_status_with_new_notes_only_updates_notes() -> None:
    record = appointment('booked')

    change = apply_status_change(record, DOCTOR, 'booked', notes='bring reports', now=NOW)

    assert change.changed
    assert record.status == 'booked'
    assert record.notes == 'bring reports'


def test_admin_may_mark_no_show_for_any_doctor() -> None:
    record = appointment('booked', doctor_id=77)

    change = apply_status_change(record, ADMIN, 'no_show', now=NOW)

    assert change.status is AppointmentStatus.NO_SHOW
    assert record.status == 'no_show'


@pytest.mark.parametrize('target', ['pending_payment', 'rescheduled', ''])
def test_unknown_or_creation_only_status_is_rejected(target: str) -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        apply_status_change(appointment('booked'), ADMIN, target)

    assert exception_info.value.message == 'Invalid status'


def test_unknown_role_is_denied() -> None:
    with pytest.raises(PermissionDeniedError):
        apply_status_change(appointment('booked'), Actor(user_id=1, role='receptionist'), 'cancelled')


def test_sanitize_notes_caps_length() -> None:
    assert len(sanitize_notes('x' * 1500)) == 1000
    assert sanitize_notes('   ') is None
    assert sanitize_notes(None) is None
