"""Appointment lifecycle rules.

pending_payment -> booked | cancelled
booked          -> confirmed | completed | cancelled | no_show
confirmed       -> completed | cancelled | no_show

completed, cancelled and no_show are terminal.
"""

from dataclasses import dataclass
from datetime import datetime

from clinic_api.core.errors import InvalidRequestError, PermissionDeniedError
from clinic_api.database import utcnow
from clinic_api.models.appointment import AppointmentStatus, status_value

ROLE_PATIENT = 'patient'
ROLE_DOCTOR = 'doctor'
ROLE_ADMIN = 'admin'

MAX_NOTES_LENGTH = 1000
MAX_CANCELLED_REASON_LENGTH = 200

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING_PAYMENT: frozenset({AppointmentStatus.BOOKED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.BOOKED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# pending_payment is only ever entered at creation time.
SETTABLE_STATUSES = frozenset(ALLOWED_TRANSITIONS) - {AppointmentStatus.PENDING_PAYMENT}
TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(user_id=user.id, role=(user.role or '').lower())


@dataclass(frozen=True)
class StatusChange:
    previous_status: AppointmentStatus
    status: AppointmentStatus
    changed: bool


def parse_target_status(value) -> AppointmentStatus:
    try:
        target = AppointmentStatus(status_value(value))
    except ValueError as exc:
        raise InvalidRequestError('Invalid status') from exc
    if target not in SETTABLE_STATUSES:
        raise InvalidRequestError('Invalid status')
    return target


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _clean_text(value, limit: int) -> str | None:
    if value is None:
        return None
    cleaned = str(value).replace('<', '').replace('>', '').strip()
    return cleaned[:limit] or None


def sanitize_notes(notes: str | None) -> str | None:
    return _clean_text(notes, MAX_NOTES_LENGTH)


def sanitize_cancelled_reason(reason: str | None, actor: Actor) -> str:
    return _clean_text(reason, MAX_CANCELLED_REASON_LENGTH) or f'Cancelled by {actor.role}'


def authorize_status_change(appointment, actor: Actor, target: AppointmentStatus) -> None:
    if actor.role == ROLE_ADMIN:
        return

    if actor.role == ROLE_PATIENT:
        if appointment.patient_id != actor.user_id:
            raise PermissionDeniedError('Access denied')
        if target is not AppointmentStatus.CANCELLED:
            raise PermissionDeniedError('Patients can only cancel appointments')
        return

    if actor.role == ROLE_DOCTOR:
        if appointment.doctor_id != actor.user_id:
            raise PermissionDeniedError('Access denied')
        return

    raise PermissionDeniedError('Access denied')


def apply_status_change(
    appointment,
    actor: Actor,
    target,
    notes: str | None = None,
    now: datetime | None = None,
    reason: str | None = None,
) -> StatusChange:
    """Validate and apply a status change to ``appointment`` in place.

    Raises ``InvalidRequestError`` for an unknown target or a forbidden
    transition and ``PermissionDeniedError`` when ``actor`` may not act.
    A cancellation keeps ``reason``, or a default naming the actor's role.
    The caller persists the appointment.
    """
    target_status = parse_target_status(target)
    current = AppointmentStatus(status_value(appointment.status))

    authorize_status_change(appointment, actor, target_status)

    if actor.role == ROLE_PATIENT:
        if current is AppointmentStatus.COMPLETED:
            raise InvalidRequestError('Completed appointments cannot be cancelled')
        if current is AppointmentStatus.CANCELLED:
            return StatusChange(previous_status=current, status=current, changed=False)
        # patient notes are ignored
        notes = None

    if target_status is not current and not can_transition(current, target_status):
        raise InvalidRequestError(f'Cannot change status from {current.value} to {target_status.value}')

    now = now or utcnow()
    notes_changed = False
    cleaned_notes = sanitize_notes(notes)
    if cleaned_notes is not None and cleaned_notes != appointment.notes:
        appointment.notes = cleaned_notes
        notes_changed = True

    if target_status is current:
        if notes_changed:
            appointment.updated_at = now
        return StatusChange(previous_status=current, status=current, changed=notes_changed)

    appointment.status = target_status.value
    appointment.updated_at = now
    if target_status is AppointmentStatus.COMPLETED:
        appointment.completed_at = now
    elif target_status is AppointmentStatus.CANCELLED:
        appointment.cancelled_at = now
        appointment.cancelled_reason = sanitize_cancelled_reason(reason, actor)

    return StatusChange(previous_status=current, status=target_status, changed=True)
