"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String

from clinic_api.database import Base, UTCDateTime, utcnow


class AppointmentStatus(str, Enum):
    PENDING_PAYMENT = 'pending_payment'
    BOOKED = 'booked'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


class PaymentStatus(str, Enum):
    UNPAID = 'unpaid'
    PAID = 'paid'
    REFUNDED = 'refunded'


class Appointment(Base):
    """Represents a booked (or pending) consultation with a doctor."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    appointment_number = Column(String(30), unique=True, index=True, nullable=False)

    patient_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), index=True, nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), index=True, nullable=False)

    scheduled_at = Column(UTCDateTime, index=True, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING_PAYMENT.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value, index=True)
    consultation_fee = Column(Numeric(10, 2), nullable=False)
    notes = Column(String(1000))

    payment_transaction_id = Column(String(200), index=True)
    payment_id = Column(String(200))
    payment_state = Column(String(50))
    payment_amount = Column(Numeric(10, 2))
    paid_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    cancelled_at = Column(UTCDateTime)
    cancelled_reason = Column(String(200))
    completed_at = Column(UTCDateTime)

    @property
    def payment_result(self) -> dict | None:
        if not self.payment_transaction_id:
            return None
        return {
            'transaction_id': self.payment_transaction_id,
            'payment_id': self.payment_id,
            'status': self.payment_state,
            'amount': self.payment_amount,
            'paid_at': self.paid_at,
        }


def status_value(value) -> str | None:
    if isinstance(value, Enum):
        return value.value
    return value
