"""Doctor profile model definitions."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Numeric, String

from clinic_api.database import Base

DEFAULT_WORKING_DAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday']


class DoctorProfile(Base):
    """Professional details and the weekly availability template of a doctor."""
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), index=True, nullable=False)
    qualifications = Column(String(500), default='')
    experience_years = Column(Integer, default=0)
    consultation_fee = Column(Numeric(10, 2))
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    availability_days = Column(JSON, default=lambda: list(DEFAULT_WORKING_DAYS))
    availability_start_time = Column(String(5), default='09:00')
    availability_end_time = Column(String(5), default='17:00')
    slot_duration = Column(Integer, default=30)
