"""User model definitions."""

from sqlalchemy import Column, Integer, String

from clinic_api.database import Base, UTCDateTime, utcnow


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, default='')
    phone = Column(String)
    role = Column(String, nullable=False, default='patient')  # patient/doctor/admin
    created_at = Column(UTCDateTime, default=utcnow)
