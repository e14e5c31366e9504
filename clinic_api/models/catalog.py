"""Department and service catalog models."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Text

from clinic_api.database import Base


class Department(Base):
    """A clinic department doctors and services belong to."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Service(Base):
    """A bookable consultation or procedure."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
