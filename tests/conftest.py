import base64
import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from clinic_api.auth.jwt_handler import create_access_token  # noqa: E402
from clinic_api.core import config  # noqa: E402
from clinic_api.core.rate_limit import InMemoryRateLimitStore  # noqa: E402
from clinic_api.database import Base, get_db  # noqa: E402
from clinic_api.models.appointment import Appointment  # noqa: E402
from clinic_api.models.catalog import Department, Service  # noqa: E402
from clinic_api.models.doctor_profile import DoctorProfile  # noqa: E402
from clinic_api.models.user import User  # noqa: E402
from clinic_api.services import esewa  # noqa: E402

CALLBACK_SIGNED_FIELDS = 'transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names'


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_appointment_confirmation(self, details) -> bool:
        self.sent.append(details)
        return True


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clinic(db):
    department = Department(name='General Medicine', slug='general-medicine')
    db.add(department)
    db.flush()

    service = Service(name='General Consultation', department_id=department.id, price=Decimal('500.00'))
    doctor = User(email='doctor@clinic.test', name='Dr. Sharma', role='doctor')
    other_doctor = User(email='other.doctor@clinic.test', name='Dr. Karki', role='doctor')
    patient = User(email='patient@clinic.test', name='Asha', role='patient')
    other_patient = User(email='other.patient@clinic.test', name='Bikash', role='patient')
    admin = User(email='admin@clinic.test', name='Admin', role='admin')
    db.add_all([service, doctor, other_doctor, patient, other_patient, admin])
    db.flush()

    profile = DoctorProfile(
        user_id=doctor.id,
        department_id=department.id,
        consultation_fee=Decimal('800.00'),
        availability_days=['monday', 'tuesday', 'wednesday', 'thursday', 'friday'],
        availability_start_time='09:00',
        availability_end_time='17:00',
        slot_duration=30,
    )
    other_profile = DoctorProfile(user_id=other_doctor.id, department_id=department.id)
    db.add_all([profile, other_profile])
    db.commit()

    return SimpleNamespace(
        department=department,
        service=service,
        doctor=doctor,
        other_doctor=other_doctor,
        profile=profile,
        patient=patient,
        other_patient=other_patient,
        admin=admin,
    )


@pytest.fixture
def make_appointment(db, clinic):
    counter = {'value': 0}

    def _make(scheduled_at: datetime, status: str = 'booked', **overrides) -> Appointment:
        counter['value'] += 1
        values = {
            'appointment_number': f'APT-TEST-{counter["value"]:04d}',
            'patient_id': clinic.patient.id,
            'doctor_id': clinic.doctor.id,
            'department_id': clinic.department.id,
            'service_id': clinic.service.id,
            'scheduled_at': scheduled_at,
            'duration_minutes': 30,
            'status': status,
            'payment_status': 'paid' if status in ('booked', 'confirmed', 'completed') else 'unpaid',
            'consultation_fee': Decimal('800.00'),
        }
        values.update(overrides)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(db, notifier, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, 'CSRF_ENABLED', False)
    from clinic_api.main import create_app

    application = create_app(rate_limit_store=InMemoryRateLimitStore(), notifier=notifier)

    def override_get_db():
        yield db

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


def auth_headers(user: User) -> dict:
    return {'Authorization': f'Bearer {create_access_token(str(user.id), role=user.role)}'}


def signed_callback(transaction_uuid: str, total_amount: str = '800.00', secret_key: str | None = None, **overrides) -> dict:
    """Build the base64 ``data`` parameter eSewa appends to its success redirect.

    Field overrides are signed; a ``signature`` override replaces the signature.
    """
    signature = overrides.pop('signature', None)
    payload = {
        'transaction_code': '000AE01',
        'status': 'COMPLETE',
        'total_amount': total_amount,
        'transaction_uuid': transaction_uuid,
        'product_code': config.ESEWA_PRODUCT_CODE,
        'signed_field_names': CALLBACK_SIGNED_FIELDS,
    }
    payload.update(overrides)
    payload['signature'] = signature or esewa.compute_signature(
        esewa.build_signature_message(payload, CALLBACK_SIGNED_FIELDS.split(',')),
        secret_key or config.ESEWA_SECRET_KEY,
    )
    return {'data': base64.b64encode(json.dumps(payload).encode('utf-8')).decode('utf-8')}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
