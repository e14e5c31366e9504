import re
from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from clinic_api.core import config


def _engine_options(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False

RECORD_ID_PATTERN = re.compile(r'\d{1,18}', re.ASCII)


def parse_record_id(value: str | None) -> int | None:
    """Return a positive integer primary key, or None for anything else.

    Only ASCII digits are accepted and the value must fit a signed 64-bit column.
    """
    if value is None:
        return None
    candidate = value.strip()
    if not RECORD_ID_PATTERN.fullmatch(candidate):
        return None
    record_id = int(candidate)
    return record_id if record_id > 0 else None


class UTCDateTime(TypeDecorator):
    """Stores instants as UTC and always hands back aware datetimes.

    Naive values are taken to already be UTC, which is what SQLite returns.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    target = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('cancelled_reason', 'ALTER TABLE appointments ADD COLUMN cancelled_reason VARCHAR(200)'),
            ('payment_id', 'ALTER TABLE appointments ADD COLUMN payment_id VARCHAR(200)'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_scheduled ON appointments(doctor_id, scheduled_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_payment ON appointments(status, payment_status)')
            )

        _appointment_schema_checked = True
