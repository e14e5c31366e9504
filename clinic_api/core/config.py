import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))
AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "token")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), [FRONTEND_URL])

# Local wall clock used to interpret doctor availability (HH:mm).
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "UTC")

# eSewa test credentials are public; production must override them.
ESEWA_SECRET_KEY = os.getenv("ESEWA_SECRET_KEY", "8gBm/:&EnhH.1/q")
ESEWA_PRODUCT_CODE = os.getenv("ESEWA_PRODUCT_CODE", "EPAYTEST")
ESEWA_FORM_URL = os.getenv("ESEWA_FORM_URL", "https://rc-epay.esewa.com.np/api/epay/main/v2/form")
PUBLIC_API_BASE_URL = os.getenv("PUBLIC_API_BASE_URL", "").rstrip("/")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _get_bool(os.getenv("SMTP_USE_TLS"), default=True)
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "no-reply@clinic.local")

REDIS_URL = os.getenv("REDIS_URL", "")
RATE_LIMIT_BOOKING_PER_HOUR = int(os.getenv("RATE_LIMIT_BOOKING_PER_HOUR", "20"))
RATE_LIMIT_PAYMENT_PER_HOUR = int(os.getenv("RATE_LIMIT_PAYMENT_PER_HOUR", "30"))

CSRF_ENABLED = _get_bool(os.getenv("CSRF_ENABLED"), default=True)


def is_production() -> bool:
    return APP_ENV.lower() == "production"


def validate_runtime_config() -> None:
    if not is_production():
        return
    if JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if ESEWA_PRODUCT_CODE == "EPAYTEST":
        raise RuntimeError("ESEWA_PRODUCT_CODE and ESEWA_SECRET_KEY must be set in production.")
