import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinic_api.core import config
from clinic_api.core.audit import configure_logging
from clinic_api.core.csrf import CSRFMiddleware
from clinic_api.core.errors import ClinicError
from clinic_api.core.rate_limit import RateLimitStore, build_rate_limit_store
from clinic_api.database import Base, engine, ensure_appointment_schema
from clinic_api.models import appointment, catalog, doctor_profile, user  # noqa: F401
from clinic_api.routes import (
    appointment_routes,
    auth_routes,
    catalog_routes,
    doctor_routes,
    payment_routes,
    slot_routes,
)
from clinic_api.services.notifications import Notifier

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'success': False, 'message': message},
        headers=headers,
    )


def describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Invalid request'
    first = errors[0]
    location = [str(part) for part in first.get('loc', ()) if part not in ('body', 'query', 'path')]
    field = '.'.join(location)
    if first.get('type') == 'missing':
        return f'Missing required field: {field}' if field else 'Missing required fields'
    message = str(first.get('msg', 'Invalid value')).removeprefix('Value error, ')
    return f'{field}: {message}' if field else message


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ClinicError)
    async def handle_clinic_error(request: Request, exc: ClinicError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, 'headers', None))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, describe_validation_error(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception('Unhandled error on %s %s', request.method, request.url.path)
        message = 'Server Error' if config.is_production() else str(exc) or exc.__class__.__name__
        return error_response(500, message)


def create_app(rate_limit_store: RateLimitStore | None = None, notifier: Notifier | None = None) -> FastAPI:
    app = FastAPI(title='Clinic Appointments API')
    app.state.rate_limit_store = rate_limit_store or build_rate_limit_store(config.REDIS_URL)
    app.state.notifier = notifier or Notifier()

    app.add_middleware(CSRFMiddleware, enabled=config.CSRF_ENABLED, secure_cookie=config.is_production())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    register_exception_handlers(app)

    @app.on_event('startup')
    def initialize() -> None:
        configure_logging(config.LOG_LEVEL)
        config.validate_runtime_config()
        try:
            Base.metadata.create_all(bind=engine)
            ensure_appointment_schema()
        except SQLAlchemyError:
            logger.exception('Database initialization failed. Check DATABASE_URL.')

    @app.get('/')
    def root():
        return {'status': 'Clinic Appointments API Running'}

    app.include_router(auth_routes.router, prefix='/api/auth')
    app.include_router(slot_routes.router, prefix='/api/slots')
    app.include_router(appointment_routes.router, prefix='/api/appointments')
    app.include_router(payment_routes.router, prefix='/api/payments')
    app.include_router(doctor_routes.router, prefix='/api/doctors')
    app.include_router(catalog_routes.router, prefix='/api')
    return app


app = create_app()
