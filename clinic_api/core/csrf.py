"""Double-submit cookie CSRF protection.

Safe requests get a ``csrf_token`` cookie if they lack one. State-changing
requests must echo that cookie in the ``X-CSRF-Token`` header unless their
path is on the exempt list (auth entry points and gateway callbacks).
"""

import logging
import secrets
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'X-CSRF-Token'
CSRF_COOKIE_MAX_AGE = 15 * 60
PROTECTED_METHODS = {'POST', 'PUT', 'PATCH', 'DELETE'}

EXEMPT_PATHS = (
    '/api/payments/esewa/success',
    '/api/payments/esewa/failure',
)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def is_path_exempt(path: str) -> bool:
    return any(path == exempt or path.startswith(f'{exempt}/') for exempt in EXEMPT_PATHS)


def _reject(message: str) -> JSONResponse:
    return JSONResponse(status_code=403, content={'success': False, 'message': message})


def _sets_csrf_cookie(response: Response) -> bool:
    return any(
        value.startswith(f'{CSRF_COOKIE_NAME}=')
        for key, value in response.headers.items()
        if key.lower() == 'set-cookie'
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enabled: bool = True, secure_cookie: bool = False):
        super().__init__(app)
        self.enabled = enabled
        self.secure_cookie = secure_cookie

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        csrf_cookie = request.cookies.get(CSRF_COOKIE_NAME)

        if self.enabled and request.method in PROTECTED_METHODS and not is_path_exempt(request.url.path):
            csrf_header = request.headers.get(CSRF_HEADER_NAME)
            if not csrf_cookie or not csrf_header:
                logger.warning('CSRF token missing for %s %s', request.method, request.url.path)
                return _reject('CSRF token missing')
            if not secrets.compare_digest(csrf_cookie, csrf_header):
                logger.warning('CSRF token mismatch for %s %s', request.method, request.url.path)
                return _reject('Invalid CSRF token')

        response = await call_next(request)

        if not csrf_cookie and request.method not in PROTECTED_METHODS and not _sets_csrf_cookie(response):
            set_csrf_cookie(response, generate_csrf_token(), secure=self.secure_cookie)
        return response


def set_csrf_cookie(response: Response, token: str, secure: bool = False) -> None:
    # readable by the SPA so it can echo the value in the header
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        secure=secure,
        samesite='lax',
        max_age=CSRF_COOKIE_MAX_AGE,
        path='/',
    )
