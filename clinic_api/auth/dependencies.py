from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.orm import Session

from clinic_api.auth import jwt_handler
from clinic_api.core import config
from clinic_api.database import get_db
from clinic_api.models.user import User

security = HTTPBearer(auto_error=False)


def get_token_from_request(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    cookie_token = request.cookies.get(config.AUTH_COOKIE_NAME)
    if cookie_token:
        return cookie_token
    if credentials is not None:
        return credentials.credentials
    return None


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = get_token_from_request(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized (no token)")
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.get(User, int(subject))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_roles(*roles: str):
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return current_user

    return role_checker
