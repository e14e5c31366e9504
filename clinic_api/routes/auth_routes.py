from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clinic_api.auth.dependencies import get_current_user
from clinic_api.core import config
from clinic_api.core.csrf import CSRF_COOKIE_NAME, generate_csrf_token, set_csrf_cookie
from clinic_api.models.user import User

router = APIRouter(tags=['auth'])


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone: str | None = None
    role: str

    class Config:
        from_attributes = True


class UserEnvelope(BaseModel):
    success: bool = True
    data: dict[str, UserResponse]


@router.get('/me', response_model=UserEnvelope)
def me(current_user: User = Depends(get_current_user)):
    return UserEnvelope(data={'user': UserResponse.model_validate(current_user)})


@router.get('/csrf-token')
def csrf_token(request: Request):
    token = request.cookies.get(CSRF_COOKIE_NAME) or generate_csrf_token()
    response = JSONResponse({'success': True, 'data': {'csrfToken': token}})
    set_csrf_cookie(response, token, secure=config.is_production())
    return response
