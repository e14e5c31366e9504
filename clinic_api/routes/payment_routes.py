import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic_api.auth.dependencies import require_roles
from clinic_api.core import config
from clinic_api.core.rate_limit import client_ip, create_rate_limiter
from clinic_api.database import get_db
from clinic_api.models.user import User
from clinic_api.services import payments as payment_service
from clinic_api.services.appointment_status import ROLE_PATIENT

router = APIRouter(tags=['payments'])
logger = logging.getLogger(__name__)

payment_rate_limiter = create_rate_limiter(
    limit=config.RATE_LIMIT_PAYMENT_PER_HOUR,
    window_seconds=3600,
    key_prefix='rate_limit:payment',
)


class InitiatePaymentRequest(BaseModel):
    appointment_id: int = Field(alias='appointmentId')

    class Config:
        populate_by_name = True


class InitiatePaymentResponse(BaseModel):
    success: bool = True
    data: dict


class PaymentStatusResponse(BaseModel):
    success: bool = True
    data: dict


def callback_base_url(request: Request) -> str:
    if config.PUBLIC_API_BASE_URL:
        return f'{config.PUBLIC_API_BASE_URL}/api/payments/esewa'
    return str(request.url_for('esewa_success')).rsplit('/', 1)[0]


async def read_callback_params(request: Request) -> dict:
    """eSewa redirects with query parameters; form posts are merged on top."""
    params = dict(request.query_params)
    if request.method == 'POST':
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def success_redirect(appointment_id: int) -> RedirectResponse:
    query = urlencode({'appointmentId': appointment_id})
    return RedirectResponse(f'{config.FRONTEND_URL}/payment/success?{query}', status_code=302)


def failure_redirect() -> RedirectResponse:
    return RedirectResponse(f'{config.FRONTEND_URL}/payment/failure', status_code=302)


@router.post(
    '/esewa/initiate',
    response_model=InitiatePaymentResponse,
    dependencies=[Depends(payment_rate_limiter)],
)
def initiate_esewa_payment(
    payload: InitiatePaymentRequest,
    request: Request,
    current_user: User = Depends(require_roles(ROLE_PATIENT)),
    db: Session = Depends(get_db),
):
    data = payment_service.initiate_payment(
        db,
        payload.appointment_id,
        current_user,
        callback_base_url(request),
    )
    return InitiatePaymentResponse(data=data)


@router.api_route('/esewa/success', methods=['GET', 'POST'], name='esewa_success')
async def esewa_success(request: Request, db: Session = Depends(get_db)):
    try:
        params = await read_callback_params(request)
        outcome = payment_service.confirm_payment(
            db,
            params,
            notifier=request.app.state.notifier,
            client_ip=client_ip(request),
        )
    except Exception:
        logger.exception('eSewa success callback could not be processed')
        return failure_redirect()

    if not outcome.success:
        logger.warning('eSewa success callback rejected: %s', outcome.reason)
        return failure_redirect()
    return success_redirect(outcome.appointment_id)


@router.api_route('/esewa/failure', methods=['GET', 'POST'])
async def esewa_failure(request: Request, db: Session = Depends(get_db)):
    try:
        params = await read_callback_params(request)
        payment_service.record_payment_failure(db, params, client_ip=client_ip(request))
    except Exception:
        logger.exception('eSewa failure callback could not be processed')
    return failure_redirect()


@router.get('/verify/{appointment_id}', response_model=PaymentStatusResponse)
def verify_payment(
    appointment_id: int,
    current_user: User = Depends(require_roles(ROLE_PATIENT)),
    db: Session = Depends(get_db),
):
    return PaymentStatusResponse(data=payment_service.get_payment_status(db, appointment_id, current_user))
