"""eSewa ePay v2 form signing and callback verification.

eSewa signs ``key=value`` pairs joined with commas, in the order it lists in
``signed_field_names``, with HMAC-SHA256 and base64 encodes the digest.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

logger = logging.getLogger(__name__)

REQUEST_SIGNED_FIELDS = ('total_amount', 'transaction_uuid', 'product_code')


class CallbackDecodeError(ValueError):
    """The callback payload could not be decoded into fields."""


def format_amount(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def amounts_match(reported, expected) -> bool:
    """Compare two money values at 2-decimal precision; unparsable input never matches."""
    try:
        return format_amount(reported) == format_amount(expected)
    except (InvalidOperation, ValueError, TypeError):
        return False


def compute_signature(message: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('utf-8')


def build_signature_message(fields: dict, field_names) -> str:
    return ','.join(f'{name}={fields[name]}' for name in field_names)


def generate_transaction_uuid() -> str:
    return f'CLN-{int(time.time() * 1000)}-{secrets.randbelow(10000):04d}'


def build_payment_form(
    *,
    total_amount,
    transaction_uuid: str,
    product_code: str,
    success_url: str,
    failure_url: str,
    secret_key: str,
) -> dict:
    formatted_amount = format_amount(total_amount)
    fields = {
        'amount': formatted_amount,
        'tax_amount': '0',
        'product_service_charge': '0',
        'product_delivery_charge': '0',
        'total_amount': formatted_amount,
        'transaction_uuid': transaction_uuid,
        'product_code': product_code,
        'success_url': success_url,
        'failure_url': failure_url,
        'signed_field_names': ','.join(REQUEST_SIGNED_FIELDS),
    }
    fields['signature'] = compute_signature(build_signature_message(fields, REQUEST_SIGNED_FIELDS), secret_key)
    return fields


def decode_callback_payload(params: dict) -> dict:
    """Return the callback fields, unpacking eSewa's base64 ``data`` blob if present."""
    encoded = params.get('data')
    if not encoded:
        return dict(params)

    try:
        decoded = base64.b64decode(encoded, validate=False)
        payload = json.loads(decoded.decode('utf-8'))
    except ValueError as exc:
        raise CallbackDecodeError('Callback data is not base64-encoded JSON') from exc

    if not isinstance(payload, dict):
        raise CallbackDecodeError('Callback data must be a JSON object')
    return payload


def verify_callback_signature(payload: dict, secret_key: str) -> bool:
    """Check ``payload['signature']`` against the fields eSewa says it signed."""
    signature = payload.get('signature')
    signed_field_names = payload.get('signed_field_names')
    if not isinstance(signature, str) or not signature:
        return False
    if not isinstance(signed_field_names, str) or not signed_field_names.strip():
        return False

    field_names = [name.strip() for name in signed_field_names.split(',') if name.strip()]
    if any(name not in payload for name in field_names):
        logger.warning('eSewa callback is missing signed fields: %s', signed_field_names)
        return False

    expected = compute_signature(build_signature_message(payload, field_names), secret_key)
    return hmac.compare_digest(expected, signature)
