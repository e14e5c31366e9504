import logging
from typing import Any

audit_logger = logging.getLogger('clinic_api.audit')


def log_security_event(event: str, **details: Any) -> None:
    """Record a security-relevant event on the audit logger.

    ``None`` values are dropped so call sites can pass optional context
    without branching.
    """
    payload = {key: value for key, value in details.items() if value is not None}
    audit_logger.info('%s %s', event, payload, extra={'event': event, 'details': payload})


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
