"""Outbound patient notifications.

Delivery is best effort: every public method logs failures and reports them
through its return value, it never raises into the caller.
"""

import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from clinic_api.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 587
    username: str = ''
    password: str = ''
    use_tls: bool = True
    from_address: str = 'no-reply@clinic.local'

    @classmethod
    def from_config(cls) -> 'SmtpSettings':
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
            from_address=config.EMAIL_FROM_ADDRESS,
        )


@dataclass(frozen=True)
class AppointmentConfirmation:
    appointment_number: str
    patient_email: str
    patient_name: str
    doctor_name: str
    department_name: str
    service_name: str
    scheduled_at: datetime
    consultation_fee: str


def render_confirmation(details: AppointmentConfirmation) -> str:
    fields = [
        ('Appointment number', details.appointment_number),
        ('Doctor', details.doctor_name),
        ('Department', details.department_name),
        ('Service', details.service_name),
        ('Scheduled at', details.scheduled_at.strftime('%Y-%m-%d %H:%M %Z')),
        ('Consultation fee', details.consultation_fee),
    ]
    rows = ''.join(
        f'<tr><td>{html.escape(label)}</td><td>{html.escape(str(value))}</td></tr>' for label, value in fields
    )
    greeting = html.escape(details.patient_name or 'there')
    return (
        f'<h1>Appointment confirmed</h1>'
        f'<p>Hi {greeting}, your payment was received and your appointment is booked.</p>'
        f'<table>{rows}</table>'
    )


class Notifier:
    def __init__(self, smtp: SmtpSettings | None = None):
        self.smtp = smtp if smtp is not None else SmtpSettings.from_config()

    def send_email(self, to: str, subject: str, html_content: str) -> None:
        message = MIMEMultipart('alternative')
        message['Subject'] = subject
        message['From'] = self.smtp.from_address
        message['To'] = to
        message.attach(MIMEText(html_content, 'html'))

        if self.smtp.port == 465:
            server = smtplib.SMTP_SSL(self.smtp.host, self.smtp.port, context=ssl.create_default_context(), timeout=30)
        else:
            server = smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=30)
        try:
            if self.smtp.port != 465 and self.smtp.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp.username:
                server.login(self.smtp.username, self.smtp.password)
            server.sendmail(self.smtp.from_address, [to], message.as_string())
        finally:
            server.quit()

    def send_appointment_confirmation(self, details: AppointmentConfirmation) -> bool:
        if not self.smtp.host:
            logger.info(
                'SMTP not configured, skipping confirmation email for %s', details.appointment_number
            )
            return False
        try:
            self.send_email(
                details.patient_email,
                f'Appointment {details.appointment_number} confirmed',
                render_confirmation(details),
            )
        except (smtplib.SMTPException, OSError):
            logger.exception('Failed to send confirmation email for %s', details.appointment_number)
            return False
        logger.info('Confirmation email sent for %s', details.appointment_number)
        return True
