"""
Appointment notifications.

Delivery is best effort: callers go through ``deliver_safely`` so that a
failing mail server never leaks into a booking or a reminder scan.
"""
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from ..core.config import settings
from ..schemas.appointment import AppointmentSnapshot

logger = logging.getLogger(__name__)


def _format_when(snapshot: AppointmentSnapshot) -> str:
    return snapshot.occurs_at.strftime("%d/%m/%Y %H:%M")


def render_message(snapshot: AppointmentSnapshot, is_reminder: bool) -> tuple:
    """Build (subject, text, html) for a confirmation or a reminder."""
    when = _format_when(snapshot)
    with_doctor = f" con {snapshot.doctor_name}" if snapshot.doctor_name else ""
    if is_reminder:
        subject = "Recordatorio de Cita Médica"
        lead = f"te recordamos tu cita{with_doctor} el {when}"
    else:
        subject = "Confirmación de Cita Médica"
        lead = f"tu cita{with_doctor} ha sido agendada para el {when}"

    text = f"Hola {snapshot.name}, {lead}. Motivo: {snapshot.reason}."
    html = (
        f"<h3>Hola {snapshot.name},</h3>"
        f"<p>{lead[0].upper()}{lead[1:]}.</p>"
        f"<p><strong>Motivo:</strong> {snapshot.reason}</p>"
        "<hr /><p>Gracias por confiar en nosotros.</p>"
    )
    return subject, text, html


class Notifier:
    """Interface: send one notification about one appointment."""

    def notify(self, recipient: str, snapshot: AppointmentSnapshot, is_reminder: bool = False) -> None:
        raise NotImplementedError

    def deliver_safely(self, recipient: str, snapshot: AppointmentSnapshot, is_reminder: bool = False) -> bool:
        """Send and swallow delivery errors; returns whether it was sent."""
        kind = "reminder" if is_reminder else "confirmation"
        try:
            self.notify(recipient, snapshot, is_reminder)
        except Exception as e:
            logger.error(
                f"Failed to send {kind} for appointment {snapshot.id} to {recipient}: {e}"
            )
            return False
        logger.info(f"Sent {kind} for appointment {snapshot.id} to {recipient}")
        return True


class LogNotifier(Notifier):
    """Writes notifications to the log instead of sending them."""

    def notify(self, recipient, snapshot, is_reminder=False):
        subject, text, _ = render_message(snapshot, is_reminder)
        logger.info(f"[DRY RUN EMAIL] to={recipient} subject={subject} body={text}")


class SMTPNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = settings.EMAIL_FROM,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def notify(self, recipient, snapshot, is_reminder=False):
        subject, text, html = render_message(snapshot, is_reminder)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = recipient
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls(context=ssl.create_default_context())
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Notifier configured from settings (SMTP when SMTP_HOST is set)."""
    global _notifier
    if _notifier is None:
        if settings.SMTP_HOST and not settings.TESTING:
            _notifier = SMTPNotifier(
                host=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                user=settings.SMTP_USER,
                password=settings.SMTP_PASSWORD,
            )
        else:
            _notifier = LogNotifier()
    return _notifier
