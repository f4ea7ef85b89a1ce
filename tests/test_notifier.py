from datetime import datetime

from app.models.appointment import AppointmentStatus
from app.schemas.appointment import AppointmentSnapshot
from app.services.notifier import LogNotifier, render_message
from tests.conftest import RecordingNotifier

snapshot = AppointmentSnapshot(
    id=7,
    name="María López",
    email="maria@example.com",
    reason="Valoración general",
    status=AppointmentStatus.SCHEDULED,
    occurs_at=datetime(2030, 3, 4, 9, 0),
    doctor_name="Dr. Carlos Méndez",
)


def test_confirmation_message():
    subject, text, html = render_message(snapshot, is_reminder=False)

    assert subject == "Confirmación de Cita Médica"
    assert "04/03/2030 09:00" in text
    assert "Dr. Carlos Méndez" in text
    assert "Valoración general" in html


def test_reminder_message():
    subject, text, _ = render_message(snapshot, is_reminder=True)

    assert subject == "Recordatorio de Cita Médica"
    assert text.startswith("Hola María López, te recordamos")


def test_deliver_safely_swallows_errors():
    notifier = RecordingNotifier(fail_for={"maria@example.com"})

    assert notifier.deliver_safely("maria@example.com", snapshot) is False
    assert notifier.deliver_safely("other@example.com", snapshot, True) is True
    assert notifier.sent == [("other@example.com", snapshot, True)]


def test_log_notifier_never_raises():
    assert LogNotifier().deliver_safely("maria@example.com", snapshot, True) is True
