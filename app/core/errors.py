"""
Domain errors raised by the booking and lifecycle services.

Each error carries the HTTP status it maps to so the API layer can render
it with a single exception handler. Only ``StorageUnavailable`` is safe for
a caller to retry, and only by repeating the whole operation.
"""
from fastapi import status


class AppointmentError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "appointment_error"
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(AppointmentError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class SlotNotFound(NotFound):
    def __init__(self, slot_id: int):
        super().__init__(f"Slot {slot_id} does not exist")
        self.slot_id = slot_id


class AppointmentNotFound(NotFound):
    def __init__(self, appointment_id: int):
        super().__init__(f"Appointment {appointment_id} does not exist")
        self.appointment_id = appointment_id


class Conflict(AppointmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class SlotAlreadyTaken(Conflict):
    """Another active appointment already holds the slot."""

    def __init__(self, slot_id: int):
        super().__init__("Slot no longer available")
        self.slot_id = slot_id


class Forbidden(AppointmentError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class InvalidTransition(AppointmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, action: str, current_status):
        value = getattr(current_status, "value", current_status)
        super().__init__(f"Cannot {action} an appointment in state '{value}'")
        self.action = action
        self.current_status = current_status


class StorageUnavailable(AppointmentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "storage_unavailable"
    retryable = True
