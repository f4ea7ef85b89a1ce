"""
Clinic Appointment Service

FastAPI service for booking doctor slots: conflict-safe reservations,
an appointment lifecycle with role-based permissions, and periodic
appointment reminders.
"""

__version__ = "1.0.0"
