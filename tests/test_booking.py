import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.database import SessionLocal
from app.core.errors import SlotAlreadyTaken, SlotNotFound, StorageUnavailable
from app.models.appointment import Appointment, AppointmentStatus
from app.schemas.appointment import RequesterInfo
from app.services.booking_service import BookingService
from app.services.slot_registry import SlotRegistry
from tests.conftest import RecordingNotifier

maria = RequesterInfo(name="María López", email="maria@example.com", phone="5551234567")
jose = RequesterInfo(name="José Pérez", email="jose@example.com", phone="5558889999")


class TestBook:

    def test_book_free_slot(self, db, slots, make_user, notifier):
        """Booking creates a scheduled appointment copying the slot's time."""
        patient = make_user()
        slot = slots[0]

        appointment = BookingService(db, notifier=notifier).book(
            slot.id, maria, "Valoración general", patient.id
        )

        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.slot_id == slot.id
        assert appointment.occurs_at == slot.starts_at
        assert appointment.doctor_id == slot.doctor_id
        assert appointment.user_id == patient.id
        assert not SlotRegistry(db).is_free(slot.id)

    def test_book_sends_confirmation(self, db, slots, notifier):
        appointment = BookingService(db, notifier=notifier).book(slots[0].id, maria, "Chequeo")

        assert len(notifier.sent) == 1
        recipient, snapshot, is_reminder = notifier.sent[0]
        assert recipient == "maria@example.com"
        assert snapshot.id == appointment.id
        assert snapshot.doctor_name == "Dr. Carlos Méndez"
        assert is_reminder is False

    def test_book_missing_slot(self, db, test_db, notifier):
        with pytest.raises(SlotNotFound):
            BookingService(db, notifier=notifier).book(999, maria, "Chequeo")
        assert notifier.sent == []

    def test_book_taken_slot(self, db, slots, notifier):
        service = BookingService(db, notifier=notifier)
        service.book(slots[0].id, maria, "Chequeo")

        with pytest.raises(SlotAlreadyTaken) as exc_info:
            service.book(slots[0].id, jose, "Revisión de piel")

        assert exc_info.value.slot_id == slots[0].id
        assert "no longer available" in exc_info.value.detail
        assert db.query(Appointment).count() == 1
        assert len(notifier.sent) == 1

    def test_failed_notification_keeps_booking(self, db, slots):
        notifier = RecordingNotifier(fail_for={"maria@example.com"})

        appointment = BookingService(db, notifier=notifier).book(slots[0].id, maria, "Chequeo")

        assert appointment.id is not None
        assert db.get(Appointment, appointment.id).status == AppointmentStatus.SCHEDULED
        assert notifier.sent == []

    def test_broken_dispatcher_keeps_booking(self, db, slots, notifier):
        def dispatch(func, *args):
            raise RuntimeError("queue full")

        appointment = BookingService(db, notifier=notifier, dispatch=dispatch).book(
            slots[0].id, maria, "Chequeo"
        )

        assert appointment.status == AppointmentStatus.SCHEDULED

    def test_dispatcher_defers_notification(self, db, slots, notifier):
        queued = []
        service = BookingService(db, notifier=notifier, dispatch=lambda f, *a: queued.append((f, a)))

        service.book(slots[0].id, maria, "Chequeo")
        assert notifier.sent == []

        func, args = queued[0]
        func(*args)
        assert len(notifier.sent) == 1

    def test_database_outage_is_retryable(self, db, slots, notifier, monkeypatch):
        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(StorageUnavailable) as exc_info:
            BookingService(db, notifier=notifier).book(slots[0].id, maria, "Chequeo")

        assert exc_info.value.retryable
        assert notifier.sent == []


class TestConcurrentBooking:

    def test_only_one_concurrent_booking_wins(self, slots, notifier):
        """Many simultaneous requests for one slot yield exactly one appointment."""
        slot_id = slots[0].id
        attempts = 8
        barrier = threading.Barrier(attempts)
        results = []
        lock = threading.Lock()

        def attempt(i):
            session = SessionLocal()
            requester = RequesterInfo(name=f"Paciente {i}", email=f"p{i}@example.com", phone="5550000000")
            try:
                barrier.wait()
                appointment = BookingService(session, notifier=notifier).book(slot_id, requester, "Consulta")
                outcome = ("booked", appointment.id)
            except SlotAlreadyTaken:
                outcome = ("taken", None)
            finally:
                session.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        booked = [r for r in results if r[0] == "booked"]
        taken = [r for r in results if r[0] == "taken"]
        assert len(booked) == 1
        assert len(taken) == attempts - 1

        session = SessionLocal()
        try:
            active = session.query(Appointment).filter(
                Appointment.slot_id == slot_id,
                Appointment.status != AppointmentStatus.CANCELLED
            ).all()
            assert [a.id for a in active] == [booked[0][1]]
        finally:
            session.close()
        assert len(notifier.sent) == 1


class TestSlotRegistry:

    def test_is_free_tracks_active_appointments(self, db, slots, notifier):
        registry = SlotRegistry(db)
        assert registry.is_free(slots[0].id)

        BookingService(db, notifier=notifier).book(slots[0].id, maria, "Chequeo")

        assert not registry.is_free(slots[0].id)
        assert registry.is_free(slots[1].id)

    def test_release_unlinks_active_appointment(self, db, slots, notifier):
        appointment = BookingService(db, notifier=notifier).book(slots[0].id, maria, "Chequeo")
        registry = SlotRegistry(db)

        released = registry.release(slots[0].id)
        db.commit()

        assert [a.id for a in released] == [appointment.id]
        assert db.get(Appointment, appointment.id).slot_id is None
        assert registry.is_free(slots[0].id)

    def test_release_free_slot_is_noop(self, db, slots):
        assert SlotRegistry(db).release(slots[0].id) == []

    def test_is_free_unknown_slot(self, db, test_db):
        with pytest.raises(SlotNotFound):
            SlotRegistry(db).is_free(42)

    def test_list_free_skips_taken_slots(self, db, slots, doctor, notifier):
        BookingService(db, notifier=notifier).book(slots[1].id, maria, "Chequeo")

        free = SlotRegistry(db).list_free(doctor.id)

        assert [s.id for s in free] == [slots[0].id, slots[2].id]

    def test_list_free_ignores_past_slots(self, db, doctor, make_slot):
        make_slot(starts_at=datetime.utcnow() - timedelta(days=1))
        upcoming = make_slot(starts_at=datetime.utcnow() + timedelta(days=1))

        assert [s.id for s in SlotRegistry(db).list_free(doctor.id)] == [upcoming.id]
