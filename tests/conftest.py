import os

os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

import threading
from datetime import datetime, timedelta

import pytest

from app.core.database import Base, SessionLocal, engine, init_db
from app.core.security import UserRole
from app.models.doctor import Doctor
from app.models.slot import Slot
from app.models.user import User
from app.services.authorization import Caller
from app.services.notifier import Notifier


class RecordingNotifier(Notifier):
    """Collects notifications instead of sending them."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def notify(self, recipient, snapshot, is_reminder=False):
        if recipient in self.fail_for:
            raise ConnectionError(f"mailbox {recipient} unreachable")
        with self._lock:
            self.sent.append((recipient, snapshot, is_reminder))


@pytest.fixture(scope="function")
def test_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.PATIENT, name=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            password_hash="not-a-real-hash",
            name=name or f"User {counter['n']}",
            role=role,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def doctor(db, make_user):
    account = make_user(role=UserRole.DOCTOR, name="Dr. Carlos Méndez")
    doc = Doctor(user_id=account.id, name="Dr. Carlos Méndez", specialty="Medicina General")
    db.add(doc)
    db.commit()
    return doc


@pytest.fixture
def make_slot(db, doctor):
    def _make(starts_at=None, doctor_id=None):
        slot = Slot(
            doctor_id=doctor_id or doctor.id,
            starts_at=starts_at or (datetime.utcnow() + timedelta(days=3)).replace(microsecond=0),
        )
        db.add(slot)
        db.commit()
        return slot

    return _make


@pytest.fixture
def slots(make_slot):
    base = (datetime.utcnow() + timedelta(days=3)).replace(minute=0, second=0, microsecond=0)
    return [make_slot(starts_at=base + timedelta(hours=i)) for i in range(3)]


def caller_for(user) -> Caller:
    return Caller(role=user.role, account_id=user.id)
