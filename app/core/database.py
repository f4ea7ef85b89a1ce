from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import logging
import redis
from .config import settings
from .errors import StorageUnavailable

logger = logging.getLogger(__name__)

DATABASE_URL = settings.get_database_url

if DATABASE_URL.startswith("sqlite"):
    # SQLite (tests / local); writers wait on the file lock instead of failing fast
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    # PostgreSQL database setup with appropriate connection pool settings
    engine = create_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis setup - mock for testing
if settings.TESTING:
    # Use a simple dict-based mock for Redis in tests
    class RedisMock:
        def __init__(self):
            self.data = {}

        def set(self, key, value, nx=False, ex=None):
            if nx and key in self.data:
                return None
            self.data[key] = value
            return True

        def get(self, key):
            return self.data.get(key)

        def delete(self, key):
            if key in self.data:
                del self.data[key]
                return 1
            return 0

        def eval(self, script, numkeys, *keys_and_args):
            # Only the compare-and-delete lock release script is emulated
            key, token = keys_and_args[0], keys_and_args[numkeys]
            if self.data.get(key) == token:
                return self.delete(key)
            return 0

    redis_client = RedisMock()
else:
    # Real Redis client for production
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Database initialization
def init_db():
    """Initialize database tables."""
    from ..models import user, doctor, slot, appointment  # noqa: F401
    Base.metadata.create_all(bind=engine)

@contextmanager
def transaction(db: Session):
    """Commit on success, roll back on any error.

    Connection-level failures surface as ``StorageUnavailable`` so callers can
    tell a retryable outage from a business outcome or a programming error.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as e:
        db.rollback()
        if isinstance(e, (OperationalError, InterfaceError)) or e.connection_invalidated:
            logger.error(f"Database unavailable: {e}")
            raise StorageUnavailable("Database temporarily unavailable, please retry") from e
        raise
    except Exception:
        db.rollback()
        raise
