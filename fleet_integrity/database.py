# fleet_integrity/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL. All models are auto-imported here
so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from fleet_integrity.config import settings

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,          # Auto-reconnect if DB connection drops
    pool_size=10,
    max_overflow=20,
    echo=False,                  # Set True to log all SQL queries (debug only)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store():
    """FastAPI dependency — yields a RecordStore bound to a request-scoped session."""
    from fleet_integrity.services.record_store import RecordStore

    db = SessionLocal()
    try:
        yield RecordStore(db)
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from fleet_integrity.models.vehicle import Vehicle                   # noqa
    from fleet_integrity.models.driver import Driver                     # noqa
    from fleet_integrity.models.trip import Trip                         # noqa
    from fleet_integrity.models.maintenance_task import MaintenanceTask  # noqa
    from fleet_integrity.models.alert import Alert                       # noqa

    Base.metadata.create_all(bind=bind or engine)
