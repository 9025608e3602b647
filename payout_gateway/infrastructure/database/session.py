"""Database session management with connection pooling"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from payout_gateway.config import settings


def _connect_args(database_url: str) -> dict:
    """Server-side statement timeout so no store call blocks indefinitely"""
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={settings.store_timeout_ms}"}
    return {}


# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
    pool_timeout=settings.store_timeout_ms / 1000,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
