"""
SQLAlchemy 2.x engine and sessions for the reviews store.

Postgres in deployment; SQLite is accepted for local runs and tests.
The schema itself is owned by Alembic (see migrations/).
"""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from src.lib.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the review tables."""


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Sync routes run in the threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)

# Reviews stay readable after commit; the service returns them after writes
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session for FastAPI dependencies.

    Uncommitted work is discarded when the request ends.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
