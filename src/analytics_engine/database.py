"""Database engine and session factory"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.analytics_engine.config import settings
from src.analytics_engine.models import Base


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None) -> None:
    """Create all analytics tables (tests and embedded use; production runs alembic)."""
    Base.metadata.create_all(bind=bind or engine)
