"""Database configuration and session dependency."""

from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from examhub.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {
            "check_same_thread": False,
            "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    return {}


def build_engine(url: str):
    return create_engine(url, echo=settings.DATABASE_ECHO, connect_args=_connect_args(url))


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # models must be imported so their tables are registered on the metadata
    import examhub.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session
