"""Database bootstrap helpers for the scheduler collections."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def create_session_factory(dsn: str, **engine_kwargs) -> sessionmaker:
    """Build one engine per process and return its session factory."""

    engine = create_engine(dsn, pool_pre_ping=True, **engine_kwargs)
    # `expire_on_commit=False` keeps rows readable after commit in the driver.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
