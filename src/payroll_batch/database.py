"""Database engine, session management and the batch table."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import JSON, DateTime, Engine, Integer, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from payroll_batch.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class BatchRecord(Base):
    """One payroll batch, stored as a JSON document.

    status and pay_period are copied out of the document for listing.
    version is set by the repository on every save; the mapper issues each
    UPDATE as ``WHERE version = <read version>``.
    """

    __tablename__ = "payroll_batch"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pay_period: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


def make_engine(url: str | None = None, echo: bool = False) -> Engine:
    """Create a database engine. In-memory SQLite shares one connection across threads."""
    url = url or get_settings().database_url
    if url.startswith("sqlite") and (":memory:" in url or url == "sqlite://"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Get a database session, committing on success."""
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
