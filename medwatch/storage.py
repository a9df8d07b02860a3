import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from medwatch.config import get_settings
from medwatch.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    transcript: Mapped[str] = mapped_column(Text, nullable=False)
    review: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


@lru_cache(maxsize=1)
def _engine():
    url = get_settings().database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args)


@lru_cache(maxsize=1)
def _session_factory() -> sessionmaker:
    return sessionmaker(bind=_engine(), autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def reset_engine() -> None:
    """Drop cached engine/session factory, e.g. after DATABASE_URL changes."""
    if _engine.cache_info().currsize:
        _engine().dispose()
    _engine.cache_clear()
    _session_factory.cache_clear()


def init_db() -> None:
    Base.metadata.create_all(_engine())


@contextmanager
def db_transaction() -> Iterator[Session]:
    """
    Commits on success, rolls back on exception.

        with db_transaction() as session:
            session.add(report)
    """
    session = _session_factory()()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.warning("Database transaction failed, rolling back: %s", e)
        session.rollback()
        raise
    finally:
        session.close()


def save_report(report_id: str, transcript: str, review: str) -> Report:
    """
    Store a submitted report. Re-submitting the same id overwrites it, so a
    client may retry after a failure without creating duplicates.
    """
    try:
        with db_transaction() as session:
            report = session.merge(Report(id=report_id, transcript=transcript, review=review or ""))
            session.flush()
        logger.info("Saved report %s", report_id)
        return report
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"could not save report {report_id}: {exc}") from exc


def get_report(report_id: str) -> Optional[Report]:
    try:
        with db_transaction() as session:
            return session.get(Report, report_id)
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"could not load report {report_id}: {exc}") from exc
