"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for job and verified-build storage.
"""

from datetime import datetime
from pathlib import Path

from sqlalchemy import Boolean, Column, DateTime, JSON, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from .models import utc_now

Base = declarative_base()


class BuildJob(Base):
    """One accepted verification job."""

    __tablename__ = "build_jobs"

    id = Column(String, primary_key=True)  # uuid4
    request_hash = Column(String, nullable=False, unique=True, index=True)  # sha256 of all request fields
    repository = Column(String, nullable=False)
    commit_hash = Column(String, nullable=True)
    program_id = Column(String, nullable=False, index=True)
    lib_name = Column(String, nullable=True)
    bpf_flag = Column(Boolean, nullable=False, default=False)
    base_image = Column(String, nullable=True)
    mount_path = Column(String, nullable=True)
    cargo_args = Column(JSON, nullable=True)
    status = Column(String, nullable=False, index=True)  # in_progress, completed, failed
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class VerifiedBuild(Base):
    """Latest verdict per on-chain program."""

    __tablename__ = "verified_builds"

    program_id = Column(String, primary_key=True)
    is_verified = Column(Boolean, nullable=False)
    on_chain_hash = Column(String, nullable=False)
    executable_hash = Column(String, nullable=False)
    verified_at = Column(DateTime, nullable=False, default=utc_now)
    job_id = Column(String, nullable=True)  # producing build_jobs.id


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine usable from the request threads and the worker pool.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy engine
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def age_minutes(created_at: datetime, now: datetime | None = None) -> float:
    now = now or utc_now()
    return (now - created_at).total_seconds() / 60
