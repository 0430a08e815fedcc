"""
Tests for database.py - SQLite schema and engine.
"""

import pytest
from datetime import timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from buildverify.database import BuildJob, VerifiedBuild, age_minutes, create_db_engine, init_database
from buildverify.models import utc_now


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates both tables."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        engine = create_db_engine(db_path)
        with Session(engine) as session:
            assert session.query(BuildJob).count() == 0
            assert session.query(VerifiedBuild).count() == 0
        engine.dispose()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_is_idempotent(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        init_database(db_path)
        assert db_path.exists()


class TestBuildJobTable:
    """Constraints on the build_jobs table."""

    @pytest.fixture
    def db_session(self, tmp_path):
        """Create a temporary database and return a session."""
        db_path = tmp_path / "test.db"
        init_database(db_path)
        engine = create_db_engine(db_path)
        with Session(engine) as session:
            yield session
        engine.dispose()

    def _job(self, job_id, request_hash="hash-1"):
        return BuildJob(
            id=job_id,
            request_hash=request_hash,
            repository="https://x/y",
            program_id="P1",
            status="in_progress",
        )

    def test_defaults(self, db_session):
        """Timestamps and bpf_flag get defaults on insert."""
        before = utc_now()
        db_session.add(self._job("job-1"))
        db_session.commit()

        saved = db_session.query(BuildJob).filter_by(id="job-1").first()
        assert saved.bpf_flag is False
        assert saved.cargo_args is None
        assert before <= saved.created_at <= utc_now()
        assert abs((saved.created_at - saved.updated_at).total_seconds()) < 1

    def test_duplicate_request_hash_fails(self, db_session):
        """The request fingerprint is unique."""
        db_session.add(self._job("job-1"))
        db_session.commit()

        db_session.add(self._job("job-2"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_missing_required_fields_fails(self, db_session):
        db_session.add(BuildJob(id="job-1"))
        with pytest.raises(IntegrityError):
            db_session.commit()


def test_age_minutes():
    now = utc_now()
    assert age_minutes(now - timedelta(minutes=90), now=now) == pytest.approx(90)
