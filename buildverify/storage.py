"""
Job record store.

Responsibilities:
- CRUD operations for build_jobs and verified_builds.
- Atomic insert-if-absent keyed by the request fingerprint.
- Translate SQLAlchemy errors into the buildverify error taxonomy.

Non-Responsibilities:
- No dedup policy.
- No response shaping.

Invariant:
Once a job reaches a terminal status it never changes again.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import BuildJob, VerifiedBuild, create_db_engine, init_database
from .errors import DuplicateLookupError, InvalidTransitionError, PersistenceError
from .models import JobRecord, JobStatus, VerificationRequest, VerifiedResult, utc_now
from .normalize import request_fingerprint


def _to_record(row: BuildJob) -> JobRecord:
    request = VerificationRequest(
        repository=row.repository,
        program_id=row.program_id,
        commit_hash=row.commit_hash,
        lib_name=row.lib_name,
        bpf_flag=bool(row.bpf_flag),
        base_image=row.base_image,
        mount_path=row.mount_path,
        cargo_args=tuple(row.cargo_args) if row.cargo_args is not None else None,
    )
    return JobRecord(
        id=row.id,
        request=request,
        status=JobStatus(row.status),
        created_at=row.created_at,
    )


def _to_row(record: JobRecord) -> BuildJob:
    req = record.request
    return BuildJob(
        id=record.id,
        request_hash=request_fingerprint(req),
        repository=req.repository,
        commit_hash=req.commit_hash,
        program_id=req.program_id,
        lib_name=req.lib_name,
        bpf_flag=req.bpf_flag,
        base_image=req.base_image,
        mount_path=req.mount_path,
        cargo_args=list(req.cargo_args) if req.cargo_args is not None else None,
        status=record.status.value,
        created_at=record.created_at,
        updated_at=record.created_at,
    )


def _to_result(row: VerifiedBuild) -> VerifiedResult:
    return VerifiedResult(
        program_id=row.program_id,
        is_verified=bool(row.is_verified),
        on_chain_hash=row.on_chain_hash,
        executable_hash=row.executable_hash,
        verified_at=row.verified_at,
        job_id=row.job_id,
    )


class JobStore:
    """SQLite-backed store for job records and verified results."""

    def __init__(self, db_path: Path, create: bool = True):
        self.db_path = Path(db_path)
        if create:
            init_database(self.db_path)
        self.engine = create_db_engine(self.db_path)
        self._Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    # Job records

    def find_by_request_fields(self, request: VerificationRequest) -> Optional[JobRecord]:
        """Return the newest job whose request fields all equal `request`."""
        try:
            with self._Session() as session:
                row = (
                    session.query(BuildJob)
                    .filter_by(request_hash=request_fingerprint(request))
                    .order_by(BuildJob.created_at.desc())
                    .first()
                )
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise DuplicateLookupError(f"Duplicate lookup failed: {e}") from e

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        try:
            with self._Session() as session:
                row = session.get(BuildJob, job_id)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Job lookup failed for {job_id}: {e}") from e

    def insert(self, record: JobRecord) -> None:
        try:
            with self._Session() as session:
                session.add(_to_row(record))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Insert failed for job {record.id}: {e}") from e

    def insert_if_absent(self, record: JobRecord) -> Tuple[JobRecord, bool]:
        """
        Insert `record` unless a job with the same request fingerprint exists.

        Returns:
            Tuple of (stored record, created). When another job won the
            fingerprint, the stored record is that job.

        Raises:
            PersistenceError: On any other database failure
        """
        try:
            with self._Session() as session:
                session.add(_to_row(record))
                session.commit()
            return record, True
        except IntegrityError as e:
            existing = self._find_by_fingerprint(request_fingerprint(record.request))
            if existing is None:
                # Not a fingerprint collision (e.g. duplicate id)
                raise PersistenceError(f"Insert failed for job {record.id}: {e}") from e
            return existing, False
        except SQLAlchemyError as e:
            raise PersistenceError(f"Insert failed for job {record.id}: {e}") from e

    def _find_by_fingerprint(self, fingerprint: str) -> Optional[JobRecord]:
        try:
            with self._Session() as session:
                row = session.query(BuildJob).filter_by(request_hash=fingerprint).first()
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Fingerprint lookup failed: {e}") from e

    def update_status(self, job_id: str, status: JobStatus) -> None:
        """Move a job out of in_progress. Terminal statuses are final."""
        if not status.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} cannot move to {status.value}")
        try:
            with self._Session() as session:
                # Conditional update: only an in_progress row can move
                updated = (
                    session.query(BuildJob)
                    .filter_by(id=job_id, status=JobStatus.IN_PROGRESS.value)
                    .update({"status": status.value, "updated_at": utc_now()}, synchronize_session=False)
                )
                session.commit()
                if updated:
                    return
                row = session.get(BuildJob, job_id)
                if row is None:
                    raise InvalidTransitionError(f"Job not found: {job_id}")
                raise InvalidTransitionError(
                    f"Job {job_id} is already {row.status}, cannot move to {status.value}"
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Status update failed for job {job_id}: {e}") from e

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[JobRecord]:
        try:
            with self._Session() as session:
                query = session.query(BuildJob)
                if status is not None:
                    query = query.filter_by(status=status.value)
                rows = query.order_by(BuildJob.created_at.desc()).limit(limit).all()
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Job listing failed: {e}") from e

    def find_latest_job(self, program_id: str, status: Optional[JobStatus] = None) -> Optional[JobRecord]:
        try:
            with self._Session() as session:
                query = session.query(BuildJob).filter_by(program_id=program_id)
                if status is not None:
                    query = query.filter_by(status=status.value)
                row = query.order_by(BuildJob.updated_at.desc()).first()
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Job lookup failed for program {program_id}: {e}") from e

    def find_stuck_jobs(self, older_than: timedelta, now: Optional[datetime] = None) -> List[JobRecord]:
        """Return in_progress jobs created before `now - older_than`, oldest first."""
        cutoff = (now or utc_now()) - older_than
        try:
            with self._Session() as session:
                rows = (
                    session.query(BuildJob)
                    .filter(BuildJob.status == JobStatus.IN_PROGRESS.value)
                    .filter(BuildJob.created_at < cutoff)
                    .order_by(BuildJob.created_at.asc())
                    .all()
                )
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Stuck job query failed: {e}") from e

    # Verified results

    def get_verified_result(self, program_id: str) -> Optional[VerifiedResult]:
        try:
            with self._Session() as session:
                row = session.get(VerifiedBuild, program_id)
                return _to_result(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Result lookup failed for {program_id}: {e}") from e

    def upsert_verified_result(self, result: VerifiedResult) -> None:
        """Write the verdict for a program; the last writer wins."""
        try:
            with self._Session() as session:
                row = session.get(VerifiedBuild, result.program_id)
                if row is None:
                    row = VerifiedBuild(program_id=result.program_id)
                    session.add(row)
                row.is_verified = result.is_verified
                row.on_chain_hash = result.on_chain_hash
                row.executable_hash = result.executable_hash
                row.verified_at = result.verified_at
                row.job_id = result.job_id
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Result write failed for {result.program_id}: {e}") from e
