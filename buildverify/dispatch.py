"""
Dispatch service: idempotent job creation and background verification.

submit() answers every request from the store's current state:
- completed duplicate  -> verification report
- in_progress duplicate -> in-progress acknowledgment (fresh tracking id)
- failed duplicate     -> conflict, never an automatic retry
- no duplicate         -> persist a new job, start the verifier on the
                          background pool, acknowledge immediately

Background completion writes are retried with backoff and then absorbed;
they never reach a caller.
"""

import threading
import uuid
from dataclasses import replace
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Callable, Dict, Optional, Set

from .config import Settings
from .errors import (
    DuplicateLookupError,
    InconsistentStateError,
    InvalidTransitionError,
    PersistenceError,
    WorkerError,
)
from .logger import StructuredLogger, get_logger
from .models import DispatchOutcome, JobRecord, JobStatus, VerificationRequest, VerifiedResult
from .projection import (
    MSG_INSERT_FAILED,
    MSG_STARTED,
    in_progress_ack,
    internal_error,
    not_found,
    project_record,
    verification_report,
)
from .retry import RetryError, retry_call
from .storage import JobStore
from .worker import CommandVerifier, Verifier

MSG_RESULT_UNAVAILABLE = (
    "The verification result could not be read. Kindly try again after some time."
)
MSG_JOB_UNAVAILABLE = "The job could not be read. Kindly try again after some time."


def new_request_id() -> str:
    return str(uuid.uuid4())


class DispatchService:
    """Accept verification requests and run each distinct one exactly once."""

    def __init__(
        self,
        store: JobStore,
        verifier: Verifier,
        max_workers: int = 4,
        write_retries: int = 3,
        retry_base_delay: float = 0.5,
        logger: Optional[StructuredLogger] = None,
        id_factory: Callable[[], str] = new_request_id,
    ):
        self.store = store
        self.verifier = verifier
        self.write_retries = write_retries
        self.retry_base_delay = retry_base_delay
        self.logger = logger or get_logger()
        self._new_id = id_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="verify")
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}

    @classmethod
    def from_settings(cls, settings: Settings, verifier: Optional[Verifier] = None) -> "DispatchService":
        """Wire the store, verifier and logger from runtime settings."""
        logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
        store = JobStore(settings.db_path)
        if verifier is None:
            verifier = CommandVerifier(settings.verify_command, settings.verify_timeout, logger=logger)
        return cls(
            store,
            verifier,
            max_workers=settings.max_workers,
            write_retries=settings.write_retries,
            retry_base_delay=settings.retry_base_delay,
            logger=logger,
        )

    # Request path

    def submit(self, request: VerificationRequest) -> DispatchOutcome:
        self.logger.record_submission()
        request_id = self._new_id()

        try:
            existing = self.store.find_by_request_fields(request)
        except DuplicateLookupError as e:
            # Fail open: best-effort dedup, never block a request on it
            self.logger.warning(
                "Duplicate lookup failed, continuing as new request",
                program_id=request.program_id,
                error=str(e),
            )
            self.logger.record_error(type(e).__name__)
            existing = None

        if existing is not None:
            return self._answer_duplicate(existing, request, request_id)

        record = JobRecord(id=request_id, request=request)
        try:
            stored, created = self.store.insert_if_absent(record)
        except PersistenceError as e:
            self.logger.error("Error inserting into database", job_id=record.id, error=str(e))
            self.logger.record_error(type(e).__name__)
            return internal_error(MSG_INSERT_FAILED)

        if not created:
            # A concurrent identical request inserted first
            return self._answer_duplicate(stored, request, request_id)

        self.logger.info(
            "Inserted into database",
            job_id=stored.id,
            program_id=request.program_id,
            repository=request.repository,
        )
        self.logger.record_job_created()
        self._launch(stored)
        return in_progress_ack(request_id, MSG_STARTED, job_id=stored.id)

    def _answer_duplicate(
        self, existing: JobRecord, request: VerificationRequest, request_id: str
    ) -> DispatchOutcome:
        self.logger.record_duplicate(existing.status.value)
        self.logger.info(
            "Duplicate request",
            existing_job_id=existing.id,
            status=existing.status.value,
            program_id=request.program_id,
        )

        result = None
        if existing.status is JobStatus.COMPLETED:
            try:
                result = self.store.get_verified_result(request.program_id)
            except PersistenceError as e:
                self.logger.error("Error reading verified build", program_id=request.program_id, error=str(e))
                self.logger.record_error(type(e).__name__)
                return internal_error(MSG_RESULT_UNAVAILABLE)
            if result is None:
                err = InconsistentStateError(request.program_id)
                self.logger.error(str(err), job_id=existing.id)
                self.logger.record_error(type(err).__name__)

        return project_record(existing, result, request_id=request_id)

    def job_status(self, job_id: str) -> DispatchOutcome:
        """Project one stored job by its id."""
        try:
            record = self.store.get_job(job_id)
        except PersistenceError as e:
            self.logger.error("Error reading job", job_id=job_id, error=str(e))
            return internal_error(MSG_JOB_UNAVAILABLE)
        if record is None:
            return not_found(f"Job not found: {job_id}")

        result = None
        if record.status is JobStatus.COMPLETED:
            try:
                result = self.store.get_verified_result(record.request.program_id)
            except PersistenceError as e:
                self.logger.error("Error reading verified build", job_id=job_id, error=str(e))
                return internal_error(MSG_RESULT_UNAVAILABLE)
        return project_record(record, result)

    def program_status(self, program_id: str) -> DispatchOutcome:
        """Report the latest verdict for a program."""
        try:
            result = self.store.get_verified_result(program_id)
            record = self.store.find_latest_job(program_id, JobStatus.COMPLETED) if result else None
        except PersistenceError as e:
            self.logger.error("Error reading verified build", program_id=program_id, error=str(e))
            return internal_error(MSG_RESULT_UNAVAILABLE)
        if result is None or record is None:
            return not_found(f"No verified build found for program: {program_id}")
        return verification_report(record.request, result)

    # Background path

    def _launch(self, record: JobRecord) -> None:
        with self._lock:
            if record.id in self._in_flight:
                self.logger.warning("Verification already running, not launching again", job_id=record.id)
                return
            future = self._executor.submit(self._run_job, record)
            self._in_flight[record.id] = future
        future.add_done_callback(lambda f, job_id=record.id: self._forget(job_id, f))

    def _forget(self, job_id: str, future: Future) -> None:
        with self._lock:
            self._in_flight.pop(job_id, None)
        if not future.cancelled() and future.exception() is not None:
            self.logger.critical(
                "Background job crashed outside the completion handler",
                job_id=job_id,
                error=repr(future.exception()),
            )

    def _run_job(self, record: JobRecord) -> None:
        try:
            result = self.verifier(record.request, record.id)
        except Exception as e:  # the verifier is opaque; any failure fails the job
            err = e if isinstance(e, WorkerError) else WorkerError(f"{type(e).__name__}: {e}")
            self.logger.error("Error verifying build", job_id=record.id, error=str(err))
            self.logger.record_error(type(err).__name__)
            if self._write(self.store.update_status, record.id, JobStatus.FAILED, job_id=record.id):
                self.logger.record_job_failed()
            return

        self._on_success(record, result)

    def _on_success(self, record: JobRecord, result: VerifiedResult) -> None:
        if result.job_id != record.id:
            result = replace(result, job_id=record.id)
        # A lost result write must not block the status write
        self._write(self.store.upsert_verified_result, result, job_id=record.id)
        if self._write(self.store.update_status, record.id, JobStatus.COMPLETED, job_id=record.id):
            self.logger.record_job_completed()
            self.logger.info(
                "Build verification finished",
                job_id=record.id,
                program_id=result.program_id,
                is_verified=result.is_verified,
            )

    def _write(self, func: Callable, *args, job_id: str) -> bool:
        """Run a completion write with bounded retry. Failures are logged, not raised."""
        def on_retry(attempt, error, delay):
            self.logger.warning(
                f"Retrying {func.__name__}",
                job_id=job_id,
                attempt=attempt,
                delay=delay,
                error=str(error),
            )

        try:
            retry_call(
                func,
                *args,
                max_retries=self.write_retries,
                base_delay=self.retry_base_delay,
                exceptions=(PersistenceError,),
                on_retry=on_retry,
            )
            return True
        except RetryError as e:
            self.logger.error(f"{func.__name__} failed, giving up", job_id=job_id, error=str(e))
            self.logger.record_error(PersistenceError.__name__)
        except InvalidTransitionError as e:
            self.logger.error(f"{func.__name__} rejected", job_id=job_id, error=str(e))
            self.logger.record_error(type(e).__name__)
        return False

    # Lifecycle

    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until a job's background work is done. False on timeout."""
        with self._lock:
            future = self._in_flight.get(job_id)
        if future is None:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        return future in done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        if wait:
            self.store.close()
