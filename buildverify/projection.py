"""
Status projection: map stored job state to the outward response shapes.

All functions here are pure. The dispatcher decides which shape applies.
"""

from http import HTTPStatus
from typing import Optional

from .models import DispatchOutcome, JobRecord, JobStatus, VerificationRequest, VerifiedResult
from .normalize import repo_reference

MSG_VERIFIED = "On chain program verified"
MSG_NOT_VERIFIED = "On chain program not verified"
MSG_STARTED = "Build verification started"
MSG_ALREADY_IN_PROGRESS = "Build verification already in progress"
MSG_PREVIOUS_FAILED = (
    "The previous request has already been processed, but unfortunately, "
    "the verification process has failed."
)
MSG_INSERT_FAILED = (
    "An unforeseen database error has occurred, preventing the initiation of "
    "the build process. Kindly try again after some time."
)
MSG_INCONSISTENT = (
    "The build was marked as verified, but its verification result could not be found."
)


def verification_report(request: VerificationRequest, result: VerifiedResult) -> DispatchOutcome:
    return DispatchOutcome(
        status_code=HTTPStatus.OK,
        body={
            "is_verified": result.is_verified,
            "message": MSG_VERIFIED if result.is_verified else MSG_NOT_VERIFIED,
            "on_chain_hash": result.on_chain_hash,
            "executable_hash": result.executable_hash,
            "repo_url": repo_reference(request.repository, request.commit_hash),
        },
    )


def in_progress_ack(request_id: str, message: str, job_id: Optional[str] = None) -> DispatchOutcome:
    """Acknowledgment for an accepted or already running job.

    `job_id` is set only when this call created the job.
    """
    return DispatchOutcome(
        status_code=HTTPStatus.OK,
        body={
            "status": JobStatus.IN_PROGRESS.value,
            "request_id": request_id,
            "message": message,
        },
        job_id=job_id,
    )


def _error(status_code: int, message: str) -> DispatchOutcome:
    return DispatchOutcome(status_code=status_code, body={"status": "error", "error": message})


def failed_conflict() -> DispatchOutcome:
    return _error(HTTPStatus.CONFLICT, MSG_PREVIOUS_FAILED)


def internal_error(message: str) -> DispatchOutcome:
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, message)


def not_found(message: str) -> DispatchOutcome:
    return _error(HTTPStatus.NOT_FOUND, message)


def bad_request(message: str) -> DispatchOutcome:
    return _error(HTTPStatus.BAD_REQUEST, message)


def project_record(
    record: JobRecord,
    result: Optional[VerifiedResult],
    request_id: Optional[str] = None,
    in_progress_message: str = MSG_ALREADY_IN_PROGRESS,
) -> DispatchOutcome:
    """
    Project a stored job into a response.

    Args:
        record: Stored job
        result: Verified result for the job's program (only read for completed jobs)
        request_id: Identifier to echo in an in-progress acknowledgment
            (defaults to the job's own id)
        in_progress_message: Message for the in-progress acknowledgment
    """
    if record.status is JobStatus.COMPLETED:
        if result is None:
            return internal_error(MSG_INCONSISTENT)
        return verification_report(record.request, result)
    if record.status is JobStatus.FAILED:
        return failed_conflict()
    return in_progress_ack(request_id or record.id, in_progress_message)
