from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings
from .dispatch import DispatchService
from .models import DispatchOutcome, VerificationRequest
from .projection import bad_request
from .schema import validate_request


def _respond(outcome: DispatchOutcome) -> JSONResponse:
    return JSONResponse(status_code=int(outcome.status_code), content=outcome.body)


def create_app(settings: Optional[Settings] = None, service: Optional[DispatchService] = None) -> FastAPI:
    """
    Build the HTTP app around a dispatch service.

    A service passed in is owned by the caller; one built here from
    `settings` is shut down with the app.
    """
    owns_service = service is None
    if service is None:
        service = DispatchService.from_settings(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_service:
            # Unfinished jobs stay in_progress for the reconciliation sweep
            service.shutdown(wait=False)

    app = FastAPI(
        title="Build Verification API",
        description="Verify that on-chain programs match the build of a source repository.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    @app.post("/verify", summary="Verify a program build")
    def verify(payload: Any = Body(...)):
        """
        Start a verification, or answer from an earlier identical request.

        Returns the verification report for a finished job, an in-progress
        acknowledgment for a new or running job, or a conflict when the
        earlier attempt failed.
        """
        errors = validate_request(payload)
        if errors:
            outcome = bad_request("; ".join(errors))
            outcome.body["errors"] = errors
            return _respond(outcome)
        return _respond(service.submit(VerificationRequest.from_dict(payload)))

    @app.get("/job/{job_id}", summary="Job status")
    def job(job_id: str):
        return _respond(service.job_status(job_id))

    @app.get("/status/{program_id}", summary="Latest verdict for a program")
    def status(program_id: str):
        return _respond(service.program_status(program_id))

    @app.get("/health", summary="Health check")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "jobs_in_flight": len(service.in_flight())}

    return app

