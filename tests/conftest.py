"""
Pytest configuration and shared fixtures.
"""

import threading
from typing import Any, Dict, List, Optional

import pytest

from buildverify.dispatch import DispatchService
from buildverify.logger import StructuredLogger
from buildverify.models import VerificationRequest, VerifiedResult
from buildverify.storage import JobStore


class GatedVerifier:
    """Fake verifier that blocks until released, then returns or raises."""

    def __init__(self, result: Optional[VerifiedResult] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.gate = threading.Event()
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def release(self):
        self.gate.set()

    def __call__(self, request: VerificationRequest, job_id: str) -> VerifiedResult:
        with self._lock:
            self.calls.append(job_id)
        if not self.gate.wait(timeout=10):
            raise TimeoutError("verifier was never released")
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    """Logger with no handlers attached."""
    return StructuredLogger(name="buildverify-test", enable_file=False, enable_console=False)


@pytest.fixture
def valid_payload() -> Dict[str, Any]:
    """Valid verification request payload."""
    return {
        "repository": "https://x/y",
        "commit_hash": "abc123",
        "program_id": "P1",
        "lib_name": "l",
    }


@pytest.fixture
def sample_request(valid_payload) -> VerificationRequest:
    return VerificationRequest.from_dict(valid_payload)


@pytest.fixture
def verified_result() -> VerifiedResult:
    return VerifiedResult(program_id="P1", is_verified=True, on_chain_hash="h1", executable_hash="h1")


@pytest.fixture
def store(tmp_path):
    """Job store on a temporary SQLite database."""
    job_store = JobStore(tmp_path / "test.db")
    yield job_store
    job_store.close()


@pytest.fixture
def make_service(quiet_logger):
    """Factory for dispatch services; all are shut down after the test."""
    services = []

    def _make(store, verifier, **kwargs):
        kwargs.setdefault("max_workers", 4)
        kwargs.setdefault("retry_base_delay", 0)
        kwargs.setdefault("logger", quiet_logger)
        service = DispatchService(store, verifier, **kwargs)
        services.append(service)
        return service

    yield _make

    for service in services:
        service.shutdown(wait=True)
