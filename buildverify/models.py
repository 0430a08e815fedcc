"""
Data model for verification jobs.

VerificationRequest is the caller's payload and the dedup identity.
JobRecord is the stored job; only its status ever changes.
VerifiedResult is the verdict the worker produced for a program.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

REQUEST_FIELDS = (
    "repository",
    "commit_hash",
    "program_id",
    "lib_name",
    "bpf_flag",
    "base_image",
    "mount_path",
    "cargo_args",
)


class JobStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.IN_PROGRESS


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class VerificationRequest:
    repository: str
    program_id: str
    commit_hash: Optional[str] = None
    lib_name: Optional[str] = None
    bpf_flag: bool = False
    base_image: Optional[str] = None
    mount_path: Optional[str] = None
    cargo_args: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationRequest":
        """Build a request from a validated payload dict."""
        cargo_args = data.get("cargo_args")
        return cls(
            repository=data["repository"],
            program_id=data["program_id"],
            commit_hash=data.get("commit_hash"),
            lib_name=data.get("lib_name"),
            bpf_flag=bool(data.get("bpf_flag") or False),
            base_image=data.get("base_image"),
            mount_path=data.get("mount_path"),
            cargo_args=tuple(cargo_args) if cargo_args is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in REQUEST_FIELDS}
        if self.cargo_args is not None:
            data["cargo_args"] = list(self.cargo_args)
        return data


@dataclass
class JobRecord:
    id: str
    request: VerificationRequest
    status: JobStatus = JobStatus.IN_PROGRESS
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class VerifiedResult:
    program_id: str
    is_verified: bool
    on_chain_hash: str
    executable_hash: str
    verified_at: datetime = field(default_factory=utc_now)
    job_id: Optional[str] = None  # job whose worker produced the verdict


@dataclass
class DispatchOutcome:
    """Response shape plus the HTTP status class it maps to."""

    status_code: int
    body: Dict[str, Any]
    job_id: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.job_id is not None

    @property
    def ok(self) -> bool:
        return self.status_code == HTTPStatus.OK
