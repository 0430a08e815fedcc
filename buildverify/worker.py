"""
Verification worker.

A verifier is any callable `verify(request, job_id) -> VerifiedResult` that
raises on failure. It may run for a long time; the dispatcher calls it on its
background pool and never twice at once for the same job id.

CommandVerifier is the default: it shells out to the solana-verify CLI and
reads both program hashes from its output.
"""

import re
import subprocess
from typing import Callable, List, Optional

from .errors import WorkerError
from .logger import StructuredLogger, get_logger
from .models import VerificationRequest, VerifiedResult

Verifier = Callable[[VerificationRequest, str], VerifiedResult]

EXECUTABLE_HASH_RE = re.compile(r"Executable Program Hash from repo:\s*([0-9a-fA-F]+)")
ON_CHAIN_HASH_RE = re.compile(r"On-chain Program Hash:\s*([0-9a-fA-F]+)")


def build_verify_command(executable: str, request: VerificationRequest) -> List[str]:
    cmd = [executable, "verify-from-repo", "--program-id", request.program_id, request.repository]
    if request.commit_hash:
        cmd += ["--commit-hash", request.commit_hash]
    if request.lib_name:
        cmd += ["--library-name", request.lib_name]
    if request.base_image:
        cmd += ["--base-image", request.base_image]
    if request.mount_path:
        cmd += ["--mount-path", request.mount_path]
    if request.bpf_flag:
        cmd.append("--bpf")
    if request.cargo_args:
        cmd.append("--")
        cmd += list(request.cargo_args)
    return cmd


def parse_hashes(output: str) -> tuple[Optional[str], Optional[str]]:
    """Return (on_chain_hash, executable_hash) found in CLI output."""
    on_chain = ON_CHAIN_HASH_RE.search(output)
    executable = EXECUTABLE_HASH_RE.search(output)
    return (
        on_chain.group(1).lower() if on_chain else None,
        executable.group(1).lower() if executable else None,
    )


class CommandVerifier:
    """Run the verification CLI for one request."""

    def __init__(
        self,
        executable: str = "solana-verify",
        timeout: Optional[float] = 3600.0,
        logger: Optional[StructuredLogger] = None,
    ):
        self.executable = executable
        self.timeout = timeout
        self.logger = logger or get_logger()

    def __call__(self, request: VerificationRequest, job_id: str) -> VerifiedResult:
        cmd = build_verify_command(self.executable, request)
        self.logger.info("Starting verification build", job_id=job_id, program_id=request.program_id)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise WorkerError(f"Verification timed out after {self.timeout}s") from e
        except OSError as e:
            raise WorkerError(f"Could not run {self.executable}: {e}") from e

        output = f"{proc.stdout}\n{proc.stderr}"
        if proc.returncode != 0:
            tail = output.strip().splitlines()[-5:]
            raise WorkerError(
                f"{self.executable} exited with code {proc.returncode}: {' | '.join(tail)}"
            )

        on_chain_hash, executable_hash = parse_hashes(output)
        if not on_chain_hash or not executable_hash:
            raise WorkerError("Program hashes not found in verification output")

        return VerifiedResult(
            program_id=request.program_id,
            is_verified=on_chain_hash == executable_hash,
            on_chain_hash=on_chain_hash,
            executable_hash=executable_hash,
            job_id=job_id,
        )
