import hashlib
import json

from .models import VerificationRequest


def request_fingerprint(request: VerificationRequest) -> str:
    # Equal requests (all fields) map to the same fingerprint
    canonical = json.dumps(request.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def repo_reference(repository: str, commit_hash: str | None) -> str:
    if commit_hash:
        return f"{repository}/commit/{commit_hash}"
    return repository
