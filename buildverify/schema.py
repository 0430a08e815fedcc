from typing import Any, Dict, List
from urllib.parse import urlparse

REQUIRED_STR_FIELDS = ["repository", "program_id"]
OPTIONAL_STR_FIELDS = [
    "commit_hash",
    "lib_name",
    "base_image",
    "mount_path",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return bool(p.scheme and p.netloc)
    except ValueError:
        return False


def validate_request(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    if not isinstance(data, dict):
        return ["Request body must be a JSON object"]

    errors: List[str] = []

    # Required string fields
    for f in REQUIRED_STR_FIELDS:
        if f not in data or data[f] is None:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    # Optional strings: null or string
    for f in OPTIONAL_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    if data.get("bpf_flag") is not None and not isinstance(data["bpf_flag"], bool):
        errors.append("Field 'bpf_flag' must be a boolean if provided")

    cargo_args = data.get("cargo_args")
    if cargo_args is not None:
        if not isinstance(cargo_args, list) or not all(isinstance(a, str) for a in cargo_args):
            errors.append("Field 'cargo_args' must be a list of strings if provided")

    if _is_non_empty_str(data.get("repository")) and not _valid_url(data["repository"]):
        errors.append("Field 'repository' must be a valid absolute URL (scheme + host)")

    return errors
