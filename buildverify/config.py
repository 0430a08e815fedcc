"""
Runtime settings read from environment variables.

Call env.load_env() first to pick up a .env file.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DB_PATH = "data/buildverify.db"
DEFAULT_LOG_DIR = "logs"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")



def check_stuck_window(stuck_minutes: int, verify_timeout: float) -> None:
    """
    Reject a reconcile window that a running verification can outlive.

    The sweep cannot see workers of other processes, so any job younger than
    the verify timeout may still be running.
    """
    if stuck_minutes * 60 <= verify_timeout:
        raise ValueError(
            f"BUILDVERIFY_STUCK_MINUTES ({stuck_minutes} min) must exceed "
            f"BUILDVERIFY_VERIFY_TIMEOUT ({verify_timeout:g} s)"
        )


@dataclass
class Settings:
    db_path: Path = Path(DEFAULT_DB_PATH)
    max_workers: int = 4
    write_retries: int = 3
    retry_base_delay: float = 0.5
    log_level: str = "INFO"
    log_dir: Path = Path(DEFAULT_LOG_DIR)
    verify_command: str = "solana-verify"
    verify_timeout: float = 3600.0
    stuck_minutes: int = 120

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            db_path=Path(os.getenv("BUILDVERIFY_DB_PATH", DEFAULT_DB_PATH)),
            max_workers=_env_int("BUILDVERIFY_MAX_WORKERS", 4, minimum=1),
            write_retries=_env_int("BUILDVERIFY_WRITE_RETRIES", 3),
            retry_base_delay=_env_float("BUILDVERIFY_RETRY_BASE_DELAY", 0.5),
            log_level=os.getenv("BUILDVERIFY_LOG_LEVEL", "INFO").upper(),
            log_dir=Path(os.getenv("BUILDVERIFY_LOG_DIR", DEFAULT_LOG_DIR)),
            verify_command=os.getenv("BUILDVERIFY_VERIFY_COMMAND", "solana-verify"),
            verify_timeout=_env_float("BUILDVERIFY_VERIFY_TIMEOUT", 3600.0),
            stuck_minutes=_env_int("BUILDVERIFY_STUCK_MINUTES", 120, minimum=1),
        )
        check_stuck_window(settings.stuck_minutes, settings.verify_timeout)
        return settings
