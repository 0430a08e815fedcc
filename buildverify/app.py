import argparse
import json
from pathlib import Path

from . import __version__
from .config import Settings, check_stuck_window
from .database import init_database
from .dispatch import DispatchService
from .env import load_env
from .models import DispatchOutcome, JobStatus, VerificationRequest
from .reconcile import reconcile_stuck_jobs
from .schema import validate_request
from .storage import JobStore


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "db", None):
        settings.db_path = Path(args.db)
    return settings


def _load_payload(path_str: str) -> dict:
    input_path = Path(path_str)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise SystemExit(f"Invalid JSON in {input_path}: {e}")


def _print_outcome(outcome: DispatchOutcome) -> None:
    print(f"HTTP {int(outcome.status_code)}")
    print(json.dumps(outcome.body, indent=2))
    if not outcome.ok:
        raise SystemExit(1)


def cmd_init_db(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    print(f"Database ready: {settings.db_path}")


def cmd_validate(args: argparse.Namespace) -> None:
    payload = _load_payload(args.input)
    errors = validate_request(payload)
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)
    print("Valid")


def cmd_submit(args: argparse.Namespace) -> None:
    payload = _load_payload(args.input)
    errors = validate_request(payload)
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)

    service = DispatchService.from_settings(_settings(args))
    try:
        outcome = service.submit(VerificationRequest.from_dict(payload))
        if outcome.created and args.wait:
            print(f"Waiting for job {outcome.job_id}...")
            if not service.wait(outcome.job_id, timeout=args.timeout):
                print("Timed out waiting; the job keeps its in_progress status.")
            outcome = service.job_status(outcome.job_id)
    finally:
        # Without --wait the process still finishes the running job before exit
        service.shutdown(wait=True)
    _print_outcome(outcome)


def cmd_job(args: argparse.Namespace) -> None:
    service = DispatchService.from_settings(_settings(args))
    try:
        outcome = service.job_status(args.id)
    finally:
        service.shutdown(wait=True)
    _print_outcome(outcome)


def cmd_status(args: argparse.Namespace) -> None:
    service = DispatchService.from_settings(_settings(args))
    try:
        outcome = service.program_status(args.program_id)
    finally:
        service.shutdown(wait=True)
    _print_outcome(outcome)


def cmd_list(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    store = JobStore(settings.db_path, create=False)
    status = JobStatus(args.status) if args.status else None
    jobs = store.list_jobs(status=status, limit=args.limit)
    store.close()
    if not jobs:
        print("No jobs in database.")
        return
    print(f"Found {len(jobs)} jobs in {settings.db_path}:\n")
    for job in jobs:
        req = job.request
        print(f"ID: {job.id}")
        print(f"  Status: {job.status.value}")
        print(f"  Program: {req.program_id}")
        print(f"  Repository: {req.repository}")
        print(f"  Commit: {req.commit_hash or '-'}")
        print(f"  Created: {job.created_at.isoformat()}")
        print()


def cmd_reconcile(args: argparse.Namespace) -> None:
    settings = _settings(args)
    minutes = args.minutes if args.minutes is not None else settings.stuck_minutes
    try:
        check_stuck_window(minutes, settings.verify_timeout)
    except ValueError as e:
        raise SystemExit(f"Refusing to reconcile: {e}")
    store = JobStore(settings.db_path)
    try:
        checked, completed, failed = reconcile_stuck_jobs(store, max_age_minutes=minutes)
    finally:
        store.close()
    print(f"Done. checked={checked} completed={completed} failed={failed}")


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    from .api import create_app

    app = create_app(_settings(args))
    uvicorn.run(app, host=args.host, port=args.port)


def main():
    # Load .env if present (BUILDVERIFY_DB_PATH, BUILDVERIFY_VERIFY_COMMAND, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="buildverify", description="Build verification dispatch service")
    parser.add_argument("--version", action="store_true", help="Show version")

    db_help = "Path to SQLite database (default: BUILDVERIFY_DB_PATH or data/buildverify.db)"
    subparsers = parser.add_subparsers(dest="command")

    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.add_argument("--db", help=db_help)
    ini.set_defaults(func=cmd_init_db)

    val = subparsers.add_parser("validate", help="Validate a verification request JSON")
    val.add_argument("--input", required=True, help="Path to request JSON input")
    val.set_defaults(func=cmd_validate)

    sub = subparsers.add_parser("submit", help="Submit a verification request JSON")
    sub.add_argument("--input", required=True, help="Path to request JSON input")
    sub.add_argument("--wait", action="store_true", help="Wait for a newly created job and print its final status")
    sub.add_argument("--timeout", type=float, help="Seconds to wait with --wait (default: no limit)")
    sub.add_argument("--db", help=db_help)
    sub.set_defaults(func=cmd_submit)

    job = subparsers.add_parser("job", help="Show the status of a job by id")
    job.add_argument("--id", required=True, help="Job id returned by submit")
    job.add_argument("--db", help=db_help)
    job.set_defaults(func=cmd_job)

    sts = subparsers.add_parser("status", help="Show the latest verdict for a program")
    sts.add_argument("--program-id", required=True, help="On-chain program id")
    sts.add_argument("--db", help=db_help)
    sts.set_defaults(func=cmd_status)

    lst = subparsers.add_parser("list", help="List stored jobs, newest first")
    lst.add_argument("--status", choices=[s.value for s in JobStatus], help="Only jobs with this status")
    lst.add_argument("--limit", type=int, default=50, help="Maximum jobs to show (default: 50)")
    lst.add_argument("--db", help=db_help)
    lst.set_defaults(func=cmd_list)

    rec = subparsers.add_parser("reconcile", help="Settle jobs stuck in in_progress")
    rec.add_argument("--minutes", type=int, help="Minimum job age in minutes (default: BUILDVERIFY_STUCK_MINUTES or 120)")
    rec.add_argument("--db", help=db_help)
    rec.set_defaults(func=cmd_reconcile)

    srv = subparsers.add_parser("serve", help="Run the HTTP API")
    srv.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    srv.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    srv.add_argument("--db", help=db_help)
    srv.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
