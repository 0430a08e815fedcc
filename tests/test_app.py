"""Tests for the command-line interface."""

import json
import sys
from datetime import timedelta

import pytest

from buildverify.app import main
from buildverify.logger import reset_logger
from buildverify.models import JobRecord, JobStatus, VerificationRequest, utc_now
from buildverify.storage import JobStore


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("BUILDVERIFY_DB_PATH", "BUILDVERIFY_VERIFY_TIMEOUT", "BUILDVERIFY_STUCK_MINUTES"):
        monkeypatch.delenv(name, raising=False)
    reset_logger()
    yield
    reset_logger()


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["buildverify", *args])
    main()


def test_version(monkeypatch, capsys):
    run_cli(monkeypatch, "--version")
    assert capsys.readouterr().out.strip() == "0.1.0"


def test_init_db(monkeypatch, tmp_path, capsys):
    db_path = tmp_path / "data" / "jobs.db"
    run_cli(monkeypatch, "init-db", "--db", str(db_path))
    assert db_path.exists()
    assert "Database ready" in capsys.readouterr().out


def test_validate(monkeypatch, tmp_path, capsys, valid_payload):
    good = tmp_path / "good.json"
    good.write_text(json.dumps(valid_payload))
    run_cli(monkeypatch, "validate", "--input", str(good))
    assert capsys.readouterr().out.strip() == "Valid"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"repository": "https://x/y"}))
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "validate", "--input", str(bad))
    assert exc_info.value.code == 2
    assert "program_id" in capsys.readouterr().out


def test_validate_missing_file(monkeypatch, tmp_path):
    with pytest.raises(SystemExit, match="Input file not found"):
        run_cli(monkeypatch, "validate", "--input", str(tmp_path / "nope.json"))


def test_list_and_reconcile(monkeypatch, tmp_path, capsys, sample_request):
    db_path = tmp_path / "jobs.db"
    store = JobStore(db_path)
    store.insert(JobRecord(id="stuck", request=sample_request, created_at=utc_now() - timedelta(hours=5)))
    other = VerificationRequest(repository="https://x/z", program_id="P2")
    store.insert(JobRecord(id="fresh", request=other))
    store.close()

    run_cli(monkeypatch, "list", "--db", str(db_path))
    out = capsys.readouterr().out
    assert "Found 2 jobs" in out
    assert "ID: stuck" in out

    run_cli(monkeypatch, "reconcile", "--db", str(db_path), "--minutes", "90")
    assert "checked=1 completed=0 failed=1" in capsys.readouterr().out

    run_cli(monkeypatch, "list", "--db", str(db_path), "--status", "failed")
    out = capsys.readouterr().out
    assert "Found 1 jobs" in out
    assert JobStatus.FAILED.value in out


def test_list_missing_database(monkeypatch, tmp_path, capsys):
    run_cli(monkeypatch, "list", "--db", str(tmp_path / "missing.db"))
    assert "Database not found" in capsys.readouterr().out


def test_reconcile_refuses_window_inside_verify_timeout(monkeypatch, tmp_path, sample_request):
    db_path = tmp_path / "jobs.db"
    store = JobStore(db_path)
    store.insert(JobRecord(id="running", request=sample_request, created_at=utc_now() - timedelta(minutes=45)))
    store.close()

    with pytest.raises(SystemExit, match="Refusing to reconcile"):
        run_cli(monkeypatch, "reconcile", "--db", str(db_path), "--minutes", "30")

    store = JobStore(db_path)
    assert store.get_job("running").status is JobStatus.IN_PROGRESS
    store.close()


def test_job_not_found_exits_nonzero(monkeypatch, tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "job", "--id", "missing", "--db", str(tmp_path / "jobs.db"))
    assert exc_info.value.code == 1
    assert "HTTP 404" in capsys.readouterr().out
