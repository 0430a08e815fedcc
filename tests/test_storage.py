"""
Tests for storage.py - the job record store.
"""

from datetime import timedelta

import pytest

from buildverify.errors import InvalidTransitionError, PersistenceError
from buildverify.models import JobRecord, JobStatus, VerificationRequest, VerifiedResult, utc_now


def _record(request, job_id="job-1", **kwargs):
    return JobRecord(id=job_id, request=request, **kwargs)


class TestJobRecords:
    """Insert, lookup and listing of job records."""

    def test_insert_and_find(self, store, sample_request):
        store.insert(_record(sample_request))

        found = store.find_by_request_fields(sample_request)

        assert found.id == "job-1"
        assert found.status is JobStatus.IN_PROGRESS
        assert found.request == sample_request

    def test_find_requires_all_fields_equal(self, store, sample_request):
        store.insert(_record(sample_request))

        for field, value in [
            ("commit_hash", None),
            ("lib_name", "other"),
            ("bpf_flag", True),
            ("mount_path", "programs/x"),
            ("cargo_args", ["--features", "x"]),
        ]:
            other = VerificationRequest.from_dict(dict(sample_request.to_dict(), **{field: value}))
            assert store.find_by_request_fields(other) is None, field

    def test_find_returns_none_when_empty(self, store, sample_request):
        assert store.find_by_request_fields(sample_request) is None

    def test_optional_fields_round_trip(self, store):
        request = VerificationRequest(
            repository="https://github.com/acme/prog",
            program_id="P9",
            bpf_flag=True,
            base_image="solana:1.18",
            mount_path="programs/p9",
            cargo_args=("--features", "mainnet"),
        )
        store.insert(_record(request))

        assert store.get_job("job-1").request == request

    def test_duplicate_id_raises(self, store, sample_request):
        store.insert(_record(sample_request))
        other = VerificationRequest.from_dict(dict(sample_request.to_dict(), commit_hash="zzz"))

        with pytest.raises(PersistenceError):
            store.insert(_record(other))

    def test_insert_if_absent_creates(self, store, sample_request):
        stored, created = store.insert_if_absent(_record(sample_request))

        assert created
        assert stored.id == "job-1"

    def test_insert_if_absent_returns_existing(self, store, sample_request):
        store.insert_if_absent(_record(sample_request, "job-1"))

        stored, created = store.insert_if_absent(_record(sample_request, "job-2"))

        assert not created
        assert stored.id == "job-1"
        assert store.get_job("job-2") is None

    def test_insert_if_absent_id_collision_raises(self, store, sample_request):
        store.insert_if_absent(_record(sample_request, "job-1"))
        other = VerificationRequest.from_dict(dict(sample_request.to_dict(), commit_hash="zzz"))

        with pytest.raises(PersistenceError):
            store.insert_if_absent(_record(other, "job-1"))

    def test_list_jobs_filters_by_status(self, store, sample_request):
        store.insert(_record(sample_request, "job-1"))
        other = VerificationRequest.from_dict(dict(sample_request.to_dict(), commit_hash="zzz"))
        store.insert(_record(other, "job-2", status=JobStatus.FAILED))

        assert len(store.list_jobs()) == 2
        assert [j.id for j in store.list_jobs(status=JobStatus.FAILED)] == ["job-2"]
        assert len(store.list_jobs(limit=1)) == 1

    def test_find_latest_job(self, store, sample_request):
        store.insert(_record(sample_request, "job-1", status=JobStatus.COMPLETED))

        assert store.find_latest_job("P1", JobStatus.COMPLETED).id == "job-1"
        assert store.find_latest_job("P1", JobStatus.FAILED) is None
        assert store.find_latest_job("P2") is None


class TestStatusTransitions:
    """in_progress moves once to a terminal status and stays there."""

    def test_complete(self, store, sample_request):
        store.insert(_record(sample_request))
        store.update_status("job-1", JobStatus.COMPLETED)
        assert store.get_job("job-1").status is JobStatus.COMPLETED

    def test_fail(self, store, sample_request):
        store.insert(_record(sample_request))
        store.update_status("job-1", JobStatus.FAILED)
        assert store.get_job("job-1").status is JobStatus.FAILED

    def test_terminal_is_final(self, store, sample_request):
        store.insert(_record(sample_request))
        store.update_status("job-1", JobStatus.FAILED)

        with pytest.raises(InvalidTransitionError):
            store.update_status("job-1", JobStatus.COMPLETED)
        assert store.get_job("job-1").status is JobStatus.FAILED

    def test_unknown_job(self, store):
        with pytest.raises(InvalidTransitionError):
            store.update_status("missing", JobStatus.COMPLETED)

    def test_cannot_move_to_in_progress(self, store, sample_request):
        store.insert(_record(sample_request))

        with pytest.raises(InvalidTransitionError, match="cannot move to in_progress"):
            store.update_status("job-1", JobStatus.IN_PROGRESS)
        assert store.get_job("job-1").status is JobStatus.IN_PROGRESS

    def test_created_at_is_kept(self, store, sample_request):
        record = _record(sample_request)
        store.insert(record)
        store.update_status("job-1", JobStatus.COMPLETED)
        assert store.get_job("job-1").created_at == record.created_at


class TestStuckJobs:
    def test_only_old_in_progress_jobs(self, store, sample_request):
        old = utc_now() - timedelta(hours=3)
        store.insert(_record(sample_request, "old", created_at=old))
        fresh = VerificationRequest.from_dict(dict(sample_request.to_dict(), commit_hash="new"))
        store.insert(_record(fresh, "fresh"))
        done = VerificationRequest.from_dict(dict(sample_request.to_dict(), commit_hash="done"))
        store.insert(_record(done, "done", status=JobStatus.COMPLETED, created_at=old))

        stuck = store.find_stuck_jobs(timedelta(hours=2))

        assert [j.id for j in stuck] == ["old"]


class TestVerifiedResults:
    def test_missing(self, store):
        assert store.get_verified_result("P1") is None

    def test_upsert_inserts(self, store, verified_result):
        store.upsert_verified_result(verified_result)

        stored = store.get_verified_result("P1")
        assert stored.is_verified is True
        assert stored.on_chain_hash == "h1"
        assert stored.executable_hash == "h1"

    def test_upsert_last_writer_wins(self, store, verified_result):
        store.upsert_verified_result(verified_result)
        store.upsert_verified_result(
            VerifiedResult(program_id="P1", is_verified=False, on_chain_hash="h1", executable_hash="h2", job_id="job-2")
        )

        stored = store.get_verified_result("P1")
        assert stored.is_verified is False
        assert stored.executable_hash == "h2"
        assert stored.job_id == "job-2"
