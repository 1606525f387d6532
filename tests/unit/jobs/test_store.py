"""Tests for the in-memory process store."""

from datetime import timedelta
from uuid import uuid4

import pytest

from provisioner.jobs.models import ErrorInfo, ItemOutcome, utcnow
from provisioner.jobs.store import InvalidJobError, ProcessStore
from provisioner.jobs.types import JobKind, JobStatus, LogLevel


def _success(key: str) -> ItemOutcome:
    return ItemOutcome(item_key=key, success=True, attempts=1)


class TestCreateJob:
    def test_create_job_is_running(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com", "b.com"])

        assert job.status == JobStatus.RUNNING
        assert job.progress.total == 2
        assert [i.key for i in job.items] == ["a.com", "b.com"]
        assert job.id in store

    def test_create_job_logs_process_started(self):
        store = ProcessStore()
        job = store.create_job(JobKind.DELETION, ["a.com"], info={"invalid_domains": 1})

        page = store.get_logs(job.id)
        assert page.logs[0].message == "Process started"
        assert page.logs[0].data["total"] == 1
        assert page.logs[0].data["invalid_domains"] == 1

    def test_create_job_requires_items(self):
        store = ProcessStore()
        with pytest.raises(InvalidJobError):
            store.create_job(JobKind.CREATION, [])


class TestTerminalTransitions:
    def test_complete_sets_timestamps(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])

        assert store.complete_job(job.id) is True
        snapshot = store.get_status(job.id)
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.completed_at is not None
        assert snapshot.failed_at is None
        assert snapshot.duration_ms is not None

    def test_terminal_is_final(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        store.cancel_job(job.id)

        assert store.complete_job(job.id) is False
        assert store.fail_job(job.id, "late failure") is False
        assert store.get_status(job.id).status == JobStatus.CANCELLED

    def test_fail_job_records_error(self):
        store = ProcessStore()
        job = store.create_job(JobKind.ADMIN_CHANGE, ["a.com"])
        store.fail_job(job.id, ErrorInfo("Cannot reach remote shell", "SETUP_ERROR"))

        snapshot = store.get_status(job.id)
        assert snapshot.status == JobStatus.FAILED
        assert snapshot.failed_at is not None
        assert snapshot.error.code == "SETUP_ERROR"

        last = store.get_logs(job.id, limit=1000).logs[-1]
        assert last.level == LogLevel.ERROR
        assert last.message == "Process failed: Cannot reach remote shell"

    def test_fail_job_from_exception(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        store.fail_job(job.id, RuntimeError("boom"))

        error = store.get_status(job.id).error
        assert error.message == "boom"
        assert error.code == "INTERNAL_ERROR"

    def test_unknown_job(self):
        store = ProcessStore()
        assert store.complete_job(uuid4()) is False
        assert store.request_stop(uuid4()) is False
        assert store.get_status(uuid4()) is None
        assert store.get_logs(uuid4()) is None


class TestStopFlag:
    def test_request_stop_is_idempotent(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])

        assert store.request_stop(job.id) is True
        assert store.request_stop(job.id) is True
        assert store.is_stop_requested(job.id) is True

        warnings = [
            e for e in store.get_logs(job.id).logs if e.message.startswith("Process stop")
        ]
        assert len(warnings) == 1

    def test_deleted_job_reads_as_stopped(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        store.delete_job(job.id)

        assert store.is_stop_requested(job.id) is True


class TestProgress:
    def test_record_outcome_counts(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com", "b.com", "c.com"])

        store.record_outcome(job.id, _success("a.com"))
        store.record_outcome(
            job.id,
            ItemOutcome(item_key="b.com", success=False, error=ErrorInfo("x")),
        )
        store.record_outcome(
            job.id,
            ItemOutcome(item_key="c.com", success=False, skipped=True),
        )

        progress = store.get_status(job.id).progress
        assert progress.processed == 3
        assert progress.successful == 1
        assert progress.failed == 1
        assert progress.skipped == 1
        assert progress.percentage == 100

    def test_counters_never_decrease(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com", "b.com"])
        store.update_progress(job.id, processed=2)
        store.update_progress(job.id, processed=1)

        assert store.get_status(job.id).progress.processed == 2

    def test_update_progress_rejects_unknown_field(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        with pytest.raises(ValueError):
            store.update_progress(job.id, total=10)

    def test_outcome_after_terminal_is_ignored(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        store.complete_job(job.id)

        assert store.record_outcome(job.id, _success("a.com")) is False
        assert store.get_status(job.id).progress.processed == 0

    def test_snapshot_is_a_copy(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        snapshot = store.get_status(job.id)

        store.record_outcome(job.id, _success("a.com"))

        assert snapshot.progress.processed == 0
        assert snapshot.results == ()


class TestLogs:
    def test_paging_with_absolute_offsets(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        for i in range(9):
            store.append_log(job.id, LogLevel.INFO, f"line {i}")

        first = store.get_logs(job.id, limit=4, offset=0)
        assert [e.seq for e in first.logs] == [0, 1, 2, 3]
        assert first.has_more is True
        assert first.next_offset == 4

        rest = store.get_logs(job.id, limit=100, offset=first.next_offset)
        assert [e.seq for e in rest.logs] == list(range(4, 10))
        assert rest.has_more is False
        assert rest.next_offset == 10

    def test_reading_does_not_drain(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])

        assert store.get_logs(job.id).total == 1
        assert store.get_logs(job.id).total == 1

    def test_retention_drops_oldest(self):
        store = ProcessStore(log_retention_limit=5)
        job = store.create_job(JobKind.CREATION, ["a.com"])
        for i in range(9):
            store.append_log(job.id, LogLevel.INFO, f"line {i}")

        page = store.get_logs(job.id, limit=100, offset=0)
        assert page.total == 10
        assert len(page.logs) == 5
        # Offsets below the window start at the oldest retained entry
        assert page.logs[0].seq == 5
        assert page.logs[-1].message == "line 8"
        assert store.get(job.id).logs_dropped == 5

    def test_offset_past_end_is_empty(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])

        page = store.get_logs(job.id, offset=50)
        assert page.logs == ()
        assert page.has_more is False
        assert page.next_offset == 1

    def test_level_aliases(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])

        assert store.append_log(job.id, "warning", "w").level == LogLevel.WARN
        assert store.append_log(job.id, "success", "s").level == LogLevel.INFO

    def test_unknown_job_log_is_ignored(self):
        store = ProcessStore()
        assert store.append_log(uuid4(), LogLevel.INFO, "orphan") is None


class TestPurge:
    def test_purge_only_expired_terminal_jobs(self):
        store = ProcessStore()
        finished = store.create_job(JobKind.CREATION, ["a.com"])
        running = store.create_job(JobKind.CREATION, ["b.com"])
        store.complete_job(finished.id)

        later = utcnow() + timedelta(seconds=301)
        assert store.purge_expired(300, now=later) == 1
        assert finished.id not in store
        assert running.id in store

    def test_recent_jobs_are_kept(self):
        store = ProcessStore()
        job = store.create_job(JobKind.CREATION, ["a.com"])
        store.complete_job(job.id)

        assert store.purge_expired(300) == 0
        assert job.id in store

    def test_stats(self):
        store = ProcessStore()
        a = store.create_job(JobKind.CREATION, ["a.com"])
        store.create_job(JobKind.DELETION, ["b.com"])
        store.complete_job(a.id)

        stats = store.stats()
        assert stats["jobs"] == 2
        assert stats["running"] == 1
