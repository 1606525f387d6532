"""Tests for job models."""

from uuid import uuid4

from provisioner.jobs.models import (
    ErrorInfo,
    ItemOutcome,
    Job,
    JobProgress,
    LogEntry,
    WorkItem,
)
from provisioner.jobs.types import JobKind, JobStatus, LogLevel


class TestJobProgress:
    def test_percentage(self):
        progress = JobProgress(total=3, processed=1)
        assert progress.percentage == 33

    def test_percentage_of_empty_job(self):
        assert JobProgress(total=0).percentage == 0


class TestJob:
    def test_create_job(self):
        job = Job(
            id=uuid4(),
            kind=JobKind.CREATION,
            items=(WorkItem(key="example.com"),),
            progress=JobProgress(total=1),
        )
        assert job.status == JobStatus.RUNNING
        assert job.stop_requested is False
        assert job.logs_total == 0
        assert job.finished_at is None

    def test_logs_total_counts_dropped_entries(self):
        job = Job(
            id=uuid4(),
            kind=JobKind.DELETION,
            items=(WorkItem(key="example.com"),),
            progress=JobProgress(total=1),
        )
        job.logs.append(LogEntry(seq=7, level=LogLevel.INFO, message="x"))
        job.logs_dropped = 7
        assert job.logs_total == 8


class TestItemOutcome:
    def test_to_dict(self):
        outcome = ItemOutcome(
            item_key="example.com",
            success=False,
            error=ErrorInfo("Account creation failed", "WHM_API_ERROR"),
            stage_failed="create_account",
            attempts=3,
        )
        data = outcome.to_dict()
        assert data["error"] == {
            "message": "Account creation failed",
            "code": "WHM_API_ERROR",
        }
        assert data["stage_failed"] == "create_account"
        assert data["attempts"] == 3
        assert data["skipped"] is False

    def test_default_error_code(self):
        assert ErrorInfo("boom").code == "STAGE_ERROR"
