"""Tests for smartcal.data.jobs — JobQueueDB and DigestLedgerDB."""

import threading

import pytest

from smartcal.data.jobs import JobQueueDB
from smartcal.data.models import DAILY_DIGEST


class TestEnqueue:
    def test_enqueue_creates_pending_job(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        assert job is not None
        assert job.job_type == DAILY_DIGEST
        assert job.status == "pending"
        assert job.started_at is None

    def test_unknown_type_rejected(self, job_queue):
        with pytest.raises(ValueError):
            job_queue.enqueue("weekly_report")

    def test_outstanding_job_not_duplicated(self, job_queue):
        assert job_queue.enqueue(DAILY_DIGEST) is not None
        assert job_queue.enqueue(DAILY_DIGEST) is None

        job_queue.claim_next()
        # still running
        assert job_queue.enqueue(DAILY_DIGEST) is None

    def test_enqueue_after_finish(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        job_queue.claim_next()
        job_queue.complete(job.id, {"processed": 0})
        assert job_queue.enqueue(DAILY_DIGEST) is not None


class TestClaim:
    def test_claim_empty_queue(self, job_queue):
        assert job_queue.claim_next() is None

    def test_claim_marks_running(self, job_queue):
        queued = job_queue.enqueue(DAILY_DIGEST)
        claimed = job_queue.claim_next()
        assert claimed.id == queued.id
        assert claimed.status == "running"
        assert claimed.started_at is not None

    def test_claimed_job_not_claimed_again(self, job_queue):
        job_queue.enqueue(DAILY_DIGEST)
        assert job_queue.claim_next() is not None
        assert job_queue.claim_next() is None

    def test_concurrent_claims_have_one_winner(self, tmp_db_path):
        JobQueueDB(db_path=tmp_db_path).enqueue(DAILY_DIGEST)

        claimed = []
        lock = threading.Lock()
        barrier = threading.Barrier(6)

        def _claim():
            queue = JobQueueDB(db_path=tmp_db_path)
            barrier.wait()
            job = queue.claim_next()
            with lock:
                claimed.append(job)

        threads = [threading.Thread(target=_claim) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [job for job in claimed if job is not None]
        assert len(claimed) == 6
        assert len(winners) == 1


class TestFinish:
    def test_complete_stores_result(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        job_queue.claim_next()
        job_queue.complete(job.id, {"day": "2025-01-10", "processed": 2, "skipped": 0, "failed": 1})

        stored = job_queue.get_job(job.id)
        assert stored.status == "completed"
        assert stored.result == {"day": "2025-01-10", "processed": 2, "skipped": 0, "failed": 1}
        assert stored.finished_at is not None

    def test_fail_stores_error(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        job_queue.claim_next()
        job_queue.fail(job.id, "boom")

        stored = job_queue.get_job(job.id)
        assert stored.status == "failed"
        assert stored.error == "boom"
        assert stored.result is None

    def test_cannot_finish_pending_job(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        with pytest.raises(ValueError):
            job_queue.complete(job.id, {})

    def test_cannot_finish_twice(self, job_queue):
        job = job_queue.enqueue(DAILY_DIGEST)
        job_queue.claim_next()
        job_queue.complete(job.id, {})
        with pytest.raises(ValueError):
            job_queue.fail(job.id, "late")

    def test_get_missing_job(self, job_queue):
        assert job_queue.get_job(42) is None


class TestDigestLedger:
    def test_mark_and_load(self, ledger):
        assert ledger.mark_delivered(1, "2025-01-10", ["chat"]) is True
        assert ledger.mark_delivered(2, "2025-01-10", ["chat", "email"]) is True
        assert ledger.load_delivered("2025-01-10") == {1, 2}
        assert ledger.load_delivered("2025-01-11") == set()

    def test_duplicate_rejected(self, ledger):
        assert ledger.mark_delivered(1, "2025-01-10", ["chat"]) is True
        assert ledger.mark_delivered(1, "2025-01-10", ["email"]) is False

        entries = ledger.list_entries("2025-01-10")
        assert len(entries) == 1
        assert entries[0].channels == ["chat"]

    def test_same_user_different_day(self, ledger):
        ledger.mark_delivered(1, "2025-01-10", ["chat"])
        assert ledger.mark_delivered(1, "2025-01-11", ["chat"]) is True

    def test_is_delivered(self, ledger):
        ledger.mark_delivered(1, "2025-01-10", ["email"])
        assert ledger.is_delivered(1, "2025-01-10") is True
        assert ledger.is_delivered(1, "2025-01-11") is False
