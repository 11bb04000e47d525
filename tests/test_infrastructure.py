"""Tests for retry, timeout races, metrics and the resource reaper."""

import threading
import time

import pytest

from cvdispatch.config import BackoffPolicy
from cvdispatch.errors import (
    CatastrophicError,
    ExternalServiceTimeout,
    IntakeError,
    PersistenceError,
    ValidationError,
    error_type_of,
    is_retryable,
)
from cvdispatch.metrics import EMAILS_SENT, JOBS_REJECTED, MetricsRegistry
from cvdispatch.reaper import ResourceReaper, delete_document
from cvdispatch.retry import backoff_delay, call_with_backoff
from cvdispatch.timeouts import TimeoutRunner, run_with_timeout


class TestBackoff:
    def test_exponential_and_capped(self):
        policy = BackoffPolicy(base_delay_s=0.5, max_delay_s=3.0, jitter=False)
        assert [backoff_delay(policy, i) for i in range(4)] == [0.5, 1.0, 2.0, 3.0]

    def test_full_jitter(self):
        policy = BackoffPolicy(base_delay_s=2.0, max_delay_s=10.0, jitter=True)
        assert backoff_delay(policy, 1, rand=lambda: 0.25) == 1.0

    def test_retries_until_success(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise PersistenceError("locked")
            return "ok"

        sleeps = []
        policy = BackoffPolicy(max_attempts=3, base_delay_s=0.1, jitter=False)
        assert call_with_backoff(flaky, policy=policy, op_name="write", sleep=sleeps.append) == "ok"
        assert sleeps == [0.1, 0.2]

    def test_last_error_reraised(self):
        def always():
            raise PersistenceError("locked")

        with pytest.raises(PersistenceError, match="locked"):
            call_with_backoff(always, policy=BackoffPolicy(max_attempts=2), op_name="write", sleep=lambda s: None)

    def test_unlisted_errors_not_retried(self):
        calls = []

        def bad():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            call_with_backoff(bad, policy=BackoffPolicy(), op_name="w", retry_on=(PersistenceError,), sleep=lambda s: None)
        assert len(calls) == 1

    def test_should_retry_predicate(self):
        calls = []

        def bad():
            calls.append(1)
            raise IntakeError("gone")

        with pytest.raises(IntakeError):
            call_with_backoff(bad, policy=BackoffPolicy(), op_name="w", should_retry=is_retryable, sleep=lambda s: None)
        assert len(calls) == 1


class TestErrors:
    def test_error_types(self):
        assert error_type_of(ValidationError("x")) == "CV_VALIDATION_FAILED"
        assert error_type_of(PersistenceError("x")) == "DATABASE_ERROR"
        assert error_type_of(KeyError("x")) == "CRITICAL_PROCESSING_ERROR"

    def test_retryable_by_type(self):
        assert not is_retryable(ValidationError("x"))
        assert not is_retryable(IntakeError("x"))
        assert is_retryable(PersistenceError("x"))
        assert is_retryable(ExternalServiceTimeout("op", 1))
        assert is_retryable(CatastrophicError("x"))
        assert is_retryable(RuntimeError("x"))

    def test_timeout_message(self):
        assert str(ExternalServiceTimeout("Cover letter for job-1", 60)) == "Cover letter for job-1 timed out after 60s"


class TestTimeoutRunner:
    def test_fast_call_returns(self, runner):
        assert runner.call(lambda: 42, timeout_s=1.0, op_name="fast") == 42

    def test_slow_call_times_out(self, runner):
        start = time.monotonic()
        with pytest.raises(ExternalServiceTimeout) as exc_info:
            runner.call(lambda: time.sleep(1.0), timeout_s=0.05, op_name="slow")
        assert time.monotonic() - start < 0.5
        assert exc_info.value.op_name == "slow"

    def test_errors_propagate_unchanged(self, runner):
        def fail():
            raise PersistenceError("locked")

        with pytest.raises(PersistenceError):
            runner.call(fail, timeout_s=1.0, op_name="fail")

    def test_deadline_counts_from_submission(self):
        now = [0.0]
        runner = TimeoutRunner(max_workers=1, _time=lambda: now[0])
        release = threading.Event()
        handle = runner.submit(release.wait)
        now[0] = 5.0
        with pytest.raises(ExternalServiceTimeout):
            handle.result(timeout_s=5.0, op_name="late")
        release.set()
        runner.shutdown()

    def test_run_with_timeout(self):
        assert run_with_timeout(lambda: "x", timeout_s=1.0, op_name="one-off") == "x"


class TestMetrics:
    def test_labels_and_snapshot(self):
        m = MetricsRegistry()
        m.increment(EMAILS_SENT)
        m.increment(EMAILS_SENT, 2)
        m.increment("extraction_source", label="heuristic")
        assert m.snapshot() == {EMAILS_SENT: 3, "extraction_source:heuristic": 1}

    def test_rejection_streak(self):
        m = MetricsRegistry()
        assert m.record_rejection() == 1
        assert m.record_rejection() == 2
        m.clear_rejection_streak()
        assert m.consecutive_rejections == 0
        assert m.snapshot()[JOBS_REJECTED] == 2

    def test_reset(self):
        m = MetricsRegistry()
        m.increment(EMAILS_SENT)
        m.record_rejection()
        assert m.reset() == {EMAILS_SENT: 1, JOBS_REJECTED: 1}
        assert m.snapshot() == {}
        assert m.consecutive_rejections == 0

    def test_thread_safe(self):
        m = MetricsRegistry()
        threads = [threading.Thread(target=lambda: [m.increment("n") for _ in range(1000)]) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert m.snapshot()["n"] == 8000


class TestReaper:
    def test_deletes_after_delay(self, tmp_path):
        doc = tmp_path / "cv.pdf"
        doc.write_bytes(b"x")
        reaper = ResourceReaper(retention_s=600)
        timer = reaper.schedule(doc, delay_s=0.01)
        timer.join(timeout=2.0)
        assert not doc.exists()
        assert reaper.pending == 0

    def test_missing_file_tolerated(self, tmp_path):
        assert delete_document(tmp_path / "gone.pdf") is False

    def test_reschedule_replaces_timer(self, tmp_path):
        doc = tmp_path / "cv.pdf"
        doc.write_bytes(b"x")
        reaper = ResourceReaper(retention_s=600)
        first = reaper.schedule(doc)
        reaper.schedule(doc)
        assert reaper.pending == 1
        assert first.finished.is_set()
        assert reaper.cancel_all() == 1
        assert doc.exists()

    def test_drain_waits_for_pending_deletions(self, tmp_path):
        doc = tmp_path / "cv.pdf"
        doc.write_bytes(b"x")
        reaper = ResourceReaper(retention_s=0.05)
        reaper.schedule(doc)
        assert reaper.drain(timeout_s=2.0) == 0
        assert not doc.exists()
        assert reaper.pending == 0

    def test_drain_timeout_leaves_files_and_warns(self, tmp_path, caplog):
        doc = tmp_path / "cv.pdf"
        doc.write_bytes(b"x")
        reaper = ResourceReaper(retention_s=600)
        reaper.schedule(doc)
        with caplog.at_level("WARNING", logger="cvdispatch"):
            assert reaper.drain(timeout_s=0.01) == 1
        assert doc.exists()
        assert "document left in place" in caplog.text
