"""Tests for the application store and ledger."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from cvdispatch.config import BackoffPolicy, LedgerSettings
from cvdispatch.errors import PersistenceError
from cvdispatch.ledger import ApplicationLedger, SqliteApplicationStore, parse_match_score, record_id_for
from cvdispatch.metrics import RECORDS_CREATED, RECORDS_UNPERSISTED
from cvdispatch.shared import (
    ApplicationRecord,
    ApplicationRequest,
    ApplicationStatus,
    DispatchResult,
    DocumentRef,
    ExtractedApplicant,
    TargetPosting,
)
from cvdispatch.timeouts import TimeoutRunner

from conftest import JANE_CV, FakeCompletionClient, FlakyStore

APPLICANT = ExtractedApplicant(name="Jane A. Okoro", email="jane.okoro@mail.com", phone="+2348012345678")
NO_WAIT = BackoffPolicy(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter=False)
SETTINGS = LedgerSettings(scoring_timeout_s=2.0, write_timeout_s=2.0, write_backoff=NO_WAIT)


def _request(n_targets=3, request_id="req-1"):
    return ApplicationRequest(
        request_id=request_id,
        requester_identifier="2348012345678",
        document=DocumentRef(path=Path("/tmp/cv.txt")),
        targets=tuple(
            TargetPosting(id=f"job-{i}", title="Accountant", company=f"Company {i}", recipient_contact=f"hr{i}@co.ng")
            for i in range(1, n_targets + 1)
        ),
    )


def _record(**overrides):
    values = dict(
        id=record_id_for("req-1", "job-1"),
        request_id="req-1",
        requester_identifier="2348012345678",
        target_id="job-1",
        cv_snapshot=JANE_CV,
        match_score=80,
    )
    values.update(overrides)
    return ApplicationRecord(**values)


class TestStore:
    def test_insert_is_idempotent(self, store):
        first = store.insert_if_absent(_record(match_score=80))
        second = store.insert_if_absent(_record(match_score=10))
        assert first.match_score == 80
        assert second.match_score == 80
        assert len(store.list_for_request("req-1")) == 1

    def test_unique_per_request_and_target(self, store):
        store.insert_if_absent(_record())
        # same pair under a different id still resolves to the first row
        stored = store.insert_if_absent(_record(id="other-id"))
        assert stored.id == record_id_for("req-1", "job-1")

    def test_roundtrip_fields(self, store):
        stored = store.insert_if_absent(_record(applicant_name="Jane A. Okoro"))
        assert stored.status == ApplicationStatus.SUBMITTED
        assert stored.applicant_name == "Jane A. Okoro"
        assert stored.applied_at.tzinfo is not None
        assert stored.persisted

    def test_status_moves_forward_once(self, store):
        rec = store.insert_if_absent(_record())
        at = datetime.now(timezone.utc)
        assert store.mark_status(rec.id, ApplicationStatus.EMAIL_SENT, at=at)
        assert not store.mark_status(rec.id, ApplicationStatus.EMAIL_FAILED, error_message="late")
        stored = store.get("req-1", "job-1")
        assert stored.status == ApplicationStatus.EMAIL_SENT
        assert stored.email_sent_at == at
        assert stored.error_message is None

    def test_cannot_move_back_to_submitted(self, store):
        rec = store.insert_if_absent(_record())
        with pytest.raises(ValueError):
            store.mark_status(rec.id, ApplicationStatus.SUBMITTED)

    def test_file_backed(self, tmp_path):
        db = tmp_path / "apps.db"
        s1 = SqliteApplicationStore(db)
        s1.insert_if_absent(_record())
        s1.close()
        s2 = SqliteApplicationStore(db)
        assert s2.get("req-1", "job-1") is not None
        s2.close()

    def test_open_failure_is_persistence_error(self, tmp_path):
        with pytest.raises(PersistenceError):
            SqliteApplicationStore(tmp_path / "missing-dir" / "apps.db")


class TestMatchScore:
    @pytest.mark.parametrize(
        "response,expected",
        [
            ('{"job_match_score": 82}', 82),
            ('{"score": 140}', 100),
            ('{"match_score": -5}', 0),
            ('{"overall_score": 66.6}', 67),
            ('```json\n{"job_match_score": 55}\n```', 55),
            ('{"job_match_score": "high"}', None),
            ('{"job_match_score": true}', None),
            ("no idea", None),
        ],
    )
    def test_parse(self, response, expected):
        assert parse_match_score(response) == expected

    def test_scores_per_target(self, store, runner):
        def respond(system, user):
            return json.dumps({"job_match_score": 90 if "Company 1" in user else 40})

        ledger = ApplicationLedger(store, runner, client=FakeCompletionClient(respond), settings=SETTINGS)
        scores = ledger.score_matches(JANE_CV, _request(2).targets)
        assert scores == {"job-1": 90, "job-2": 40}

    def test_default_without_client(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        assert ledger.score_matches(JANE_CV, _request(2).targets) == {"job-1": 75, "job-2": 75}

    def test_default_on_garbage_and_timeout(self, store, runner):
        slow = FakeCompletionClient(lambda s, u: '{"score": 99}', delay_s=0.5)
        settings = LedgerSettings(scoring_timeout_s=0.05, write_backoff=NO_WAIT)
        ledger = ApplicationLedger(store, runner, client=slow, settings=settings)
        assert ledger.score_matches(JANE_CV, _request(1).targets) == {"job-1": 75}

        garbage = FakeCompletionClient(lambda s, u: "sorry")
        ledger = ApplicationLedger(store, runner, client=garbage, settings=SETTINGS)
        assert ledger.score_matches(JANE_CV, _request(1).targets) == {"job-1": 75}


class TestCreateRecords:
    def test_exactly_one_record_per_target(self, store, runner, metrics):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS, metrics=metrics)
        records = ledger.create_records(_request(3), APPLICANT, JANE_CV)

        assert [r.target_id for r in records] == ["job-1", "job-2", "job-3"]
        assert all(r.persisted and r.status == ApplicationStatus.SUBMITTED for r in records)
        assert all(r.applicant_email == "jane.okoro@mail.com" for r in records)
        assert all(0 <= r.match_score <= 100 for r in records)
        assert len(store.list_for_request("req-1")) == 3
        assert metrics.snapshot()[RECORDS_CREATED] == 3

    def test_rerun_reuses_records(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        first = ledger.create_records(_request(2), APPLICANT, JANE_CV)
        ledger.mark_dispatched(first[0], DispatchResult("job-1", True))

        second = ledger.create_records(_request(2), APPLICANT, JANE_CV)
        assert [r.id for r in second] == [r.id for r in first]
        assert second[0].status == ApplicationStatus.EMAIL_SENT
        assert second[1].status == ApplicationStatus.SUBMITTED
        assert len(store.list_for_request("req-1")) == 2

    def test_transient_write_failure_retried(self, runner):
        store = FlakyStore(failures=2)
        sleeps = []
        ledger = ApplicationLedger(store, runner, settings=SETTINGS, _sleep=sleeps.append)
        records = ledger.create_records(_request(1), APPLICANT, JANE_CV)
        assert records[0].persisted
        assert store.insert_calls == 3
        assert len(sleeps) == 2
        store.close()

    def test_exhausted_write_marks_unpersisted(self, runner, metrics):
        store = FlakyStore(failures=10, only_targets={"job-2"})
        ledger = ApplicationLedger(store, runner, settings=SETTINGS, metrics=metrics, _sleep=lambda s: None)
        records = ledger.create_records(_request(3), APPLICANT, JANE_CV)

        assert [r.persisted for r in records] == [True, False, True]
        assert "database is locked" in records[1].error_message
        assert [r.target_id for r in store.list_for_request("req-1")] == ["job-1", "job-3"]
        assert metrics.snapshot()[RECORDS_UNPERSISTED] == 1
        store.close()

    def test_slow_scoring_does_not_starve_writes(self, store, io_runner, metrics):
        completion_runner = TimeoutRunner(max_workers=2, thread_name_prefix="completion")
        slow = FakeCompletionClient(lambda s, u: '{"job_match_score": 99}', delay_s=1.0)
        settings = LedgerSettings(scoring_timeout_s=0.05, write_timeout_s=0.5, write_backoff=NO_WAIT)
        ledger = ApplicationLedger(
            store, io_runner, client=slow, completion_runner=completion_runner, settings=settings,
            metrics=metrics, _sleep=lambda s: None,
        )
        try:
            records = ledger.create_records(_request(4), APPLICANT, JANE_CV)
            assert all(r.persisted for r in records)
            assert {r.match_score for r in records} == {75}

            for record in records:
                ledger.mark_dispatched(record, DispatchResult(record.target_id, True))
            statuses = {r.status for r in store.list_for_request("req-1")}
            assert statuses == {ApplicationStatus.EMAIL_SENT}
        finally:
            completion_runner.shutdown()

    def test_write_that_landed_despite_error_is_used(self, runner, metrics):
        class AckLostStore(SqliteApplicationStore):
            def insert_if_absent(self, record):
                super().insert_if_absent(record)
                raise PersistenceError("connection reset after commit")

        store = AckLostStore(":memory:")
        ledger = ApplicationLedger(store, runner, settings=SETTINGS, metrics=metrics, _sleep=lambda s: None)
        records = ledger.create_records(_request(1), APPLICANT, JANE_CV)

        assert records[0].persisted
        assert records[0].id == record_id_for("req-1", "job-1")
        assert metrics.snapshot()[RECORDS_CREATED] == 1
        assert RECORDS_UNPERSISTED not in metrics.snapshot()
        store.close()


class TestMarkDispatched:
    def test_success(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = ledger.create_records(_request(1), APPLICANT, JANE_CV)[0]
        ledger.mark_dispatched(record, DispatchResult("job-1", True))
        assert record.status == ApplicationStatus.EMAIL_SENT
        assert record.email_sent_at is not None
        assert store.get("req-1", "job-1").status == ApplicationStatus.EMAIL_SENT

    def test_failure_keeps_reason(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = ledger.create_records(_request(1), APPLICANT, JANE_CV)[0]
        ledger.mark_dispatched(record, DispatchResult("job-1", False, "relay rejected"))
        stored = store.get("req-1", "job-1")
        assert stored.status == ApplicationStatus.EMAIL_FAILED
        assert stored.error_message == "relay rejected"
        assert stored.email_sent_at is None

    def test_never_moves_back(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = ledger.create_records(_request(1), APPLICANT, JANE_CV)[0]
        ledger.mark_dispatched(record, DispatchResult("job-1", True))
        ledger.mark_dispatched(record, DispatchResult("job-1", False, "late failure"))
        assert store.get("req-1", "job-1").status == ApplicationStatus.EMAIL_SENT

    def test_stale_copy_does_not_overwrite(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = ledger.create_records(_request(1), APPLICANT, JANE_CV)[0]
        stale = store.get("req-1", "job-1")
        ledger.mark_dispatched(record, DispatchResult("job-1", True))

        ledger.mark_dispatched(stale, DispatchResult("job-1", False, "abandoned attempt"))
        assert stale.status == ApplicationStatus.SUBMITTED
        assert store.get("req-1", "job-1").status == ApplicationStatus.EMAIL_SENT

    def test_unpersisted_untouched(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = _record(persisted=False)
        ledger.mark_dispatched(record, DispatchResult("job-1", True))
        assert record.status == ApplicationStatus.SUBMITTED
        assert store.get("req-1", "job-1") is None

    def test_late_landing_record_is_closed(self, store, runner):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS)
        record = _record(persisted=False)
        store.insert_if_absent(_record())

        ledger.mark_dispatched(record, DispatchResult("job-1", False, "Record not persisted"))
        assert record.persisted
        stored = store.get("req-1", "job-1")
        assert stored.status == ApplicationStatus.EMAIL_FAILED
        assert stored.error_message == "Record not persisted"

    def test_store_failure_logged_not_raised(self, store, runner, monkeypatch):
        ledger = ApplicationLedger(store, runner, settings=SETTINGS, _sleep=lambda s: None)
        record = ledger.create_records(_request(1), APPLICANT, JANE_CV)[0]

        def broken(*args, **kwargs):
            raise PersistenceError("disk I/O error")

        monkeypatch.setattr(store, "mark_status", broken)
        result = ledger.mark_dispatched(record, DispatchResult("job-1", True))
        assert result.status == ApplicationStatus.SUBMITTED


def test_record_id_is_deterministic():
    assert record_id_for("req-1", "job-1") == record_id_for("req-1", "job-1")
    assert record_id_for("req-1", "job-1") != record_id_for("req-1", "job-2")
    assert record_id_for("req-1", "job-1") != record_id_for("req-2", "job-1")
