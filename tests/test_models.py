"""Tests for the queue data models."""

from datetime import timezone

from job_mailer.models import (
    JobRecord,
    JobStatus,
    QueueState,
    QueueStats,
    parse_iso,
)


def test_record_round_trips_camel_case_keys():
    record = JobRecord(
        guid="job-1",
        pub_date="2026-10-05T10:00:00+00:00",
        apply_url="https://jobs.example.com/apply/1",
        discovered_at="2026-10-05T11:00:00+00:00",
        job_number="1042",
    )
    d = record.to_dict()
    assert d["pubDate"] == "2026-10-05T10:00:00+00:00"
    assert d["status"] == "pending"
    assert d["sentAt"] is None
    assert JobRecord.from_dict(d) == record


def test_unknown_status_reads_as_pending():
    record = JobRecord.from_dict({"guid": "a", "status": "archived"})
    assert record.status is JobStatus.PENDING
    assert record.is_pending


def test_state_from_garbage_is_empty():
    for data in (None, [], "text", 42):
        state = QueueState.from_dict(data)
        assert state.job_queue == []
        assert state.emails_sent == 0


def test_state_from_partial_document():
    state = QueueState.from_dict({
        "jobQueue": [
            {"guid": "a", "status": "sent", "sentAt": "2026-10-01T00:00:00Z"},
            {"guid": "", "status": "pending"},
            "not a record",
            {"guid": "b"},
        ],
        "emailsSent": "3",
        "totalJobsProcessed": -5,
    })
    assert [j.guid for j in state.job_queue] == ["a", "b"]
    assert [j.guid for j in state.pending] == ["b"]
    assert [j.guid for j in state.sent] == ["a"]
    assert state.emails_sent == 3
    assert state.total_jobs_processed == 0
    assert state.last_processed


def test_state_to_dict_shape():
    d = QueueState().to_dict()
    assert set(d) == {"jobQueue", "lastProcessed", "emailsSent", "totalJobsProcessed"}


def test_parse_iso():
    parsed = parse_iso("2026-10-05T10:00:00Z")
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() == timezone.utc.utcoffset(None)
    assert parse_iso("2026-10-05T10:00:00").tzinfo is not None
    assert parse_iso("") is None
    assert parse_iso("yesterday") is None


def test_stats_to_dict_omits_missing_error():
    assert "error" not in QueueStats(total_jobs=1).to_dict()
    assert QueueStats(error="boom").to_dict()["error"] == "boom"
