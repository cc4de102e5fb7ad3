"""Data models for the job queue.

The queue document is persisted as a single JSON object whose field names
stay camelCase (``jobQueue``, ``pubDate``, ...) so the stored shape is stable
across deployments. The dataclasses here convert to and from that shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStatus(Enum):
    """Lifecycle of a queued job. The only transition is PENDING -> SENT."""

    PENDING = "pending"
    SENT = "sent"


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Naive values are assumed to be UTC. A trailing ``Z`` is accepted.
    Returns None if the value is empty or unparseable.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class JobMetadata:
    """Lightweight identity record produced by the metadata extractor."""

    guid: str
    pub_date: str
    apply_url: str
    job_number: Optional[str] = None
    title: str = ""
    synthetic_guid: bool = False


@dataclass
class JobRecord:
    """A single entry in the job queue."""

    guid: str
    pub_date: str
    apply_url: str
    discovered_at: str
    status: JobStatus = JobStatus.PENDING
    job_number: Optional[str] = None
    sent_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is JobStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "guid": self.guid,
            "jobNumber": self.job_number,
            "pubDate": self.pub_date,
            "status": self.status.value,
            "discoveredAt": self.discovered_at,
            "sentAt": self.sent_at,
            "applyUrl": self.apply_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRecord":
        """Build a record from its stored form.

        Unknown status values are read as pending so a record is never
        silently retired by a malformed document.
        """
        try:
            status = JobStatus(data.get("status", "pending"))
        except ValueError:
            status = JobStatus.PENDING
        return cls(
            guid=str(data.get("guid", "")),
            job_number=data.get("jobNumber"),
            pub_date=data.get("pubDate") or "",
            status=status,
            discovered_at=data.get("discoveredAt") or "",
            sent_at=data.get("sentAt"),
            apply_url=data.get("applyUrl") or "",
        )


@dataclass
class QueueState:
    """The whole persisted queue document."""

    job_queue: list[JobRecord] = field(default_factory=list)
    last_processed: str = field(default_factory=utc_now_iso)
    emails_sent: int = 0
    total_jobs_processed: int = 0

    @property
    def pending(self) -> list[JobRecord]:
        return [job for job in self.job_queue if job.is_pending]

    @property
    def sent(self) -> list[JobRecord]:
        return [job for job in self.job_queue if not job.is_pending]

    @property
    def guids(self) -> set[str]:
        return {job.guid for job in self.job_queue}

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobQueue": [job.to_dict() for job in self.job_queue],
            "lastProcessed": self.last_processed,
            "emailsSent": self.emails_sent,
            "totalJobsProcessed": self.total_jobs_processed,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "QueueState":
        """Normalize any stored shape (including legacy/partial ones) into a full state."""
        if not isinstance(data, dict):
            return cls()

        raw_queue = data.get("jobQueue")
        records = []
        if isinstance(raw_queue, list):
            records = [
                JobRecord.from_dict(item)
                for item in raw_queue
                if isinstance(item, dict) and item.get("guid")
            ]

        return cls(
            job_queue=records,
            last_processed=data.get("lastProcessed") or utc_now_iso(),
            emails_sent=_as_int(data.get("emailsSent")),
            total_jobs_processed=_as_int(data.get("totalJobsProcessed")),
        )


@dataclass
class QueueStats:
    """Read-only summary of the queue, safe to report even on failure."""

    total_jobs: int = 0
    pending_jobs: int = 0
    sent_jobs: int = 0
    needed_for_email: int = 0
    emails_sent: int = 0
    total_jobs_processed: int = 0
    last_processed: Optional[str] = None
    oldest_pending_job: Optional[str] = None
    newest_pending_job: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if d["error"] is None:
            del d["error"]
        return d


@dataclass
class JobDetails:
    """Full job content re-fetched from the feed at send time."""

    guid: str
    title: str
    apply_url: str
    location: str = "Location not specified"
    salary_range: str = "Salary not disclosed"
    hours: str = "Full-time"
    job_number: Optional[str] = None
    description_first_sentence: str = "Job description not available"
    published_date: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0
