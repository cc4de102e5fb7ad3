"""Job queue store.

Persists the whole queue as one JSON document in a blob backend and
enforces the queue's invariants:

- a guid appears at most once; re-adding a known guid is a no-op
- the only status transition is pending -> sent
- ``totalJobsProcessed`` only ever grows, even after cleanup
- every mutation is a single full-document write, so a failed write leaves
  the previously stored document intact

Read-only accessors never raise: a storage fault degrades them to an empty
or default result. Mutating operations read the document strictly and raise
StorageError instead, so a transient read failure can never cause an empty
queue to overwrite the stored one.

The blob backend has no locking. Two overlapping invocations can both read
the same pending batch and send it twice; running a single non-overlapping
trigger is a deployment requirement.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from job_mailer.blobs import BlobStore
from job_mailer.errors import StorageError
from job_mailer.models import (
    JobMetadata,
    JobRecord,
    JobStatus,
    QueueState,
    QueueStats,
    parse_iso,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_KEY = "job-queue"

# Records with an unparseable pubDate sort after every dated record.
_UNDATED = datetime.max.replace(tzinfo=timezone.utc)


def _pub_date_key(job: JobRecord) -> datetime:
    return parse_iso(job.pub_date) or _UNDATED


def pending_count(state: QueueState | None) -> int:
    """Number of pending records in a queue state."""
    if state is None:
        return 0
    return len(state.pending)


class JobQueueStore:
    """Read-modify-write access to the single queue document."""

    def __init__(self, blob_store: BlobStore, key: str = DEFAULT_KEY, threshold: int = 10):
        self.blob_store = blob_store
        self.key = key
        self.threshold = threshold

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _load(self, strict: bool) -> QueueState:
        """Read and normalize the stored document.

        With ``strict`` a backend failure raises StorageError; otherwise it
        is logged and the empty state is returned. A document that is not
        valid JSON is treated as empty in both modes.
        """
        try:
            text = self.blob_store.get(self.key)
        except Exception as exc:
            if strict:
                if isinstance(exc, StorageError):
                    raise
                raise StorageError(f"Failed to read job queue: {exc}") from exc
            logger.error("Error retrieving job queue, using empty queue: %s", exc)
            return QueueState()

        if text is None:
            return QueueState()

        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("Stored job queue is not valid JSON, using empty queue: %s", exc)
            return QueueState()

        return QueueState.from_dict(data)

    def _save(self, state: QueueState) -> None:
        text = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)
        try:
            self.blob_store.put(self.key, text)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to write job queue: {exc}") from exc
        logger.debug("Saved job queue (%d records)", len(state.job_queue))

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def get_queue_state(self) -> QueueState:
        """Return the current queue, or the empty queue if it can't be read."""
        return self._load(strict=False)

    def add_new_jobs(self, records: Iterable[JobMetadata]) -> QueueState:
        """Append records whose guid is not already queued.

        Records without a guid are skipped with a warning. Duplicates inside
        ``records`` collapse to the first occurrence. Returns the state after
        the write; nothing is written when no record survives filtering.
        """
        records = list(records or [])
        if not records:
            logger.info("No new job metadata to add to queue")
            return self.get_queue_state()

        state = self._load(strict=True)
        known = state.guids
        now = utc_now_iso()
        added: list[JobRecord] = []

        for meta in records:
            if not meta.guid:
                logger.warning("Job missing guid, skipping: %s", meta.title or meta.apply_url or "unknown")
                continue
            if meta.guid in known:
                continue
            known.add(meta.guid)
            added.append(
                JobRecord(
                    guid=meta.guid,
                    job_number=meta.job_number or None,
                    pub_date=meta.pub_date or now,
                    status=JobStatus.PENDING,
                    discovered_at=now,
                    apply_url=meta.apply_url,
                )
            )

        if not added:
            logger.info("No unique new jobs to add to queue")
            return state

        state.job_queue.extend(added)
        state.total_jobs_processed += len(added)
        state.last_processed = now

        try:
            self._save(state)
        except StorageError as exc:
            raise StorageError(f"Failed to add jobs to queue: {exc}") from exc

        logger.info(
            "Added %d new jobs to queue. Total pending: %d",
            len(added),
            pending_count(state),
        )
        return state

    def get_next_batch(self, count: int = 10) -> list[JobRecord]:
        """Return up to ``count`` pending records, oldest pubDate first.

        Records with equal pubDates keep their insertion order.
        """
        if count <= 0:
            return []

        state = self.get_queue_state()
        pending = sorted(state.pending, key=_pub_date_key)
        batch = pending[:count]
        logger.info("Retrieved %d jobs for next batch (FIFO by pubDate)", len(batch))
        return batch

    def mark_as_sent(self, guids: Iterable[str]) -> bool:
        """Transition the given pending records to sent.

        Unknown guids and records that are already sent are ignored. A call
        that transitions at least one record counts as one sent email.
        Returns whether anything changed; nothing is written otherwise.
        """
        guid_set = {g for g in (guids or []) if g}
        if not guid_set:
            logger.info("No guids provided to mark as sent")
            return False

        state = self._load(strict=True)
        now = utc_now_iso()
        marked = 0

        for job in state.job_queue:
            if job.guid in guid_set and job.is_pending:
                job.status = JobStatus.SENT
                job.sent_at = now
                marked += 1

        if not marked:
            logger.info("None of the %d guids were pending; nothing marked", len(guid_set))
            return False

        state.emails_sent += 1
        state.last_processed = now

        try:
            self._save(state)
        except StorageError as exc:
            raise StorageError(f"Failed to mark jobs as sent: {exc}") from exc

        logger.info(
            "Marked %d jobs as sent. Total emails sent: %d",
            marked,
            state.emails_sent,
        )
        return True

    def get_queue_stats(self) -> QueueStats:
        """Summarize the queue. Never raises; failures are reported in ``error``."""
        try:
            state = self._load(strict=True)
            pending = sorted(state.pending, key=_pub_date_key)

            stats = QueueStats(
                total_jobs=len(state.job_queue),
                pending_jobs=len(pending),
                sent_jobs=len(state.sent),
                needed_for_email=max(0, self.threshold - len(pending)),
                emails_sent=state.emails_sent,
                total_jobs_processed=state.total_jobs_processed,
                last_processed=state.last_processed,
            )
            if pending:
                stats.oldest_pending_job = pending[0].pub_date
                stats.newest_pending_job = pending[-1].pub_date
            return stats

        except Exception as exc:
            logger.error("Error getting queue stats: %s", exc)
            return QueueStats(needed_for_email=self.threshold, error=str(exc))

    def cleanup_old_jobs(self, max_age_days: int = 90) -> QueueState:
        """Drop sent records whose sentAt is older than ``max_age_days``.

        Pending records are always kept, whatever their age.
        """
        state = self._load(strict=True)
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)

        kept: list[JobRecord] = []
        for job in state.job_queue:
            if job.is_pending:
                kept.append(job)
                continue
            sent_at = parse_iso(job.sent_at)
            if sent_at is None or sent_at > cutoff:
                kept.append(job)

        removed = len(state.job_queue) - len(kept)
        if not removed:
            logger.info("No sent jobs older than %d days to clean up", max_age_days)
            return state

        state.job_queue = kept
        state.last_processed = utc_now_iso()

        try:
            self._save(state)
        except StorageError as exc:
            raise StorageError(f"Failed to clean up old jobs: {exc}") from exc

        logger.info("Cleaned up %d old sent jobs (older than %d days)", removed, max_age_days)
        return state

    def reset(self) -> QueueStats:
        """Delete the queue document. Returns the stats from before the reset."""
        previous = self.get_queue_stats()
        try:
            self.blob_store.delete(self.key)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to reset job queue: {exc}") from exc

        logger.warning(
            "Job queue reset (%d jobs, %d pending discarded)",
            previous.total_jobs,
            previous.pending_jobs,
        )
        return previous
