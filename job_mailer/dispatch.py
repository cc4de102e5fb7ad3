"""Dispatch controller - one accumulate-or-flush decision per invocation.

This is the core cycle:
  1. Fetch job metadata from the feed
  2. Add new jobs to the queue (known guids are ignored)
  3. If fewer than ``threshold`` jobs are pending, stop and report how many
     more are needed
  4. Otherwise select the oldest ``threshold`` pending jobs, re-fetch their
     details from the feed, and send one campaign
  5. Only after the send is confirmed, mark the selected guids as sent

Every raised error is caught at the top of the cycle, reported to the
administrator (best effort), and turned into an error result. Nothing is
retried within an invocation; a failed send leaves the batch pending for the
next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Optional, Protocol, Sequence

from job_mailer.campaign import CampaignResult
from job_mailer.config import MailerConfig
from job_mailer.errors import HydrationError, JobMailerError, MarkSentError
from job_mailer.models import JobDetails, JobMetadata
from job_mailer.queue import JobQueueStore, pending_count

logger = logging.getLogger(__name__)

# Oldest pending jobs previewed in an "accumulating" result
_SAMPLE_SIZE = 5


class MetadataSource(Protocol):
    def fetch_job_metadata(self) -> list[JobMetadata]: ...


class DetailHydrator(Protocol):
    def fetch_job_details(self, guids: Sequence[str]) -> list[JobDetails]: ...


class CampaignSender(Protocol):
    def send_campaign(self, jobs: Sequence[JobDetails]) -> CampaignResult: ...


class FailureNotifier(Protocol):
    def notify_failure(self, error: BaseException) -> bool: ...


@dataclass
class CycleResult:
    """Structured outcome of one dispatch cycle."""

    status: str  # "no_jobs", "accumulating", "sent", "anomaly" or "error"
    message: str
    pending_jobs: Optional[int] = None
    needed: Optional[int] = None
    sample_jobs: list[dict[str, Any]] = field(default_factory=list)
    campaign_id: Optional[str] = None
    sent_at: Optional[str] = None
    jobs_sent: Optional[int] = None
    guids_processed: Optional[int] = None
    missing_guids: list[str] = field(default_factory=list)
    queue_updated: Optional[bool] = None
    classification: Optional[str] = None
    retryable: Optional[bool] = None
    critical: bool = False
    stats: Optional[dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status != "error"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        return {k: v for k, v in d.items() if v not in (None, [])}


class DispatchController:
    """Runs the accumulate-or-flush cycle against the job queue."""

    def __init__(
        self,
        config: MailerConfig,
        queue: JobQueueStore,
        metadata_source: MetadataSource,
        hydrator: DetailHydrator,
        sender: CampaignSender,
        notifier: FailureNotifier | None = None,
    ):
        self.config = config
        self.queue = queue
        self.metadata_source = metadata_source
        self.hydrator = hydrator
        self.sender = sender
        self.notifier = notifier

    @property
    def threshold(self) -> int:
        return self.config.threshold

    def run_cycle(self) -> CycleResult:
        """Run one cycle and report its outcome. Never raises."""
        try:
            return self._run()
        except JobMailerError as exc:
            if isinstance(exc, MarkSentError):
                logger.critical("%s (campaign %s)", exc, exc.campaign_id)
            else:
                logger.error("Dispatch cycle failed [%s]: %s", exc.classification, exc)
            self._notify(exc)
            return error_result(exc)
        except Exception as exc:
            logger.exception("Unexpected error in dispatch cycle")
            self._notify(exc)
            return error_result(exc)

    def _run(self) -> CycleResult:
        self.config.validate()

        metadata = self.metadata_source.fetch_job_metadata()
        logger.info("Found %d jobs in feed", len(metadata))
        if not metadata:
            return CycleResult(
                status="no_jobs",
                message="No jobs found in feed",
                stats=self.queue.get_queue_stats().to_dict(),
            )

        state = self.queue.add_new_jobs(metadata)
        pending = pending_count(state)
        logger.info("Queue updated: %d pending jobs", pending)

        if pending < self.threshold:
            needed = self.threshold - pending
            logger.info("Threshold not reached: %d/%d jobs", pending, self.threshold)
            sample = self.queue.get_next_batch(min(pending, _SAMPLE_SIZE))
            return CycleResult(
                status="accumulating",
                message=f"Jobs added to queue, need {needed} more before sending",
                pending_jobs=pending,
                needed=needed,
                sample_jobs=[
                    {"guid": job.guid, "pubDate": job.pub_date, "applyUrl": job.apply_url}
                    for job in sample
                ],
                stats=self.queue.get_queue_stats().to_dict(),
            )

        logger.info("Threshold reached (%d >= %d), preparing campaign", pending, self.threshold)
        batch = self.queue.get_next_batch(self.threshold)
        if not batch:
            logger.warning("Threshold reached with %d pending but no batch was selected", pending)
            return CycleResult(
                status="anomaly",
                message="Threshold reached but no jobs available for email",
                pending_jobs=pending,
            )

        guids = [job.guid for job in batch]
        logger.info(
            "Selected %d jobs for email, pubDate %s to %s",
            len(batch), batch[0].pub_date, batch[-1].pub_date,
        )

        details = self.hydrator.fetch_job_details(guids)
        found = {d.guid for d in details}
        missing = [g for g in guids if g not in found]
        if not details:
            raise HydrationError(
                f"No job details found for {len(guids)} selected guids; nothing sent"
            )
        if missing:
            logger.warning(
                "Only found %d of %d jobs in feed; sending anyway", len(details), len(guids)
            )

        campaign = self.sender.send_campaign(details)
        logger.info("Campaign sent successfully: %s", campaign.campaign_id)

        # Every guid offered for this send is retired, including ones whose
        # details could not be re-fetched.
        try:
            updated = self.queue.mark_as_sent(guids)
        except Exception as exc:
            raise MarkSentError(
                f"Campaign {campaign.campaign_id} was sent but {len(guids)} jobs "
                f"could not be marked as sent: {exc}",
                campaign_id=campaign.campaign_id,
                guids=guids,
            ) from exc

        if not updated:
            logger.warning(
                "Campaign %s sent but no selected job was still pending", campaign.campaign_id
            )

        return CycleResult(
            status="sent",
            message="Email campaign sent successfully",
            campaign_id=campaign.campaign_id,
            sent_at=campaign.sent_at,
            jobs_sent=campaign.job_count,
            guids_processed=len(guids),
            missing_guids=missing,
            queue_updated=updated,
            stats=self.queue.get_queue_stats().to_dict(),
        )

    def _notify(self, error: BaseException) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_failure(error)
        except Exception as exc:
            logger.error("Failed to send error notification: %s", exc)


def error_result(error: BaseException) -> CycleResult:
    """Turn a raised error into an error CycleResult."""
    classification = getattr(error, "classification", "internal")
    result = CycleResult(
        status="error",
        message=str(error),
        classification=classification,
        retryable=bool(getattr(error, "retryable", False)),
        critical=isinstance(error, MarkSentError),
    )
    if isinstance(error, MarkSentError):
        result.campaign_id = error.campaign_id
        result.guids_processed = len(error.guids)
    return result
