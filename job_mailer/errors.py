"""Exceptions raised by the job mailer.

Each error carries a ``classification`` used in the structured cycle result
and a ``retryable`` flag telling operators whether the next scheduled run is
expected to fix it.
"""

from __future__ import annotations


class JobMailerError(Exception):
    """Base class for all job mailer failures."""

    classification = "internal"
    retryable = False


class ConfigurationError(JobMailerError):
    """Required configuration is missing or invalid."""

    classification = "configuration"


class FetchError(JobMailerError):
    """The job feed could not be fetched or parsed."""

    classification = "fetch"
    retryable = True


class StorageError(JobMailerError):
    """The queue document could not be read or written."""

    classification = "storage"
    retryable = True


class HydrationError(JobMailerError):
    """No usable job details could be re-fetched for a batch."""

    classification = "hydration"
    retryable = True


class SendError(JobMailerError):
    """The campaign provider rejected the campaign or timed out."""

    classification = "send"
    retryable = True


class MarkSentError(JobMailerError):
    """A campaign went out but its jobs could not be marked as sent.

    Retrying blindly re-sends the same jobs, so this is reported separately
    from ordinary failures.
    """

    classification = "post_send_mark"

    def __init__(self, message: str, campaign_id: str, guids: list[str]):
        super().__init__(message)
        self.campaign_id = campaign_id
        self.guids = list(guids)
