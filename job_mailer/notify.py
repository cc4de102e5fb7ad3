"""Administrator notification when a dispatch cycle fails.

Sends a short email via the Resend API. Notification is best effort: every
failure here is logged and swallowed so it never masks the original error.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone

import requests

from job_mailer.config import NotifyConfig
from job_mailer.errors import MarkSentError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def build_failure_subject(error: BaseException) -> str:
    """Subject line; a post-send mark failure is flagged as critical."""
    if isinstance(error, MarkSentError):
        return "CRITICAL: job campaign sent but queue not updated"
    classification = getattr(error, "classification", "internal")
    return f"Job mailer cycle failed ({classification})"


def build_failure_html(error: BaseException) -> str:
    """Build HTML email body describing the failure."""
    now = datetime.now(timezone.utc).strftime("%B %d, %Y at %I:%M %p UTC")
    classification = getattr(error, "classification", "internal")
    retryable = getattr(error, "retryable", False)
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    advice = "The next scheduled run will retry." if retryable else "Manual attention required."
    extra = ""
    if isinstance(error, MarkSentError):
        advice = (
            "The campaign went out but its jobs are still pending. Do NOT simply "
            "re-run: mark these jobs as sent first or they will be emailed again."
        )
        extra = (
            f"<p><strong>Campaign:</strong> {_escape_html(error.campaign_id)}</p>"
            f"<p><strong>Guids:</strong> {_escape_html(', '.join(error.guids))}</p>"
        )

    return f'''
    <h2>Job Mailer Error</h2>
    <p><strong>Time:</strong> {now}</p>
    <p><strong>Classification:</strong> {_escape_html(classification)}</p>
    <p><strong>Error:</strong> {_escape_html(str(error))}</p>
    <p>{_escape_html(advice)}</p>
    {extra}
    <pre>{_escape_html(stack)}</pre>
    '''


def _escape_html(text: str) -> str:
    """Escape HTML special characters."""
    if not text:
        return ""
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


class ResendNotifier:
    """Emails the administrator about failed cycles."""

    def __init__(self, config: NotifyConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def notify_failure(self, error: BaseException) -> bool:
        """Send a failure email. Returns whether it was delivered."""
        if not self.config.enabled:
            logger.info("No admin email / Resend key configured - skipping failure notification")
            return False

        payload = {
            "from": self.config.from_address,
            "to": [self.config.admin_email],
            "subject": build_failure_subject(error),
            "html": build_failure_html(error),
        }

        try:
            resp = self.session.post(
                RESEND_API_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "User-Agent": "JobMailer/1.0",
                },
                timeout=self.config.request_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error("Failed to send failure notification: %s", exc)
            return False

        if not resp.ok:
            logger.error("Resend API error %d: %s", resp.status_code, resp.text[:500])
            return False

        logger.info("Failure notification sent to %s", self.config.admin_email)
        return True

