"""Campaign composition and delivery via the Mailchimp Marketing API.

A send is three calls: create a regular campaign for the configured list,
set its HTML content, then trigger the send. Any non-2xx response, timeout
or connection error raises SendError; the caller must treat the campaign as
not sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

import requests

from job_mailer.config import CampaignConfig
from job_mailer.errors import ConfigurationError, SendError
from job_mailer.models import JobDetails, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class CampaignResult:
    """Outcome of a successful campaign send."""

    campaign_id: str
    job_count: int
    sent_at: str


# ── HTML composition ────────────────────────────────────────────────────────


def render_campaign_html(jobs: Sequence[JobDetails], sent_on: datetime | None = None) -> str:
    """Build the HTML body listing every job in the batch."""
    sent_on = sent_on or datetime.now(timezone.utc)
    date_label = sent_on.strftime("%B %d, %Y").replace(" 0", " ")

    jobs_html = "".join(_render_job(job) for job in jobs)
    count = len(jobs)

    return f'''<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0;padding:20px;font-family:Roboto,Arial,sans-serif;background:#ffffff;color:#333333;line-height:1.6;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width:600px;margin:0 auto;">
        <tr>
            <td style="padding:0 0 30px 0;">
                <h2 style="font-weight:600;font-size:24px;color:#5D4299;margin:0;">This week's openings ({count} job{'s' if count != 1 else ''} - {date_label})</h2>
            </td>
        </tr>
        {jobs_html}
    </table>
</body>
</html>
'''


def _render_job(job: JobDetails) -> str:
    summary = f"{_escape_html(job.location)} | Hours: {_escape_html(job.hours)} | Salary: {_escape_html(job.salary_range)}"
    if job.job_number:
        summary += f" | Job#{_escape_html(job.job_number)}"

    return f'''
        <tr>
            <td style="padding:0 0 16px 0;">
                <div style="border:1px solid #F3F1F9;border-radius:8px;padding:24px;">
                    <p style="font-size:16px;font-weight:600;color:#111827;margin:0 0 8px 0;">{_escape_html(job.title)}</p>
                    <p style="font-size:14px;font-weight:600;color:#5D4299;margin:0 0 12px 0;">{summary}</p>
                    <p style="font-size:16px;color:#333333;margin:0 0 16px 0;">{_escape_html(job.description_first_sentence)}</p>
                    <a href="{_escape_html(job.apply_url)}" style="color:#5D4299;text-decoration:none;font-weight:600;font-size:14px;border-bottom:1px solid #5D4299;">Apply</a>
                </div>
            </td>
        </tr>
'''


def _escape_html(text: Any) -> str:
    """Escape HTML special characters."""
    if not text:
        return ""
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
    )


# ── Mailchimp sender ────────────────────────────────────────────────────────


class MailchimpSender:
    """Creates and sends job campaigns to a Mailchimp audience."""

    def __init__(self, config: CampaignConfig, session: requests.Session | None = None):
        if not (config.api_key and config.server_prefix and config.list_id):
            raise ConfigurationError(
                "Missing Mailchimp settings: MAILCHIMP_API_KEY, "
                "MAILCHIMP_SERVER_PREFIX, MAILCHIMP_LIST_ID"
            )
        self.config = config
        self.base_url = f"https://{config.server_prefix}.api.mailchimp.com/3.0"
        self.session = session or requests.Session()
        self.session.auth = ("job-mailer", config.api_key)

    def send_campaign(self, jobs: Sequence[JobDetails]) -> CampaignResult:
        """Compose, create and send a campaign for ``jobs``."""
        if not jobs:
            raise SendError("No jobs provided for email campaign")

        logger.info("Preparing to send campaign with %d jobs", len(jobs))
        html = render_campaign_html(jobs)

        campaign_id = self._create_campaign()
        self._request("PUT", f"/campaigns/{campaign_id}/content", json={"html": html})
        self._request("POST", f"/campaigns/{campaign_id}/actions/send")

        logger.info("Campaign %s sent with %d jobs", campaign_id, len(jobs))
        return CampaignResult(campaign_id=campaign_id, job_count=len(jobs), sent_at=utc_now_iso())

    def ping(self) -> bool:
        """Check the API key and server prefix."""
        self._request("GET", "/ping")
        return True

    def _create_campaign(self) -> str:
        subject = self.config.subject
        payload = {
            "type": "regular",
            "recipients": {"list_id": self.config.list_id},
            "settings": {
                "subject_line": subject,
                "preview_text": f"{subject} - Check out these new opportunities!",
                "title": f"Job Campaign - {datetime.now(timezone.utc).date().isoformat()}",
                "from_name": self.config.from_name,
                "reply_to": self.config.reply_to,
                "auto_footer": False,
                "inline_css": True,
            },
        }
        data = self._request("POST", "/campaigns", json=payload)
        campaign_id = data.get("id") if isinstance(data, dict) else None
        if not campaign_id:
            raise SendError("Mailchimp did not return a campaign id")
        logger.info("Campaign created with ID: %s", campaign_id)
        return str(campaign_id)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = self.base_url + path
        kwargs.setdefault("timeout", self.config.request_timeout_seconds)
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise SendError(f"Mailchimp {method} {path} timed out") from exc
        except requests.RequestException as exc:
            raise SendError(f"Mailchimp {method} {path} failed: {exc}") from exc

        if not resp.ok:
            raise SendError(f"Mailchimp API error {resp.status_code} on {method} {path}: {resp.text[:500]}")

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}
