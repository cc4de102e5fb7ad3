"""Tests for administrator failure notifications."""

import json

import pytest
import responses

from job_mailer.config import NotifyConfig
from job_mailer.errors import MarkSentError, SendError
from job_mailer.notify import RESEND_API_URL, ResendNotifier, build_failure_subject


@pytest.fixture
def notifier():
    return ResendNotifier(NotifyConfig(admin_email="ops@example.com", api_key="re_test"))


def test_subjects_distinguish_critical_failures():
    """Post-send mark failures get a CRITICAL subject."""
    assert build_failure_subject(SendError("x")) == "Job mailer cycle failed (send)"
    critical = build_failure_subject(MarkSentError("x", campaign_id="c1", guids=["a"]))
    assert critical.startswith("CRITICAL")


@responses.activate
def test_disabled_without_admin_email():
    """No admin email means no notification request."""
    notifier = ResendNotifier(NotifyConfig(admin_email="", api_key="re_test"))
    assert notifier.notify_failure(SendError("x")) is False
    assert len(responses.calls) == 0


@responses.activate
def test_sends_failure_email(notifier):
    """The failure email goes to the admin through Resend."""
    responses.add(responses.POST, RESEND_API_URL, json={"id": "email-1"}, status=200)

    assert notifier.notify_failure(SendError("Mailchimp API error 500")) is True

    payload = json.loads(responses.calls[0].request.body)
    assert payload["to"] == ["ops@example.com"]
    assert "send" in payload["subject"]
    assert "Mailchimp API error 500" in payload["html"]
    assert responses.calls[0].request.headers["Authorization"] == "Bearer re_test"


@responses.activate
def test_mark_failure_email_names_campaign(notifier):
    """The critical email names the campaign and its guids."""
    responses.add(responses.POST, RESEND_API_URL, json={"id": "email-2"}, status=200)

    error = MarkSentError("write failed", campaign_id="c9", guids=["job-1", "job-2"])
    notifier.notify_failure(error)

    payload = json.loads(responses.calls[0].request.body)
    assert payload["subject"].startswith("CRITICAL")
    assert "c9" in payload["html"]
    assert "job-1, job-2" in payload["html"]


@responses.activate
def test_provider_error_is_swallowed(notifier):
    """A Resend error is logged and reported as not delivered."""
    responses.add(responses.POST, RESEND_API_URL, json={"message": "invalid"}, status=422)
    assert notifier.notify_failure(SendError("x")) is False
