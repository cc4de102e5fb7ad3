"""Tests for configuration loading."""

import tempfile
from pathlib import Path

import pytest
import yaml

from job_mailer.config import MailerConfig, load_config
from job_mailer.errors import ConfigurationError


def test_load_default_config():
    """Loading the project's config.yaml should work."""
    config = load_config(environ={})
    assert isinstance(config, MailerConfig)
    assert config.threshold == 10
    assert config.storage.backend == "file"
    assert config.campaign.subject == "New Job Opportunities"


def test_load_missing_file():
    """Missing config file returns defaults."""
    config = load_config("/nonexistent/config.yaml", environ={})
    assert isinstance(config, MailerConfig)
    assert config.feed.url == ""
    assert config.cleanup_max_age_days == 90


def test_load_custom_config():
    """Custom config file is loaded correctly."""
    custom = {
        "threshold": 5,
        "feed": {"url": "https://feeds.example.com/jobs.rss", "max_attempts": 2},
        "storage": {"backend": "http", "base_url": "https://blobs.example.com/jobs"},
        "campaign": {"subject": "Hot Jobs"},
    }
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(custom, f)
        path = f.name

    try:
        config = load_config(path, environ={})
        assert config.threshold == 5
        assert config.feed.url == "https://feeds.example.com/jobs.rss"
        assert config.feed.max_attempts == 2
        assert config.storage.backend == "http"
        assert config.campaign.subject == "Hot Jobs"
        assert config.campaign.from_name == "Job Mailer"
    finally:
        Path(path).unlink()


def test_environment_overrides_file(tmp_path):
    """Environment variables win over values in the YAML file."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"threshold": 5, "feed": {"url": "https://old.example.com"}}))

    config = load_config(path, environ={
        "JOB_FEED_URL": "https://feeds.example.com/jobs.rss",
        "MAILCHIMP_API_KEY": "key-us1",
        "MAILCHIMP_SERVER_PREFIX": "us1",
        "MAILCHIMP_LIST_ID": "list1",
        "JOB_THRESHOLD": "3",
        "ADMIN_EMAIL": "ops@example.com",
        "RESEND_API_KEY": "re_test",
    })

    assert config.feed.url == "https://feeds.example.com/jobs.rss"
    assert config.threshold == 3
    assert config.campaign.list_id == "list1"
    assert config.notify.enabled
    config.validate()


def test_invalid_threshold_raises(tmp_path):
    """A non-numeric threshold is a configuration error."""
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "missing.yaml", environ={"JOB_THRESHOLD": "ten"})


def test_validate_lists_every_problem():
    """Validation reports every missing setting at once."""
    config = MailerConfig(threshold=0)
    config.storage.backend = "http"
    with pytest.raises(ConfigurationError) as exc_info:
        config.validate()
    message = str(exc_info.value)
    assert "JOB_FEED_URL" in message
    assert "MAILCHIMP_API_KEY" in message
    assert "MAILCHIMP_LIST_ID" in message
    assert "BLOB_STORE_URL" in message
    assert "threshold" in message
