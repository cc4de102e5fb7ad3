"""Configuration loader for the job mailer.

Reads config.yaml and returns a typed configuration object that is passed
explicitly into every component. Secrets and deployment-specific values can
be supplied through environment variables; the environment is only read
here, never by the queue or dispatch code.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from job_mailer.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

STORAGE_BACKENDS = ("file", "http", "memory")

# environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "JOB_FEED_URL": ("feed", "url"),
    "MAILCHIMP_API_KEY": ("campaign", "api_key"),
    "MAILCHIMP_SERVER_PREFIX": ("campaign", "server_prefix"),
    "MAILCHIMP_LIST_ID": ("campaign", "list_id"),
    "EMAIL_SUBJECT": ("campaign", "subject"),
    "ADMIN_EMAIL": ("notify", "admin_email"),
    "RESEND_API_KEY": ("notify", "api_key"),
    "BLOB_STORE_URL": ("storage", "base_url"),
    "BLOB_STORE_TOKEN": ("storage", "token"),
    "JOB_THRESHOLD": (None, "threshold"),
}


@dataclass
class FeedConfig:
    """Where and how to fetch the job feed."""

    url: str = ""
    request_timeout_seconds: float = 30.0
    max_attempts: int = 3
    user_agent: str = "JobMailer/1.0 (+feed poller)"


@dataclass
class StorageConfig:
    """Blob backend holding the queue document."""

    backend: str = "file"  # "file", "http" or "memory"
    data_dir: str = "data"
    key: str = "job-queue"
    base_url: str = ""
    token: str = ""
    request_timeout_seconds: float = 15.0


@dataclass
class CampaignConfig:
    """Mailchimp campaign settings."""

    api_key: str = ""
    server_prefix: str = ""
    list_id: str = ""
    subject: str = "New Job Opportunities"
    from_name: str = "Job Mailer"
    reply_to: str = "noreply@example.com"
    request_timeout_seconds: float = 30.0


@dataclass
class NotifyConfig:
    """Administrator failure notifications via Resend."""

    admin_email: str = ""
    api_key: str = ""
    from_address: str = "Job Mailer <onboarding@resend.dev>"
    request_timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.admin_email and self.api_key)


@dataclass
class MailerConfig:
    """Top-level configuration."""

    feed: FeedConfig = field(default_factory=FeedConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    campaign: CampaignConfig = field(default_factory=CampaignConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    threshold: int = 10
    cleanup_max_age_days: int = 90
    log_level: str = "INFO"

    def validate(self) -> None:
        """Raise ConfigurationError listing every missing or invalid value."""
        problems: list[str] = []

        if not self.feed.url:
            problems.append("feed.url (JOB_FEED_URL)")
        if not self.campaign.api_key:
            problems.append("campaign.api_key (MAILCHIMP_API_KEY)")
        if not self.campaign.server_prefix:
            problems.append("campaign.server_prefix (MAILCHIMP_SERVER_PREFIX)")
        if not self.campaign.list_id:
            problems.append("campaign.list_id (MAILCHIMP_LIST_ID)")
        if self.storage.backend not in STORAGE_BACKENDS:
            problems.append(
                f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}"
            )
        if self.storage.backend == "http" and not self.storage.base_url:
            problems.append("storage.base_url (BLOB_STORE_URL)")
        if self.threshold < 1:
            problems.append("threshold must be at least 1")

        if problems:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(problems)
            )


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> MailerConfig:
    """Load the configuration from a YAML file, then apply environment overrides."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.warning("Config file not found at %s - using defaults", config_path)

    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})
            raw[section][key] = value

    feed_raw = raw.get("feed") or {}
    storage_raw = raw.get("storage") or {}
    campaign_raw = raw.get("campaign") or {}
    notify_raw = raw.get("notify") or {}

    try:
        threshold = int(raw.get("threshold", 10))
        cleanup_days = int(raw.get("cleanup_max_age_days", 90))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

    return MailerConfig(
        feed=FeedConfig(
            url=feed_raw.get("url", ""),
            request_timeout_seconds=feed_raw.get("request_timeout_seconds", 30.0),
            max_attempts=feed_raw.get("max_attempts", 3),
            user_agent=feed_raw.get("user_agent", FeedConfig.user_agent),
        ),
        storage=StorageConfig(
            backend=storage_raw.get("backend", "file"),
            data_dir=storage_raw.get("data_dir", "data"),
            key=storage_raw.get("key", "job-queue"),
            base_url=storage_raw.get("base_url", ""),
            token=storage_raw.get("token", ""),
            request_timeout_seconds=storage_raw.get("request_timeout_seconds", 15.0),
        ),
        campaign=CampaignConfig(
            api_key=campaign_raw.get("api_key", ""),
            server_prefix=campaign_raw.get("server_prefix", ""),
            list_id=campaign_raw.get("list_id", ""),
            subject=campaign_raw.get("subject", CampaignConfig.subject),
            from_name=campaign_raw.get("from_name", CampaignConfig.from_name),
            reply_to=campaign_raw.get("reply_to", CampaignConfig.reply_to),
            request_timeout_seconds=campaign_raw.get("request_timeout_seconds", 30.0),
        ),
        notify=NotifyConfig(
            admin_email=notify_raw.get("admin_email", ""),
            api_key=notify_raw.get("api_key", ""),
            from_address=notify_raw.get("from_address", NotifyConfig.from_address),
            request_timeout_seconds=notify_raw.get("request_timeout_seconds", 30.0),
        ),
        threshold=threshold,
        cleanup_max_age_days=cleanup_days,
        log_level=raw.get("log_level", "INFO"),
    )
