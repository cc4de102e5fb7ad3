"""RSS job feed access.

Three pieces live here:

- ``FeedClient`` fetches and parses the feed (requests + feedparser), with
  the same timeout and retry policy for every request
- the metadata extractor turns feed entries into lightweight
  ``JobMetadata`` identity records for the queue
- ``FeedDetailHydrator`` re-fetches the feed at send time and returns full
  ``JobDetails`` for a set of guids

Identity is computed by ``entry_guid`` in every path, so an entry always
maps to the same guid at enqueue time and at hydration time.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Iterable

import feedparser
import requests
from bs4 import BeautifulSoup

from job_mailer.config import FeedConfig
from job_mailer.errors import ConfigurationError, FetchError
from job_mailer.models import JobDetails, JobMetadata, utc_now_iso

logger = logging.getLogger(__name__)

# Structured fields some ATS feeds (e.g. Crelate) publish under their own
# namespace. feedparser exposes them as "<prefix>_<localname>".
_CUSTOM_FIELD_PREFIXES = ("crelate",)

_LOCATION_RE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*,\s*[A-Z]{2})\b")
_SALARY_RE = re.compile(
    r"\$\s?\d[\d,]*(?:\.\d+)?\s*[kK]?"
    r"(?:\s*(?:-|–|—|to)\s*\$?\s?\d[\d,]*(?:\.\d+)?\s*[kK]?)?"
)
_HOURS_PATTERNS = (
    (re.compile(r"\b(full[- ]time)\b", re.I), "Full-time"),
    (re.compile(r"\b(part[- ]time)\b", re.I), "Part-time"),
    (re.compile(r"\b(contract|temp|temporary)\b", re.I), "Contract"),
    (re.compile(r"\b(freelance|consultant)\b", re.I), "Freelance"),
)
_SENTENCE_RE = re.compile(r"^(.+?[.!?])(?:\s|$)", re.S)
_MAX_SENTENCE_LENGTH = 300


# ── Text helpers ────────────────────────────────────────────────────────────


def html_to_text(html: str | None) -> str:
    """Convert HTML content to collapsed plain text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return re.sub(r"\s+", " ", soup.get_text(separator=" ", strip=True)).strip()


def stable_id(*parts: str) -> str:
    """Deterministic identifier from a set of string parts."""
    joined = "|".join(p.strip() for p in parts if p is not None)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _custom_field(entry: Any, name: str) -> str:
    """Read a namespaced structured field such as crelate:jobNumber."""
    for prefix in _CUSTOM_FIELD_PREFIXES:
        for key in (f"{prefix}_{name.lower()}", f"{prefix}_{name}"):
            value = entry.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def _entry_pub_date(entry: Any) -> str:
    """Publish (or update) time of an entry as UTC ISO 8601, defaulting to now."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()
            except (TypeError, ValueError):
                continue
    return utc_now_iso()


def entry_guid(entry: Any) -> tuple[str, bool]:
    """Return ``(guid, synthetic)`` for a feed entry.

    The feed's own guid is used when it is a non-empty string. Otherwise the
    guid is a hash of link and title, flagged synthetic; it is still stable
    across fetches so the entry deduplicates correctly.
    """
    guid = entry.get("id") or entry.get("guid")
    if isinstance(guid, str) and guid.strip():
        return guid.strip(), False

    link = (entry.get("link") or "").strip()
    title = html_to_text(entry.get("title"))
    return stable_id(link, title), True


# ── Feed client ─────────────────────────────────────────────────────────────


class FeedClient:
    """Fetches and parses the job feed."""

    def __init__(self, config: FeedConfig, session: requests.Session | None = None):
        if not config.url:
            raise ConfigurationError("Feed URL is required (feed.url / JOB_FEED_URL)")
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": config.user_agent})

    @property
    def url(self) -> str:
        return self.config.url

    def fetch_entries(self) -> list[Any]:
        """GET the feed and return its parsed entries.

        Raises FetchError if the feed is unreachable, times out, returns a
        non-2xx status, or cannot be parsed.
        """
        resp = self._get(self.url)
        parsed = feedparser.parse(resp.content)

        entries = list(parsed.get("entries") or [])
        if not entries and (parsed.get("bozo") or not parsed.get("version")):
            raise FetchError(
                f"Feed at {self.url} is malformed: {parsed.get('bozo_exception')}"
            )
        return entries

    def _get(self, url: str) -> requests.Response:
        """GET request with retries and exponential backoff."""
        attempts = max(1, self.config.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                resp = self.session.get(url, timeout=self.config.request_timeout_seconds)
                resp.raise_for_status()
                return resp
            except requests.RequestException as exc:
                logger.warning("GET %s attempt %d failed: %s", url, attempt, exc)
                if attempt == attempts:
                    raise FetchError(f"Failed to fetch feed {url}: {exc}") from exc
                time.sleep(2 ** attempt)

        raise FetchError(f"Failed to fetch feed {url}")


# ── Metadata extraction ─────────────────────────────────────────────────────


def extract_metadata(entry: Any) -> JobMetadata | None:
    """Turn a feed entry into a queue identity record.

    Entries without a title or link are skipped.
    """
    title = html_to_text(entry.get("title"))
    link = (entry.get("link") or "").strip()
    if not title or not link:
        logger.warning("Skipping feed entry missing title or link")
        return None

    guid, synthetic = entry_guid(entry)
    if synthetic:
        logger.warning("Generated synthetic guid for job: %s", title[:50])

    return JobMetadata(
        guid=guid,
        job_number=_custom_field(entry, "jobNumber") or None,
        pub_date=_entry_pub_date(entry),
        apply_url=link,
        title=title,
        synthetic_guid=synthetic,
    )


def fetch_job_metadata(client: FeedClient) -> list[JobMetadata]:
    """Fetch the feed and extract metadata for every usable entry."""
    logger.info("Fetching job metadata from %s", client.url)
    entries = client.fetch_entries()
    if not entries:
        logger.info("No items found in feed")
        return []

    metadata = [m for m in (extract_metadata(e) for e in entries) if m is not None]
    logger.info("Extracted %d job metadata records from %d items", len(metadata), len(entries))
    return metadata


class FeedMetadataSource:
    """Adapter giving the dispatch controller a no-argument metadata fetch."""

    def __init__(self, client: FeedClient):
        self.client = client

    def fetch_job_metadata(self) -> list[JobMetadata]:
        return fetch_job_metadata(self.client)


# ── Detail hydration ────────────────────────────────────────────────────────


def extract_location(text: str) -> str:
    match = _LOCATION_RE.search(text)
    if match and 3 < len(match.group(1)) < 50:
        return match.group(1)
    return "Location not specified"


def extract_salary_range(text: str) -> str:
    match = _SALARY_RE.search(text)
    if match:
        return re.sub(r"\s+", "", match.group(0))
    return "Salary not disclosed"


def extract_hours(text: str) -> str:
    for pattern, label in _HOURS_PATTERNS:
        if pattern.search(text):
            return label
    return "Full-time"


def extract_first_sentence(description_text: str) -> str:
    if not description_text:
        return "Job description not available"

    match = _SENTENCE_RE.match(description_text)
    sentence = match.group(1).strip() if match else description_text.strip()
    if len(sentence) <= 20:
        return "Job description not available"
    if len(sentence) > _MAX_SENTENCE_LENGTH:
        sentence = sentence[:_MAX_SENTENCE_LENGTH].rstrip() + "..."
    return sentence


def parse_job_details(entry: Any) -> JobDetails | None:
    """Build full job details from a feed entry, preferring structured fields."""
    title = html_to_text(entry.get("title"))
    link = (entry.get("link") or "").strip()
    if not title or not link:
        return None

    guid, _ = entry_guid(entry)
    description = html_to_text(entry.get("summary") or entry.get("description"))
    text = f"{title} {description}"

    return JobDetails(
        guid=guid,
        title=title,
        apply_url=link,
        location=_custom_field(entry, "location") or extract_location(text),
        salary_range=_custom_field(entry, "salary") or extract_salary_range(text),
        hours=_custom_field(entry, "hours") or extract_hours(text),
        job_number=_custom_field(entry, "jobNumber") or None,
        description_first_sentence=extract_first_sentence(description),
        published_date=_entry_pub_date(entry),
    )


class FeedDetailHydrator:
    """Re-fetches full job content for previously queued guids."""

    def __init__(self, client: FeedClient):
        self.client = client

    def fetch_job_details(self, guids: Iterable[str]) -> list[JobDetails]:
        """Return details for the guids present in the current feed snapshot.

        Results follow the order of ``guids``. Guids no longer in the feed are
        omitted and logged.
        """
        wanted = [g for g in guids if g]
        if not wanted:
            return []

        logger.info("Fetching fresh job details for %d guids", len(wanted))
        entries = self.client.fetch_entries()

        wanted_set = set(wanted)
        found: dict[str, JobDetails] = {}
        for entry in entries:
            guid, _ = entry_guid(entry)
            if guid not in wanted_set or guid in found:
                continue
            details = parse_job_details(entry)
            if details:
                found[guid] = details

        missing = [g for g in wanted if g not in found]
        if missing:
            logger.warning("Missing job details for guids: %s", ", ".join(missing))
        logger.info("Found %d job details from %d requested guids", len(found), len(wanted))

        return [found[g] for g in wanted if g in found]
