"""Tests for the command-line entry point."""

import json

import pytest
import responses
import yaml

from job_mailer.main import main, parse_args

MAILCHIMP_PING = "https://us1.api.mailchimp.com/3.0/ping"

_ENV_VARS = (
    "JOB_FEED_URL", "MAILCHIMP_API_KEY", "MAILCHIMP_SERVER_PREFIX", "MAILCHIMP_LIST_ID",
    "EMAIL_SUBJECT", "JOB_THRESHOLD", "ADMIN_EMAIL", "RESEND_API_KEY",
    "BLOB_STORE_URL", "BLOB_STORE_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def write_config(tmp_path):
    def _write(**overrides):
        raw = {
            "threshold": 4,
            "storage": {"backend": "file", "data_dir": str(tmp_path / "data")},
        }
        raw.update(overrides)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(raw))
        return str(path)
    return _write


@pytest.fixture
def config_path(write_config):
    return write_config()


@pytest.fixture
def complete_config(write_config):
    return write_config(
        feed={"url": "https://feeds.example.com/jobs.rss"},
        campaign={"api_key": "abc-us1", "server_prefix": "us1", "list_id": "list1"},
    )


def _output(capsys):
    return json.loads(capsys.readouterr().out)


def test_parse_args_cleanup_without_days():
    """--cleanup takes an optional day count."""
    args = parse_args(["--cleanup"])
    assert args.cleanup == -1
    assert parse_args(["--cleanup", "30"]).cleanup == 30
    assert parse_args([]).cleanup is None


def test_actions_are_mutually_exclusive():
    """Only one maintenance action may be requested per run."""
    with pytest.raises(SystemExit):
        parse_args(["--stats", "--reset"])


def test_stats_on_empty_queue(config_path, capsys):
    """Stats on a fresh data directory report an empty queue."""
    assert main(["--config", config_path, "--stats"]) == 0
    out = _output(capsys)
    assert out["total_jobs"] == 0
    assert out["needed_for_email"] == 4
    assert "error" not in out


def test_stats_reports_corrupt_queue(config_path, tmp_path, capsys):
    """An unreadable queue document shows up as an error field, not a crash."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "job-queue.json").write_text("{broken")

    assert main(["--config", config_path, "--stats"]) == 1
    out = _output(capsys)
    assert out["error"]
    assert out["needed_for_email"] == 4


def test_stats_with_unknown_backend_prints_error(write_config, capsys):
    """A bad storage backend is reported as a configuration error payload."""
    path = write_config(storage={"backend": "bogus"})
    assert main(["--config", path, "--stats"]) == 1
    out = _output(capsys)
    assert out["status"] == "error"
    assert out["classification"] == "configuration"


def test_cleanup_with_http_backend_missing_url_prints_error(write_config, capsys):
    """The http backend without a base URL fails cleanly for maintenance actions."""
    path = write_config(storage={"backend": "http"})
    assert main(["--config", path, "--cleanup", "5"]) == 1
    out = _output(capsys)
    assert out["classification"] == "configuration"
    assert "base_url" in out["message"]


def test_reset_with_unknown_backend_prints_error(write_config, capsys):
    """Reset reports backend configuration errors instead of raising."""
    path = write_config(storage={"backend": "bogus"})
    assert main(["--config", path, "--reset"]) == 1
    assert _output(capsys)["classification"] == "configuration"


def test_run_without_configuration_fails(config_path, capsys):
    """A cycle with no feed or Mailchimp settings stops before any work."""
    assert main(["--config", config_path]) == 1
    out = _output(capsys)
    assert out["status"] == "error"
    assert out["classification"] == "configuration"
    assert "JOB_FEED_URL" in out["message"]


@responses.activate
def test_dry_run_validates_configuration(config_path, capsys):
    """Dry run rejects incomplete configuration without calling Mailchimp."""
    assert main(["--config", config_path, "--dry-run"]) == 1
    assert _output(capsys)["classification"] == "configuration"
    assert len(responses.calls) == 0


@responses.activate
def test_dry_run_pings_mailchimp(complete_config, capsys):
    """Dry run checks Mailchimp credentials, then prints queue stats."""
    responses.add(responses.GET, MAILCHIMP_PING, json={"health_status": "Everything's Chimpy!"})

    assert main(["--config", complete_config, "--dry-run"]) == 0
    out = _output(capsys)
    assert out["total_jobs"] == 0
    assert len(responses.calls) == 1
    assert responses.calls[0].request.headers["Authorization"].startswith("Basic ")


@responses.activate
def test_dry_run_reports_rejected_credentials(complete_config, capsys):
    """Rejected Mailchimp credentials fail the dry run with a send error."""
    responses.add(responses.GET, MAILCHIMP_PING, json={"title": "API Key Invalid"}, status=401)

    assert main(["--config", complete_config, "--dry-run"]) == 1
    out = _output(capsys)
    assert out["classification"] == "send"
    assert "401" in out["message"]


def test_cleanup_and_reset(config_path, capsys):
    """Cleanup and reset both succeed on an empty queue."""
    assert main(["--config", config_path, "--cleanup", "30"]) == 0
    assert _output(capsys)["totalJobs"] == 0

    assert main(["--config", config_path, "--reset"]) == 0
    out = _output(capsys)
    assert out["message"] == "Job queue reset"
    assert out["previousState"]["total_jobs"] == 0
