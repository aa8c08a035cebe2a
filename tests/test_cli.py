"""Tests for the jobqueue command line.

Tests cover:
- Schema creation
- Enqueueing jobs and payload validation
- Bounded processing runs
- Status, listing, retry and cleanup commands
- Error reporting and exit codes, including invalid configuration
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from jobqueue.cli import build_parser, main


@pytest.fixture
def cli_env(clean_env, tmp_path):
    """Environment with a SQLite database whose schema exists."""
    clean_env.setenv("JOBQUEUE_DATABASE__URL", f"sqlite:///{tmp_path / 'cli.db'}")
    clean_env.setenv("JOBQUEUE_WORKER__IDLE_INTERVAL", "0.05")
    with patch("jobqueue.services.job_types.entry_points", return_value=[]):
        assert main(["init-db"]) == 0
        yield clean_env


def run_json(capsys, argv: list[str]):
    """Run a command that succeeds and return its JSON output lines."""
    capsys.readouterr()
    assert main(argv) == 0
    out = capsys.readouterr().out
    return [json.loads(line) for line in out.splitlines()]


class TestParser:
    """Tests for argument parsing."""

    def test_command_required(self):
        """Test a command must be given."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_defaults(self):
        """Test option defaults."""
        args = build_parser().parse_args(["list", "default"])

        assert args.state is None
        assert args.limit == 50

    def test_payload_must_be_json(self):
        """Test malformed JSON payloads are rejected by the parser."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["enqueue", "default", "echo", "--payload", "nope"])


class TestInitDb:
    """Tests for init-db."""

    def test_init_db(self, cli_env, capsys):
        """Test creating the schema twice is harmless."""
        assert main(["init-db"]) == 0

        assert "Database schema created" in capsys.readouterr().out


class TestEnqueueAndProcess:
    """Tests for enqueue and process."""

    def test_enqueue(self, cli_env, capsys):
        """Test enqueue prints the new job id."""
        (output,) = run_json(
            capsys, ["enqueue", "default", "echo", "--payload", '{"message": "hi"}']
        )

        (job,) = run_json(capsys, ["list", "default"])
        assert job["id"] == output["id"]
        assert job["type"] == "echo"
        assert job["payload"] == {"message": "hi"}
        assert job["state"] == "queued"

    def test_enqueue_payload_must_be_object(self, cli_env, capsys):
        """Test JSON payloads other than objects are refused."""
        assert main(["enqueue", "default", "echo", "--payload", "[1, 2]"]) == 1

        assert "--payload must be a JSON object" in capsys.readouterr().err

    def test_process(self, cli_env, capsys):
        """Test a bounded run processes available jobs."""
        run_json(capsys, ["enqueue", "default", "echo", "--payload", '{"message": "hi"}'])
        run_json(capsys, ["enqueue", "default", "echo"])

        (output,) = run_json(capsys, ["process", "default", "--time-limit", "1"])

        assert output == {"queue": "default", "processed": 2}
        (counts,) = run_json(capsys, ["status", "default"])
        assert counts["success"] == 2
        assert counts["queued"] == 0


class TestInspection:
    """Tests for status and list."""

    def test_status_empty(self, cli_env, capsys):
        """Test status reports zero counts on an empty queue."""
        (counts,) = run_json(capsys, ["status", "default"])

        assert counts["queued"] == 0
        assert counts["processing"] == 0

    def test_list_by_state(self, cli_env, capsys):
        """Test filtering the listing by state."""
        run_json(capsys, ["enqueue", "default", "echo"])
        run_json(capsys, ["enqueue", "default", "unregistered"])
        run_json(capsys, ["process", "default", "--time-limit", "1"])

        (failed,) = run_json(capsys, ["list", "default", "--state", "failure"])

        assert failed["type"] == "unregistered"
        assert failed["message"] == "Unknown job type: unregistered"

    def test_list_limit(self, cli_env, capsys):
        """Test the listing is limited."""
        for _ in range(3):
            run_json(capsys, ["enqueue", "default", "echo"])

        assert len(run_json(capsys, ["list", "default", "--limit", "2"])) == 2


class TestRetryAndCleanup:
    """Tests for retry and cleanup."""

    def test_retry_failed_job(self, cli_env, capsys):
        """Test a failed job is sent back to the queue."""
        (output,) = run_json(capsys, ["enqueue", "default", "unregistered"])
        run_json(capsys, ["process", "default", "--time-limit", "1"])

        (job,) = run_json(capsys, ["retry", "default", output["id"]])

        assert job["state"] == "queued"
        assert job["num_retries"] == 1

    def test_retry_successful_job_refused(self, cli_env, capsys):
        """Test finished successful jobs cannot be retried."""
        (output,) = run_json(capsys, ["enqueue", "default", "echo"])
        run_json(capsys, ["process", "default", "--time-limit", "1"])
        capsys.readouterr()

        assert main(["retry", "default", output["id"]]) == 1
        assert "ERROR: Cannot" in capsys.readouterr().err

    def test_retry_unknown_job(self, cli_env, capsys):
        """Test retrying a missing job is an error."""
        capsys.readouterr()

        assert main(["retry", "default", "999"]) == 1
        assert "ERROR:" in capsys.readouterr().err

    def test_cleanup(self, cli_env, capsys):
        """Test cleanup reports reclaimed jobs."""
        (output,) = run_json(capsys, ["cleanup", "default"])

        assert output == {"queue": "default", "reclaimed": 0}


class TestErrors:
    """Tests for error reporting."""

    def test_unknown_queue(self, cli_env, capsys):
        """Test commands on an unconfigured queue fail."""
        capsys.readouterr()

        assert main(["status", "nope"]) == 1
        assert "ERROR: Unknown queue: nope" in capsys.readouterr().err

    def test_invalid_configuration(self, clean_env, capsys):
        """Test a missing database URL is reported with an exit code."""
        assert main(["status", "default"]) == 1

        assert "ERROR: Invalid configuration" in capsys.readouterr().err
