"""Tests for core/runner.py — command execution, retry and JSON handling.

Covers:
- parse_json_output() / parse_json_documents() / graphql_errors()
- CommandRunner.run() failure classification and rate-limit retry
- CommandRunner.run_paginated() streaming through a real shell
- CommandRunner.run_async() timeout kill
"""

import json
import shutil
import subprocess
import time
from unittest.mock import patch

import pytest

from worklog_sync.core.retry import RetryPolicy
from worklog_sync.core.runner import (
    CommandRunner,
    graphql_errors,
    parse_json_documents,
    parse_json_output,
)

needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="needs sh")


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(
        args=["gh"], returncode=returncode, stdout=stdout, stderr=stderr
    )


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


class TestJsonHelpers:
    def test_empty_output_is_ok(self):
        result = parse_json_output("  \n")
        assert result.ok
        assert result.data is None

    def test_invalid_json(self):
        result = parse_json_output("{nope")
        assert not result.ok
        assert result.error == "Invalid JSON response"

    def test_graphql_errors_fail_result(self):
        result = parse_json_output(
            json.dumps({"errors": [{"message": "a"}, {"message": "b"}]})
        )
        assert not result.ok
        assert result.error == "a; b"

    def test_graphql_errors_none(self):
        assert graphql_errors({"data": {}}) is None
        assert graphql_errors([1, 2]) is None
        assert graphql_errors({"errors": []}) is None

    def test_documents_flatten_pages(self):
        assert parse_json_documents('[1, 2]\n[3]\n{"a": 1}') == [
            1,
            2,
            3,
            {"a": 1},
        ]

    def test_documents_empty(self):
        assert parse_json_documents("  ") == []

    def test_documents_invalid(self):
        with pytest.raises(json.JSONDecodeError):
            parse_json_documents("[1]\n[")


# ---------------------------------------------------------------------------
# Synchronous run
# ---------------------------------------------------------------------------


class TestRun:
    """CommandRunner.run() with subprocess.run mocked."""

    def test_success(self):
        runner = CommandRunner()
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(stdout="out"),
        ) as mock_run:
            result = runner.run(["api", "repos/a/b"])

        assert result.ok
        assert result.stdout == "out"
        assert mock_run.call_args.args[0] == ["gh", "api", "repos/a/b"]
        assert runner.metrics["api repos/a/b"] == 1

    def test_non_zero_exit_uses_stderr(self):
        runner = CommandRunner()
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(returncode=1, stderr="HTTP 404"),
        ):
            result = runner.run(["api", "x"])

        assert not result.ok
        assert result.error == "HTTP 404"
        assert result.returncode == 1

    def test_missing_binary(self):
        runner = CommandRunner(binary="nonexistent-gh")
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            side_effect=FileNotFoundError("No such file"),
        ):
            result = runner.run(["api"])

        assert not result.ok
        assert "No such file" in result.error

    def test_timeout(self):
        runner = CommandRunner(timeout=1.5)
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=1.5),
        ):
            result = runner.run(["api"])

        assert not result.ok
        assert "timed out" in result.error

    def test_rate_limit_retries_with_backoff(self):
        sleeps = []
        runner = CommandRunner(sleep=sleeps.append)
        responses = [
            _completed(returncode=1, stderr="API rate limit exceeded"),
            _completed(returncode=1, stderr="API rate limit exceeded"),
            _completed(stdout="{}"),
        ]
        with patch(
            "worklog_sync.core.runner.subprocess.run", side_effect=responses
        ) as mock_run:
            result = runner.run(["api", "x"])

        assert result.ok
        assert mock_run.call_count == 3
        assert sleeps == [0.5, 1.0]
        assert runner.metrics["retries"] == 2

    def test_rate_limit_gives_up(self):
        sleeps = []
        runner = CommandRunner(
            policy=RetryPolicy(max_retries=2), sleep=sleeps.append
        )
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(returncode=1, stderr="HTTP 429"),
        ) as mock_run:
            result = runner.run(["api", "x"])

        assert not result.ok
        assert mock_run.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_retry_disabled(self):
        sleeps = []
        runner = CommandRunner(sleep=sleeps.append)
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(returncode=1, stderr="HTTP 429"),
        ) as mock_run:
            runner.run(["api"], retry=False)

        assert mock_run.call_count == 1
        assert sleeps == []

    def test_other_failure_not_retried(self):
        runner = CommandRunner(sleep=lambda _: None)
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(returncode=1, stderr="Not Found"),
        ) as mock_run:
            runner.run(["api"])

        assert mock_run.call_count == 1

    def test_run_json(self):
        runner = CommandRunner()
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(stdout='{"number": 5}'),
        ):
            result = runner.run_json(["api", "x"], input="{}")

        assert result.ok
        assert result.data == {"number": 5}

    def test_run_json_failure(self):
        runner = CommandRunner()
        with patch(
            "worklog_sync.core.runner.subprocess.run",
            return_value=_completed(returncode=1, stderr="bad"),
        ):
            result = runner.run_json(["api"])

        assert not result.ok
        assert result.error == "bad"


# ---------------------------------------------------------------------------
# Streamed pagination (real child process)
# ---------------------------------------------------------------------------


@needs_sh
class TestRunPaginated:
    def test_concatenated_pages(self):
        runner = CommandRunner(binary="sh")
        result = runner.run_paginated(["-c", "printf '[1,2]\\n[3]'"])

        assert result.ok
        assert result.data == [1, 2, 3]

    def test_failure_reports_stderr(self):
        runner = CommandRunner(binary="sh")
        result = runner.run_paginated(["-c", "echo broken >&2; exit 3"])

        assert not result.ok
        assert result.error == "broken"

    def test_invalid_json(self):
        runner = CommandRunner(binary="sh")
        result = runner.run_paginated(["-c", "printf '[1'"])

        assert not result.ok
        assert result.error == "Invalid JSON response"

    def test_missing_binary(self):
        runner = CommandRunner(binary="definitely-not-a-binary-xyz")
        result = runner.run_paginated(["api"])
        assert not result.ok

    def test_timeout_kills_hung_listing(self):
        runner = CommandRunner(binary="sh", timeout=0.5)
        started = time.monotonic()
        result = runner.run_paginated(["-c", "sleep 4; echo '[]'"])
        elapsed = time.monotonic() - started

        assert not result.ok
        assert "timed out" in result.error
        assert elapsed < 2.5


# ---------------------------------------------------------------------------
# Async
# ---------------------------------------------------------------------------


@needs_sh
class TestRunAsync:
    async def test_success(self):
        runner = CommandRunner(binary="sh")
        result = await runner.run_json_async(["-c", "printf '{\"a\": 1}'"])

        assert result.ok
        assert result.data == {"a": 1}

    async def test_stdin_forwarded(self):
        runner = CommandRunner(binary="sh")
        result = await runner.run_async(["-c", "cat"], input="hello")

        assert result.ok
        assert result.stdout == "hello"

    async def test_timeout_kills_process(self):
        runner = CommandRunner(binary="sh")
        result = await runner.run_async(["-c", "sleep 5"], timeout=0.2)

        assert not result.ok
        assert "timed out" in result.error

    async def test_rate_limit_retry(self):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        runner = CommandRunner(
            binary="sh",
            policy=RetryPolicy(max_retries=1),
            async_sleep=fake_sleep,
        )
        result = await runner.run_async(
            ["-c", "echo 'secondary rate limit' >&2; exit 1"]
        )

        assert not result.ok
        assert sleeps == [0.5]
        assert runner.metrics["retries"] == 1
