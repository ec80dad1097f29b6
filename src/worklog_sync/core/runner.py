"""Resilient execution of external commands (``gh``, ``git``).

``CommandRunner`` is the transport boundary.  Expected failures never raise
out of it; they come back as a failed result:

* non-zero exit status, missing binary, timeout -> ``CommandResult(ok=False)``
* malformed JSON, GraphQL ``errors`` array      -> ``JsonResult(ok=False)``

Failed attempts whose error text looks like rate limiting are retried with
exponential backoff (see ``worklog_sync.core.retry``).

Three execution styles exist:

* ``run`` / ``run_json`` -- synchronous, output captured in memory.
* ``run_paginated`` -- synchronous, stdout written straight to a temporary
  file so large paginated listings never fill a pipe; the child is killed
  when the timeout expires.
* ``run_async`` / ``run_json_async`` -- asynchronous with a hard timeout.
  The process is killed when the timeout expires.
"""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import tempfile
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from worklog_sync.core.retry import Backoff, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class JsonResult:
    ok: bool
    data: Any = None
    error: str | None = None


def _failure_text(stdout: str, stderr: str, returncode: int | None) -> str:
    text = stderr.strip() or stdout.strip()
    if text:
        return text
    return f"command failed with exit code {returncode}"


def graphql_errors(data: Any) -> str | None:
    """Return joined GraphQL error messages, or ``None`` if there are none."""
    if not isinstance(data, dict):
        return None
    errors = data.get("errors")
    if not isinstance(errors, list) or not errors:
        return None
    messages = [
        (entry.get("message") if isinstance(entry, dict) else None)
        or str(entry)
        for entry in errors
    ]
    return "; ".join(messages) or "GraphQL request returned errors"


def parse_json_output(stdout: str) -> JsonResult:
    """Classify the JSON printed by a successful command."""
    text = stdout.strip()
    if not text:
        return JsonResult(ok=True, data=None)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return JsonResult(ok=False, error="Invalid JSON response")
    error = graphql_errors(data)
    if error is not None:
        return JsonResult(ok=False, data=data, error=error)
    return JsonResult(ok=True, data=data)


def parse_json_documents(text: str) -> list[Any]:
    """Decode a stream of concatenated JSON documents.

    ``gh api --paginate`` prints one document per page.  Page arrays are
    flattened into a single list; object pages are kept as elements.

    Raises:
        json.JSONDecodeError: If the stream is not valid JSON.
    """
    decoder = json.JSONDecoder()
    items: list[Any] = []
    pos = 0
    end = len(text)
    while True:
        while pos < end and text[pos].isspace():
            pos += 1
        if pos >= end:
            break
        doc, pos = decoder.raw_decode(text, pos)
        if isinstance(doc, list):
            items.extend(doc)
        else:
            items.append(doc)
    return items


class CommandRunner:
    """Run one external program with retry, timeout and JSON handling.

    Args:
        binary: Program to execute (``"gh"``, ``"git"``).
        policy: Backoff parameters for rate-limited failures.
        timeout: Per-call timeout in seconds.
        sleep: Blocking sleep used between retries.
        async_sleep: Awaitable sleep used between async retries.
        cwd: Working directory for the child process.
    """

    def __init__(
        self,
        binary: str = "gh",
        policy: RetryPolicy | None = None,
        timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cwd: str | None = None,
    ) -> None:
        self.binary = binary
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self._async_sleep = async_sleep
        self.cwd = cwd
        self.metrics: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Synchronous
    # ------------------------------------------------------------------

    def run(
        self,
        args: Sequence[str],
        input: str | None = None,
        retry: bool = True,
    ) -> CommandResult:
        """Run ``binary *args`` and capture its output."""
        return self._with_retry(
            lambda: self._execute(args, input), args, retry
        )

    def run_json(
        self, args: Sequence[str], input: str | None = None
    ) -> JsonResult:
        """Run a command whose stdout is a single JSON document."""
        result = self.run(args, input)
        if not result.ok:
            return JsonResult(ok=False, error=result.error)
        return parse_json_output(result.stdout)

    def run_paginated(self, args: Sequence[str]) -> JsonResult:
        """Run a paginated listing and return the flattened page items."""
        holder: dict[str, list[Any]] = {}

        def attempt() -> CommandResult:
            result, items = self._execute_streamed(args)
            if items is not None:
                holder["items"] = items
            return result

        result = self._with_retry(attempt, args, retry=True)
        if not result.ok:
            return JsonResult(ok=False, error=result.error)
        items = holder.get("items", [])
        for page in items:
            error = graphql_errors(page)
            if error is not None:
                return JsonResult(ok=False, error=error)
        return JsonResult(ok=True, data=items)

    def _with_retry(
        self,
        attempt: Callable[[], CommandResult],
        args: Sequence[str],
        retry: bool,
    ) -> CommandResult:
        backoff = Backoff(self.policy)
        while True:
            result = attempt()
            if not retry:
                return result
            delay = backoff.next_delay(result.ok, result.error)
            if delay is None:
                return result
            logger.info(
                "Rate limited running %s %s; retry %d/%d in %.1fs",
                self.binary,
                " ".join(args[:2]),
                backoff.retries,
                self.policy.max_retries,
                delay,
            )
            self.metrics["retries"] += 1
            self._sleep(delay)

    def _record(self, args: Sequence[str]) -> None:
        self.metrics[" ".join(args[:2]) or self.binary] += 1

    def _execute(
        self, args: Sequence[str], input: str | None
    ) -> CommandResult:
        self._record(args)
        logger.debug("exec %s %s", self.binary, " ".join(args))
        try:
            completed = subprocess.run(
                [self.binary, *args],
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                ok=False,
                error=f"{self.binary} timed out after {self.timeout}s",
            )
        except OSError as exc:
            return CommandResult(ok=False, error=str(exc))

        if completed.returncode != 0:
            return CommandResult(
                ok=False,
                stdout=completed.stdout,
                stderr=completed.stderr,
                returncode=completed.returncode,
                error=_failure_text(
                    completed.stdout, completed.stderr, completed.returncode
                ),
            )
        return CommandResult(
            ok=True,
            stdout=completed.stdout,
            stderr=completed.stderr,
            returncode=0,
        )

    def _execute_streamed(
        self, args: Sequence[str]
    ) -> tuple[CommandResult, list[Any] | None]:
        self._record(args)
        logger.debug("exec (streamed) %s %s", self.binary, " ".join(args))
        with tempfile.TemporaryFile() as out_file, \
                tempfile.TemporaryFile() as err_file:
            try:
                proc = subprocess.Popen(
                    [self.binary, *args],
                    stdin=subprocess.DEVNULL,
                    stdout=out_file,
                    stderr=err_file,
                    cwd=self.cwd,
                )
            except OSError as exc:
                return CommandResult(ok=False, error=str(exc)), None

            try:
                returncode = proc.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                logger.warning(
                    "%s %s killed after %.1fs timeout",
                    self.binary,
                    " ".join(args[:2]),
                    self.timeout,
                )
                return (
                    CommandResult(
                        ok=False,
                        error=f"{self.binary} timed out after {self.timeout}s",
                    ),
                    None,
                )

            err_file.seek(0)
            stderr = err_file.read().decode("utf-8", errors="replace")
            out_file.seek(0)
            stdout = out_file.read().decode("utf-8", errors="replace")

        if returncode != 0:
            return (
                CommandResult(
                    ok=False,
                    stdout=stdout,
                    stderr=stderr,
                    returncode=returncode,
                    error=_failure_text(stdout, stderr, returncode),
                ),
                None,
            )
        try:
            items = parse_json_documents(stdout)
        except json.JSONDecodeError:
            return (
                CommandResult(
                    ok=False,
                    stderr=stderr,
                    returncode=returncode,
                    error="Invalid JSON response",
                ),
                None,
            )
        return CommandResult(ok=True, stderr=stderr, returncode=0), items

    # ------------------------------------------------------------------
    # Asynchronous
    # ------------------------------------------------------------------

    async def run_async(
        self,
        args: Sequence[str],
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Async ``run``; the child is killed if *timeout* expires."""
        backoff = Backoff(self.policy)
        while True:
            result = await self._execute_async(
                args, input, timeout if timeout is not None else self.timeout
            )
            delay = backoff.next_delay(result.ok, result.error)
            if delay is None:
                return result
            logger.info(
                "Rate limited running %s %s; retry %d/%d in %.1fs",
                self.binary,
                " ".join(args[:2]),
                backoff.retries,
                self.policy.max_retries,
                delay,
            )
            self.metrics["retries"] += 1
            await self._async_sleep(delay)

    async def run_json_async(
        self,
        args: Sequence[str],
        input: str | None = None,
        timeout: float | None = None,
    ) -> JsonResult:
        result = await self.run_async(args, input, timeout)
        if not result.ok:
            return JsonResult(ok=False, error=result.error)
        return parse_json_output(result.stdout)

    async def _execute_async(
        self, args: Sequence[str], input: str | None, timeout: float
    ) -> CommandResult:
        self._record(args)
        logger.debug("exec (async) %s %s", self.binary, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=(
                    asyncio.subprocess.PIPE
                    if input is not None
                    else asyncio.subprocess.DEVNULL
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as exc:
            return CommandResult(ok=False, error=str(exc))

        payload = input.encode("utf-8") if input is not None else None
        try:
            out, err = await asyncio.wait_for(
                proc.communicate(payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(
                "%s %s killed after %.1fs timeout",
                self.binary,
                " ".join(args[:2]),
                timeout,
            )
            return CommandResult(
                ok=False, error=f"{self.binary} timed out after {timeout}s"
            )

        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            return CommandResult(
                ok=False,
                stdout=stdout,
                stderr=stderr,
                returncode=proc.returncode,
                error=_failure_text(stdout, stderr, proc.returncode),
            )
        return CommandResult(
            ok=True, stdout=stdout, stderr=stderr, returncode=0
        )
