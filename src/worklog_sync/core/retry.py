"""Rate-limit classification and exponential backoff.

``Backoff`` is a small state machine: feed it each failed attempt, and it
returns the delay before the next attempt, or ``None`` to stop.  It never
sleeps itself, so callers pick (and tests replace) the sleep function.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_RATE_LIMIT_RE = re.compile(
    r"rate limit|secondary rate|abuse detection|HTTP 403|HTTP 429",
    re.IGNORECASE,
)


def is_rate_limited(error: str | None) -> bool:
    """Return ``True`` if *error* text carries a rate-limit signature."""
    if not error:
        return False
    return _RATE_LIMIT_RE.search(error) is not None


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    Attributes:
        max_retries: Retries after the first attempt (so at most
            ``max_retries + 1`` calls).
        initial_delay: Delay before the first retry, in seconds.
        multiplier: Factor applied to the delay after each retry.
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    multiplier: float = 2.0


class Backoff:
    """Track retries of one call under a ``RetryPolicy``."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy
        self.retries = 0
        self._delay = policy.initial_delay

    def next_delay(self, ok: bool, error: str | None) -> float | None:
        """Decide what to do after an attempt.

        Returns:
            Seconds to wait before retrying, or ``None`` when the result
            should be returned as is.  That is the case for a success, for a
            failure that is not rate limiting, or when retries run out.
        """
        if ok or not is_rate_limited(error):
            return None
        if self.retries >= self.policy.max_retries:
            return None
        delay = self._delay
        self.retries += 1
        self._delay *= self.policy.multiplier
        return delay
