from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

if TYPE_CHECKING:
    from matrixverdict.config import PollConfig

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """How a batch is polled: round cadence plus per-request retry.

    Rounds are spaced by interval_s and capped by max_rounds. Inside a round,
    each matrix request gets up to max_attempts tries with deterministic
    exponential backoff (no jitter) between them.
    """

    interval_s: float = 15.0
    max_rounds: int = 240
    request_timeout_s: float = 20.0
    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    multiplier: float = 2.0

    @classmethod
    def from_config(
        cls,
        cfg: "PollConfig",
        *,
        interval_s: Optional[float] = None,
        max_rounds: Optional[int] = None,
    ) -> "PollPolicy":
        """Build a policy from settings; CLI overrides win when given."""

        return cls(
            interval_s=interval_s if interval_s is not None else cfg.interval_s,
            max_rounds=max_rounds if max_rounds is not None else cfg.max_rounds,
            request_timeout_s=cfg.timeout_s,
            max_attempts=cfg.max_attempts,
            base_delay_s=cfg.retry_base_delay_s,
            max_delay_s=cfg.retry_max_delay_s,
            multiplier=cfg.retry_multiplier,
        )

    def backoff_delay(self, failed_attempt: int) -> float:
        return min(self.max_delay_s, self.base_delay_s * (self.multiplier ** (failed_attempt - 1)))


def call_with_backoff(
    fn: Callable[[], T],
    *,
    policy: PollPolicy,
    should_retry: Callable[[Exception], bool],
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> T:
    """Run one poll request under the policy's retry budget.

    Non-retryable errors and the error of the last attempt propagate.
    on_retry receives (failed attempt starting at 1, exception, delay_s).
    """

    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise

            delay_s = policy.backoff_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay_s)
            time.sleep(delay_s)
