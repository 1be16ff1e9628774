"""Retry backoff policies for webhook deliveries."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

BackoffFn = Callable[[int], timedelta]


def exponential_backoff(base: timedelta, cap: timedelta) -> BackoffFn:
    """attempt is 1-based: base, 2*base, 4*base, ... capped at ``cap``."""

    def backoff(attempt: int) -> timedelta:
        return min(base * (2 ** max(attempt - 1, 0)), cap)

    return backoff


def fixed_backoff(delay: timedelta) -> BackoffFn:
    def backoff(attempt: int) -> timedelta:
        return delay

    return backoff


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int
    backoff: BackoffFn

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def next_attempt_at(self, attempt: int, now: datetime) -> datetime:
        return now + self.backoff(attempt)

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        base = timedelta(seconds=settings.webhook_backoff_base_seconds)
        if settings.webhook_backoff == "fixed":
            fn = fixed_backoff(base)
        elif settings.webhook_backoff == "exponential":
            fn = exponential_backoff(base, timedelta(seconds=settings.webhook_backoff_max_seconds))
        else:
            raise ValueError(f"Unknown webhook_backoff: {settings.webhook_backoff}")
        return cls(max_attempts=settings.webhook_max_attempts, backoff=fn)
