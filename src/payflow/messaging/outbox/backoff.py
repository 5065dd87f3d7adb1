"""Backoff policy helpers for outbox retries."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Exponential backoff policy with upper bound and attempt ceiling.

    The relay stores ``next_attempt_at`` on the row when it records a
    failure, so the claim query can skip rows that are not due yet.
    """

    base_seconds: float = 1.0
    cap_seconds: float = 300.0
    max_attempts: int = 12

    def next_delay(self, attempts: int) -> float:
        """Return delay in seconds after the given number of failed attempts."""

        attempt = max(attempts, 1)
        delay = self.base_seconds * (2 ** (attempt - 1))
        if delay > self.cap_seconds:
            delay = self.cap_seconds
        return float(delay)

    def next_attempt_at(self, *, attempts: int, last_attempted_at: datetime | None) -> datetime | None:
        if attempts <= 0 or last_attempted_at is None:
            return None
        return last_attempted_at + timedelta(seconds=self.next_delay(attempts))

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
