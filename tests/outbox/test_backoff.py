from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from payflow.messaging.outbox.backoff import BackoffPolicy


@pytest.mark.parametrize(
    ("attempts", "expected"),
    [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (9, 256.0), (10, 300.0), (40, 300.0)],
)
def test_delay_doubles_until_cap(attempts: int, expected: float) -> None:
    assert BackoffPolicy(base_seconds=1.0, cap_seconds=300.0).next_delay(attempts) == expected


def test_never_attempted_event_has_no_retry_time() -> None:
    policy = BackoffPolicy()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert policy.next_attempt_at(attempts=0, last_attempted_at=None) is None
    assert policy.next_attempt_at(attempts=0, last_attempted_at=now) is None


def test_failed_event_waits_for_its_delay() -> None:
    policy = BackoffPolicy(base_seconds=2.0, cap_seconds=60.0)
    last = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert policy.next_attempt_at(attempts=2, last_attempted_at=last) == last + timedelta(seconds=4)
    assert policy.next_attempt_at(attempts=20, last_attempted_at=last) == last + timedelta(seconds=60)


def test_exhausted_at_ceiling() -> None:
    policy = BackoffPolicy(max_attempts=3)

    assert not policy.exhausted(2)
    assert policy.exhausted(3)
    assert policy.exhausted(4)
