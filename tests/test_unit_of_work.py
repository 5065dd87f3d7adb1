from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from payflow.messaging.errors import TransientStoreError
from payflow.messaging.uow import run_in_transaction


class FlakyWork:
    """Fails with a lock error ``failures`` times, then reads from the store."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self, uow) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("UPDATE outbox_events", {}, Exception("database is locked"))
        return uow.session.execute(text("SELECT 1")).scalar_one()


def test_lock_contention_is_retried_until_it_clears(uow_factory) -> None:
    sleeps: list[float] = []
    work = FlakyWork(failures=2)

    assert run_in_transaction(uow_factory, work, max_retries=3, sleep=sleeps.append) == 1
    assert work.calls == 3
    assert sleeps == [0.05, 0.1]


def test_contention_past_the_budget_surfaces_as_transient(uow_factory) -> None:
    sleeps: list[float] = []
    work = FlakyWork(failures=10)

    with pytest.raises(TransientStoreError) as excinfo:
        run_in_transaction(uow_factory, work, max_retries=3, sleep=sleeps.append)

    assert work.calls == 4
    assert sleeps == [0.05, 0.1, 0.2]
    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_other_errors_are_not_retried(uow_factory) -> None:
    calls: list[int] = []

    def broken(uow):
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_in_transaction(uow_factory, broken, sleep=lambda _: pytest.fail("slept"))

    assert calls == [1]
