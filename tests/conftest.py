from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from payflow.infrastructure.monitoring.metrics import MessagingMetrics
from payflow.infrastructure.persistence.session import create_schema, make_engine, make_session_factory
from payflow.messaging.errors import DeliveryRejected
from payflow.messaging.uow import sqlalchemy_uow_factory


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self._wall = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._mono = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._wall

    def monotonic(self) -> float:
        with self._lock:
            return self._mono

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._wall += timedelta(seconds=seconds)
            self._mono += seconds


class RecordingSender:
    """Webhook sender double; ``failing`` holds endpoint ids that answer 500."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, int]] = []
        self.failing: set[str] = set()
        self._lock = threading.Lock()

    def send(self, endpoint, event, *, attempt: int) -> None:
        with self._lock:
            self.calls.append((endpoint.id, event.event_id, attempt))
        if endpoint.id in self.failing:
            raise DeliveryRejected("HTTP 500", status_code=500, endpoint_id=endpoint.id)

    def deliveries_to(self, endpoint_id: str) -> list[str]:
        with self._lock:
            return [event_id for target, event_id, _ in self.calls if target == endpoint_id]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'payflow.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    return sqlalchemy_uow_factory(session_factory)


@pytest.fixture()
def metrics() -> MessagingMetrics:
    return MessagingMetrics(CollectorRegistry())


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()
