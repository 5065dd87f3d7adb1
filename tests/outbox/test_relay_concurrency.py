from __future__ import annotations

import threading
from collections import Counter

from sqlalchemy import func, select

from payflow.infrastructure.persistence.models import OutboxEventModel
from payflow.messaging.outbox.backoff import BackoffPolicy
from payflow.messaging.outbox.relay import OutboxRelay
from payflow.messaging.outbox.worker import RelayWorkerPool
from payflow.messaging.outbox.writer import OutboxWriter
from payflow.messaging.webhooks import WebhookEndpointService


def _stage_many(uow_factory, clock, count: int) -> list[str]:
    writer = OutboxWriter(clock=clock)
    with uow_factory() as uow:
        return [writer.append(uow.session, "thing.happened", {"n": n}) for n in range(count)]


def _undelivered(session_factory) -> int:
    with session_factory() as session:
        return session.execute(
            select(func.count()).select_from(OutboxEventModel).where(OutboxEventModel.delivered_at.is_(None))
        ).scalar_one()


def test_two_relays_never_deliver_an_event_twice_without_failures(uow_factory, session_factory, clock, sender) -> None:
    endpoint = WebhookEndpointService(uow_factory=uow_factory, clock=clock).create_endpoint("https://a.example/hooks")
    ids = _stage_many(uow_factory, clock, 40)
    relays = [
        OutboxRelay(
            uow_factory=uow_factory,
            sender=sender,
            clock=clock,
            backoff=BackoffPolicy(),
            worker_id=f"relay-{index}",
            batch_size=5,
            claim_ttl_seconds=60.0,
            fanout_workers=2,
            store_retries=10,
        )
        for index in range(2)
    ]
    barrier = threading.Barrier(len(relays))
    errors: list[BaseException] = []

    def drain(relay: OutboxRelay) -> None:
        barrier.wait()
        try:
            for _ in range(20):
                relay.dispatch_once()
        except BaseException as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)
        finally:
            relay.close()

    threads = [threading.Thread(target=drain, args=(relay,)) for relay in relays]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert _undelivered(session_factory) == 0
    counts = Counter(sender.deliveries_to(endpoint.id))
    assert set(counts) == set(ids)
    assert set(counts.values()) == {1}


def test_worker_pool_drains_outbox_and_stops(uow_factory, session_factory, clock, sender) -> None:
    WebhookEndpointService(uow_factory=uow_factory, clock=clock).create_endpoint("https://a.example/hooks")
    _stage_many(uow_factory, clock, 12)

    def factory(worker_id: str) -> OutboxRelay:
        return OutboxRelay(
            uow_factory=uow_factory,
            sender=sender,
            clock=clock,
            worker_id=worker_id,
            batch_size=3,
            fanout_workers=1,
            store_retries=10,
        )

    pool = RelayWorkerPool(factory, workers=3, poll_interval=0.01)
    assert len({relay.worker_id for relay in pool.relays}) == 3

    pool.start()
    deadline = threading.Event()
    for _ in range(500):
        if _undelivered(session_factory) == 0:
            break
        deadline.wait(0.01)
    pool.stop()
    pool.join(timeout=5)

    assert not pool.is_alive()
    assert _undelivered(session_factory) == 0
    assert len(sender.calls) == 12
