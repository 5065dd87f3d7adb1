"""Outbox relay: claim undelivered events and fan them out to webhook endpoints."""
from __future__ import annotations

import logging
import os
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence
from uuid import uuid4

from payflow.core.clock import Clock
from payflow.infrastructure.monitoring.metrics import MessagingMetrics
from payflow.messaging.errors import (
    DeliveryError,
    DeliveryRejected,
    DeliveryTimeout,
    PermanentDeliveryFailure,
    TransientStoreError,
)
from payflow.messaging.uow import UnitOfWork, UnitOfWorkFactory, run_in_transaction
from payflow.messaging.webhooks import WebhookEndpoint, enabled_snapshot

from .backoff import BackoffPolicy
from .models import OutboxEvent
from .repository import OutboxRepository
from .transport import WebhookSender


logger = logging.getLogger(__name__)

AlertHook = Callable[[PermanentDeliveryFailure], None]


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


@dataclass
class RelayCycleReport:
    """Counters for one polling cycle."""

    claimed: int = 0
    delivered: int = 0
    failed: int = 0
    permanently_failed: int = 0
    released: int = 0
    claim_conflicts: int = 0


@dataclass(slots=True)
class _Poisoned:
    event_id: str
    event_type: str
    attempts: int
    error: str


class OutboxRelay:
    """One relay worker.

    An event is marked delivered only when every endpoint in the cycle's
    snapshot accepted it; otherwise the whole event is retried later, so
    endpoints that already succeeded receive it again and must deduplicate
    on ``event_id``.
    """

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        sender: WebhookSender,
        clock: Clock,
        backoff: BackoffPolicy | None = None,
        worker_id: str | None = None,
        batch_size: int = 50,
        claim_ttl_seconds: float = 60.0,
        fanout_workers: int = 8,
        metrics: MessagingMetrics | None = None,
        alert_hook: AlertHook | None = None,
        store_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.worker_id = worker_id or default_worker_id()
        self.backoff = backoff or BackoffPolicy()
        self.batch_size = batch_size
        self.claim_ttl_seconds = claim_ttl_seconds
        self._uow_factory = uow_factory
        self._sender = sender
        self._clock = clock
        self._metrics = metrics
        self._alert_hook = alert_hook
        self._store_retries = store_retries
        self._sleep = sleep
        self._stop = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=fanout_workers,
            thread_name_prefix=f"relay-fanout-{self.worker_id}",
        )

    # ------------------------------------------------------------------ cycle

    def dispatch_once(self) -> RelayCycleReport:
        started = self._clock.monotonic()
        report = RelayCycleReport()
        token = f"{self.worker_id}:{uuid4().hex}"

        try:
            events, poisoned, conflicts = self._claim_batch(token)
        except TransientStoreError:
            logger.warning(
                "claim step skipped; store busy",
                extra={"code": "CLAIM_SKIPPED", "worker_id": self.worker_id},
            )
            return report

        report.claimed = len(events)
        report.claim_conflicts += conflicts
        for item in poisoned:
            report.failed += 1
            if self.backoff.exhausted(item.attempts):
                report.permanently_failed += 1
                self._surface_permanent_failure(
                    event_id=item.event_id,
                    event_type=item.event_type,
                    attempts=item.attempts,
                    last_error=item.error,
                )
        if not events:
            self._observe_cycle(started)
            return report

        try:
            endpoints = self._store(enabled_snapshot)
        except TransientStoreError:
            logger.warning(
                "endpoint snapshot unavailable; releasing claims",
                extra={"code": "SNAPSHOT_SKIPPED", "worker_id": self.worker_id},
            )
            report.released += self._release_many(events, token)
            self._observe_cycle(started)
            return report

        for index, event in enumerate(events):
            if self._stop.is_set():
                report.released += self._release_many(events[index:], token)
                break
            try:
                # the rest of the batch waited behind earlier deliveries
                if index and event.event_id not in self._renew_claims(token):
                    self._claim_lost(event, report, stage="renew")
                    continue
                self._process_event(event, endpoints, token, report)
            except Exception:  # pylint: disable=broad-except
                logger.exception(
                    "event processing failed; releasing claim",
                    extra={"code": "EVENT_PROCESSING_FAILED", "event_id": event.event_id},
                )
                report.released += self._release_many([event], token)

        self._observe_cycle(started)
        return report

    def _claim_batch(self, token: str) -> tuple[list[OutboxEvent], list[_Poisoned], int]:
        now = self._clock.now()
        expires_at = now + timedelta(seconds=self.claim_ttl_seconds)

        def work(uow: UnitOfWork) -> tuple[list[OutboxEvent], list[_Poisoned], int]:
            repo = OutboxRepository(uow.session)
            candidates = repo.list_claimable(
                now=now,
                max_attempts=self.backoff.max_attempts,
                limit=self.batch_size,
            )
            claimed: list[OutboxEvent] = []
            poisoned: list[_Poisoned] = []
            conflicts = 0
            for model in candidates:
                event_id, event_type = model.id, model.event_type
                snapshot: OutboxEvent | None = None
                decode_error = ""
                try:
                    snapshot = OutboxEvent.from_model(model)
                except ValueError as exc:
                    decode_error = f"PAYLOAD_UNREADABLE|{exc}"
                if not repo.try_claim(event_id, token=token, now=now, expires_at=expires_at):
                    conflicts += 1
                    continue
                if snapshot is None:
                    attempts = self._record_failure(repo, event_id, token=token, now=now, error=decode_error)
                    logger.error(
                        "outbox payload unreadable",
                        extra={"code": "PAYLOAD_UNREADABLE", "event_id": event_id},
                    )
                    if attempts is not None:
                        poisoned.append(_Poisoned(event_id, event_type, attempts, decode_error))
                    continue
                claimed.append(snapshot)
            return claimed, poisoned, conflicts

        claimed, poisoned, conflicts = self._store(work)
        if self._metrics is not None:
            self._metrics.events_claimed.inc(len(claimed))
            if conflicts:
                self._metrics.claim_conflicts.labels(stage="claim").inc(conflicts)
        return claimed, poisoned, conflicts

    def _process_event(
        self,
        event: OutboxEvent,
        endpoints: Sequence[WebhookEndpoint],
        token: str,
        report: RelayCycleReport,
    ) -> None:
        failures = self._fan_out(event, endpoints, attempt=event.attempts + 1)
        now = self._clock.now()

        if not failures:
            completed = self._store(
                lambda uow: OutboxRepository(uow.session).mark_delivered(
                    event.event_id, token=token, delivered_at=now
                )
            )
            if not completed:
                self._claim_lost(event, report, stage="complete")
                return
            report.delivered += 1
            if self._metrics is not None:
                self._metrics.events_delivered.inc()
            logger.info(
                "outbox event delivered",
                extra={
                    "code": "EVENT_DELIVERED",
                    "event_id": event.event_id,
                    "endpoints": len(endpoints),
                },
            )
            return

        summary = "; ".join(f"{endpoint_id}={error}" for endpoint_id, error in failures.items())
        attempts = self._store(
            lambda uow: self._record_failure(
                OutboxRepository(uow.session), event.event_id, token=token, now=now, error=summary
            )
        )
        if attempts is None:
            self._claim_lost(event, report, stage="failure")
            return

        report.failed += 1
        if self.backoff.exhausted(attempts):
            report.permanently_failed += 1
            self._surface_permanent_failure(
                event_id=event.event_id,
                event_type=event.event_type,
                attempts=attempts,
                last_error=summary,
            )
            return

        logger.warning(
            "delivery incomplete; retry scheduled",
            extra={
                "code": "RETRYING",
                "event_id": event.event_id,
                "attempts": attempts,
                "failed_endpoints": len(failures),
                "delay": self.backoff.next_delay(attempts),
            },
        )

    def _fan_out(
        self,
        event: OutboxEvent,
        endpoints: Sequence[WebhookEndpoint],
        *,
        attempt: int,
    ) -> dict[str, str]:
        if not endpoints:
            return {}
        futures = {
            endpoint.id: self._executor.submit(self._deliver, endpoint, event, attempt)
            for endpoint in endpoints
        }
        wait(futures.values())
        failures: dict[str, str] = {}
        for endpoint_id, future in futures.items():
            error = future.result()
            if error is not None:
                failures[endpoint_id] = error
        return failures

    def _deliver(self, endpoint: WebhookEndpoint, event: OutboxEvent, attempt: int) -> str | None:
        try:
            self._sender.send(endpoint, event, attempt=attempt)
        except DeliveryError as exc:
            if isinstance(exc, DeliveryTimeout):
                outcome = "timeout"
            elif isinstance(exc, DeliveryRejected):
                outcome = "rejected"
            else:
                outcome = "error"
            self._count_delivery(outcome)
            logger.warning(
                "webhook delivery failed",
                extra={
                    "code": exc.code,
                    "event_id": event.event_id,
                    "endpoint_id": endpoint.id,
                    "attempt": attempt,
                },
            )
            return str(exc)
        except Exception as exc:  # pylint: disable=broad-except
            self._count_delivery("error")
            logger.exception(
                "webhook sender raised unexpectedly",
                extra={"code": "DELIVERY_UNEXPECTED", "event_id": event.event_id, "endpoint_id": endpoint.id},
            )
            return f"DELIVERY_UNEXPECTED|{type(exc).__name__}: {exc}"
        self._count_delivery("success")
        return None

    # ------------------------------------------------------------- lifecycle

    def run_loop(self, *, once: bool = False, poll_interval: float = 1.0) -> None:
        try:
            while not self._stop.is_set():
                report = self.dispatch_once()
                if once:
                    return
                if report.claimed == 0:
                    self._stop.wait(poll_interval)
        finally:
            self.close()

    def stop(self) -> None:
        """Ask the loop to finish the in-flight event and exit."""

        self._stop.set()

    def close(self) -> None:
        """Release every claim this worker still holds and stop fan-out threads."""

        try:
            released = self._store(
                lambda uow: OutboxRepository(uow.session).release_owned(owner=self.worker_id)
            )
        except TransientStoreError:
            logger.warning(
                "could not release claims on shutdown; leases will expire",
                extra={"code": "RELEASE_FAILED", "worker_id": self.worker_id},
            )
        else:
            if released:
                logger.info(
                    "released claims on shutdown",
                    extra={"code": "CLAIMS_RELEASED", "worker_id": self.worker_id, "count": released},
                )
        self._executor.shutdown(wait=True)

    # --------------------------------------------------------------- helpers

    def _store(self, work):
        return run_in_transaction(
            self._uow_factory,
            work,
            max_retries=self._store_retries,
            sleep=self._sleep,
        )

    def _record_failure(
        self,
        repo: OutboxRepository,
        event_id: str,
        *,
        token: str,
        now: datetime,
        error: str,
    ) -> int | None:
        attempts = repo.record_failure(event_id, token=token, attempted_at=now, error=error)
        if attempts is not None and not self.backoff.exhausted(attempts):
            repo.schedule_retry(
                event_id,
                next_attempt_at=self.backoff.next_attempt_at(attempts=attempts, last_attempted_at=now),
            )
        return attempts

    def _renew_claims(self, token: str) -> set[str]:
        expires_at = self._clock.now() + timedelta(seconds=self.claim_ttl_seconds)
        return self._store(
            lambda uow: OutboxRepository(uow.session).extend_claims(token=token, expires_at=expires_at)
        )

    def _release_many(self, events: Sequence[OutboxEvent], token: str) -> int:
        def work(uow: UnitOfWork) -> int:
            repo = OutboxRepository(uow.session)
            return sum(1 for event in events if repo.release(event.event_id, token=token))

        try:
            return self._store(work)
        except TransientStoreError:
            logger.warning(
                "claim release failed; leases will expire",
                extra={"code": "RELEASE_FAILED", "worker_id": self.worker_id},
            )
            return 0

    def _claim_lost(self, event: OutboxEvent, report: RelayCycleReport, *, stage: str) -> None:
        report.claim_conflicts += 1
        if self._metrics is not None:
            self._metrics.claim_conflicts.labels(stage=stage).inc()
        logger.warning(
            "claim lost before the outcome was recorded",
            extra={"code": "CLAIM_LOST", "event_id": event.event_id, "stage": stage},
        )

    def _surface_permanent_failure(
        self,
        *,
        event_id: str,
        event_type: str,
        attempts: int,
        last_error: str | None,
    ) -> None:
        failure = PermanentDeliveryFailure(
            event_id=event_id,
            event_type=event_type,
            attempts=attempts,
            last_error=last_error,
            failed_at=self._clock.now(),
        )
        logger.error(
            "PERMANENT_DELIVERY_FAILURE: event left undelivered for manual intervention",
            extra={
                "code": PermanentDeliveryFailure.code,
                "event_id": event_id,
                "event_type": event_type,
                "attempts": attempts,
            },
        )
        if self._metrics is not None:
            self._metrics.permanent_failures.labels(event_type=event_type).inc()
        if self._alert_hook is None:
            return
        try:
            self._alert_hook(failure)
        except Exception:  # pylint: disable=broad-except
            logger.warning(
                "alert hook raised",
                exc_info=True,
                extra={"code": "ALERT_HOOK_FAILED", "event_id": event_id},
            )

    def _count_delivery(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.deliveries.labels(outcome=outcome).inc()

    def _observe_cycle(self, started: float) -> None:
        if self._metrics is not None:
            self._metrics.cycle_duration_seconds.observe(max(self._clock.monotonic() - started, 0.0))
