"""Relay worker pool and the ``payflow-relay`` command."""
from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Callable, Sequence

from payflow.config import AppConfig, get_config
from payflow.core.clock import SystemClock
from payflow.core.logging_config import setup_logging
from payflow.infrastructure.monitoring.metrics import MessagingMetrics
from payflow.infrastructure.persistence.session import make_engine, make_session_factory
from payflow.messaging.uow import sqlalchemy_uow_factory

from .backoff import BackoffPolicy
from .relay import OutboxRelay, default_worker_id
from .transport import HttpxWebhookSender, WebhookSender


logger = logging.getLogger(__name__)

RelayFactory = Callable[[str], OutboxRelay]


class RelayWorkerPool:
    """Run several independent relays in threads of one process.

    Each relay claims its own batches, so the pool scales exactly like
    separate processes would.
    """

    def __init__(self, relay_factory: RelayFactory, *, workers: int, poll_interval: float) -> None:
        if workers < 1:
            raise ValueError("RELAY_WORKERS_INVALID|at least one worker is required")
        base = default_worker_id()
        self.relays = [relay_factory(f"{base}-w{index}") for index in range(workers)]
        self._poll_interval = poll_interval
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for relay in self.relays:
            thread = threading.Thread(
                target=relay.run_loop,
                kwargs={"poll_interval": self._poll_interval},
                name=f"relay-{relay.worker_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("relay pool started", extra={"code": "RELAY_POOL_STARTED", "workers": len(self.relays)})

    def stop(self) -> None:
        for relay in self.relays:
            relay.stop()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def is_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def run_once(self) -> None:
        """Run a single cycle on every relay, then release their claims."""

        for relay in self.relays:
            relay.run_loop(once=True)


def build_relay_factory(
    config: AppConfig,
    *,
    sender: WebhookSender,
    metrics: MessagingMetrics | None = None,
) -> RelayFactory:
    """Relays built by the factory share ``sender``; the caller owns and closes it."""

    engine = make_engine(config.database.dsn, echo=config.database.echo)
    uow_factory = sqlalchemy_uow_factory(make_session_factory(engine))
    relay_config = config.relay
    backoff = BackoffPolicy(
        base_seconds=relay_config.backoff_base_seconds,
        cap_seconds=relay_config.backoff_cap_seconds,
        max_attempts=relay_config.max_attempts,
    )
    shared_metrics = metrics or MessagingMetrics()
    clock = SystemClock()

    def factory(worker_id: str) -> OutboxRelay:
        return OutboxRelay(
            uow_factory=uow_factory,
            sender=sender,
            clock=clock,
            backoff=backoff,
            worker_id=worker_id,
            batch_size=relay_config.batch_size,
            claim_ttl_seconds=relay_config.claim_ttl_seconds,
            fanout_workers=relay_config.fanout_workers,
            metrics=shared_metrics,
        )

    return factory


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="payflow-relay", description="Deliver outbox events to webhooks.")
    parser.add_argument("--workers", type=int, default=None, help="relay threads (default: PAYFLOW_RELAY__WORKERS)")
    parser.add_argument("--poll-interval", type=float, default=None, help="seconds between empty polls")
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    config = get_config()
    setup_logging(config.observability.log_level, config.observability.log_file)

    sender = HttpxWebhookSender(timeout_seconds=config.relay.request_timeout_seconds)
    try:
        pool = RelayWorkerPool(
            build_relay_factory(config, sender=sender),
            workers=args.workers or config.relay.workers,
            poll_interval=args.poll_interval or config.relay.poll_interval_seconds,
        )
        if args.once:
            pool.run_once()
        else:
            _run_until_signalled(pool)
    finally:
        sender.close()
    return 0


def _run_until_signalled(pool: RelayWorkerPool) -> None:
    def _shutdown(signum, _frame) -> None:
        logger.info("shutdown requested", extra={"code": "RELAY_SHUTDOWN", "signal": signum})
        pool.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    pool.start()
    # join with a timeout so signal handlers keep running on the main thread
    while pool.is_alive():
        pool.join(timeout=1.0)
    logger.info("relay pool stopped", extra={"code": "RELAY_POOL_STOPPED"})


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
