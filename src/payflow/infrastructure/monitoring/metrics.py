# -*- coding: utf-8 -*-
"""Prometheus instruments for the idempotency guard and the outbox relay."""
from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram


class MessagingMetrics:
    """Bundle of counters bound to one registry so tests stay isolated."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.idempotency_requests = Counter(
            "payflow_idempotency_requests_total",
            "Guarded requests grouped by outcome.",
            labelnames=("endpoint", "outcome"),
            registry=self.registry,
        )
        self.events_claimed = Counter(
            "payflow_outbox_events_claimed_total",
            "Outbox events claimed by relay workers.",
            registry=self.registry,
        )
        self.claim_conflicts = Counter(
            "payflow_outbox_claim_conflicts_total",
            "Claims lost to a concurrent worker or an expired lease.",
            labelnames=("stage",),
            registry=self.registry,
        )
        self.deliveries = Counter(
            "payflow_webhook_deliveries_total",
            "Per-endpoint webhook delivery attempts grouped by outcome.",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self.events_delivered = Counter(
            "payflow_outbox_events_delivered_total",
            "Outbox events fully fanned out to every enabled endpoint.",
            registry=self.registry,
        )
        self.permanent_failures = Counter(
            "payflow_outbox_permanent_failures_total",
            "Outbox events that exhausted their delivery attempts.",
            labelnames=("event_type",),
            registry=self.registry,
        )
        self.cycle_duration_seconds = Histogram(
            "payflow_relay_cycle_duration_seconds",
            "Wall time of one relay polling cycle.",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
            registry=self.registry,
        )


__all__ = ["MessagingMetrics"]
