"""Prometheus counters for the streaming client."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class StreamingMetrics:
    """Wraps Prometheus counters and keeps a plain snapshot for tests."""

    def __init__(
        self,
        namespace: str = "singlestore_cdc",
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        metric_prefix = f"{namespace}_stream"
        self._records = Counter(
            f"{metric_prefix}_records",
            "Change records dispatched",
            registry=self.registry,
        )
        self._skipped = Counter(
            f"{metric_prefix}_skipped_rows",
            "OBSERVE rows skipped (snapshot markers and unknown types)",
            registry=self.registry,
        )
        self._errors = Counter(
            f"{metric_prefix}_errors",
            "Terminal streaming failures",
            registry=self.registry,
        )
        self._restarts = Counter(
            f"{metric_prefix}_restarts",
            "OBSERVE queries issued",
            registry=self.registry,
        )
        self._last_event = Gauge(
            f"{metric_prefix}_last_event_timestamp_seconds",
            "Wall clock time of the last dispatched change record",
            registry=self.registry,
        )
        self._snapshot: Dict[str, float] = defaultdict(float)

    def inc_records(self, amount: int = 1) -> None:
        if amount <= 0:
            return
        self._records.inc(amount)
        self._snapshot["records_total"] += amount

    def inc_skipped(self, amount: int = 1) -> None:
        if amount <= 0:
            return
        self._skipped.inc(amount)
        self._snapshot["skipped_total"] += amount

    def inc_errors(self, amount: int = 1) -> None:
        if amount <= 0:
            return
        self._errors.inc(amount)
        self._snapshot["errors_total"] += amount

    def inc_restarts(self, amount: int = 1) -> None:
        if amount <= 0:
            return
        self._restarts.inc(amount)
        self._snapshot["restarts_total"] += amount

    def set_last_event(self, timestamp: float) -> None:
        self._last_event.set(timestamp)
        self._snapshot["last_event_timestamp"] = timestamp

    def snapshot(self) -> Dict[str, float]:
        return dict(self._snapshot)


__all__ = ["StreamingMetrics"]
