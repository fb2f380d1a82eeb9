"""Sync observability metrics.

In-process counters for ingestion, reconciliation and submission paths.

Usage:
    from payroll_sync.metrics import sync_metrics

    sync_metrics.events_upserted.inc()
    print(sync_metrics.to_prometheus())
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError("Counters only increase")
        with self._lock:
            self.value += amount

    def reset(self) -> None:
        with self._lock:
            self.value = 0


@dataclass
class SyncMetrics:
    """Collection of all sync metrics."""

    events_upserted: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_events_upserted_total",
            help_text="Production events inserted or updated",
        )
    )
    events_soft_deleted: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_events_soft_deleted_total",
            help_text="Production events marked deleted",
        )
    )
    identities_unresolved: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_identities_unresolved_total",
            help_text="Events stored without a resolved email",
        )
    )
    aggregation_unmatched: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_aggregation_unmatched_total",
            help_text="Events dropped from aggregation for unknown identity",
        )
    )
    poll_pages_fetched: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_poll_pages_total",
            help_text="Listing pages fetched by poll cycles",
        )
    )
    poll_failures: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_poll_failures_total",
            help_text="Poll cycles aborted by upstream errors",
        )
    )
    upstream_retries: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_upstream_retries_total",
            help_text="Retried workforce platform requests",
        )
    )
    submission_rollbacks: Counter = field(
        default_factory=lambda: Counter(
            "payroll_sync_submission_rollbacks_total",
            help_text="Submission headers removed after entry failures",
        )
    )

    def counters(self) -> list[Counter]:
        return [getattr(self, f.name) for f in fields(self)]

    def reset(self) -> None:
        for counter in self.counters():
            counter.reset()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"collected_at": datetime.now(timezone.utc).isoformat()}
        for f in fields(self):
            counter: Counter = getattr(self, f.name)
            result[f.name] = {
                "name": counter.name,
                "value": counter.value,
                "labels": counter.labels,
            }
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Render in Prometheus text exposition format."""
        lines: list[str] = []
        for counter in self.counters():
            if counter.help_text:
                lines.append(f"# HELP {counter.name} {counter.help_text}")
            lines.append(f"# TYPE {counter.name} counter")
            if counter.labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in sorted(counter.labels.items()))
                lines.append(f"{counter.name}{{{label_str}}} {counter.value}")
            else:
                lines.append(f"{counter.name} {counter.value}")
        return "\n".join(lines) + "\n"


# Process-wide registry
sync_metrics = SyncMetrics()
