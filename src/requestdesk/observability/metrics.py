"""Prometheus metrics exporter for RequestDesk.

Exposes processor activity and request counts in Prometheus text format.

Metrics exposed:
- requestdesk_ticks_total: Processor ticks by outcome
- requestdesk_deliveries_total: Delivery attempts by outcome
- requestdesk_holds_expired_total: Holds released by expiry
- requestdesk_requests: Current requests by status
- requestdesk_tick_duration_seconds: Duration of finished ticks

Usage:
    metrics = RequestMetrics(desk.store)
    metrics.attach(desk.event_bus)

    @app.get("/metrics")
    async def metrics_endpoint():
        return Response(content=metrics.export(), media_type="text/plain")
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import TYPE_CHECKING

from requestdesk.core.events import Event, EventBus, EventType

if TYPE_CHECKING:
    from requestdesk.core.store import RequestStore

_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0)


class RequestMetrics:
    """Collects processor events and renders them for scraping."""

    def __init__(self, store: RequestStore | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._ticks: dict[str, int] = defaultdict(int)
        self._deliveries: dict[str, int] = defaultdict(int)
        self._holds_expired = 0
        self._durations: list[float] = []

    def attach(self, event_bus: EventBus) -> None:
        event_bus.subscribe_all(self.handle)

    async def handle(self, event: Event) -> None:
        with self._lock:
            if event.event_type is EventType.TICK_COMPLETED:
                outcome = "idle" if event.payload.get("idle") else "completed"
                self._ticks[outcome] += 1
                duration = event.payload.get("duration_seconds")
                if duration is not None:
                    self._durations.append(float(duration))
            elif event.event_type is EventType.TICK_FAILED:
                self._ticks["failed"] += 1
            elif event.event_type is EventType.REQUEST_DELIVERED:
                self._deliveries["delivered"] += 1
            elif event.event_type is EventType.DELIVERY_FAILED:
                self._deliveries["failed"] += 1
            elif event.event_type is EventType.HOLD_EXPIRED:
                self._holds_expired += 1

    def export(self) -> str:
        """Export metrics in Prometheus text format."""
        with self._lock:
            ticks = dict(self._ticks)
            deliveries = dict(self._deliveries)
            holds_expired = self._holds_expired
            durations = list(self._durations)

        lines = [
            "# HELP requestdesk_ticks_total Processor ticks by outcome (completed, idle, failed)",
            "# TYPE requestdesk_ticks_total counter",
        ]
        for outcome, count in sorted(ticks.items()):
            lines.append(f'requestdesk_ticks_total{{outcome="{outcome}"}} {count}')

        lines.extend(
            [
                "",
                "# HELP requestdesk_deliveries_total Delivery attempts by outcome",
                "# TYPE requestdesk_deliveries_total counter",
            ]
        )
        for outcome, count in sorted(deliveries.items()):
            lines.append(f'requestdesk_deliveries_total{{outcome="{outcome}"}} {count}')

        lines.extend(
            [
                "",
                "# HELP requestdesk_holds_expired_total Holds released because they expired",
                "# TYPE requestdesk_holds_expired_total counter",
                f"requestdesk_holds_expired_total {holds_expired}",
            ]
        )

        if self._store is not None:
            lines.extend(
                [
                    "",
                    "# HELP requestdesk_requests Current requests by status",
                    "# TYPE requestdesk_requests gauge",
                ]
            )
            for status, count in self._store.count_by_status().items():
                lines.append(f'requestdesk_requests{{status="{status}"}} {count}')

        lines.extend(
            [
                "",
                "# HELP requestdesk_tick_duration_seconds Duration of finished ticks, idle ones included",
                "# TYPE requestdesk_tick_duration_seconds histogram",
            ]
        )
        for bucket in _DURATION_BUCKETS:
            cumulative = sum(1 for d in durations if d <= bucket)
            lines.append(f'requestdesk_tick_duration_seconds_bucket{{le="{bucket}"}} {cumulative}')
        lines.append(f'requestdesk_tick_duration_seconds_bucket{{le="+Inf"}} {len(durations)}')
        lines.append(f"requestdesk_tick_duration_seconds_sum {sum(durations):.4f}")
        lines.append(f"requestdesk_tick_duration_seconds_count {len(durations)}")

        return "\n".join(lines) + "\n"
