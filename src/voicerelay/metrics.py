"""Prometheus-compatible metrics for relay observability.

Tracks session lifecycle (active sessions, rejected joins, expirations) and
relay pipeline health (relays delivered, failures per stage, end-to-end and
per-stage latency). Metrics live in memory and are exported in Prometheus
exposition format by the ``/metrics`` endpoint.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

RELAY_STAGES = ("resolve", "transcode", "recognize", "translate", "synthesize", "deliver")


@dataclass
class HistogramBucket:
    """Histogram bucket (cumulative count of observations <= le)."""

    le: float
    count: int = 0


def _default_buckets() -> list[HistogramBucket]:
    # External service round trips: 10ms to 30s
    bounds = [0.010, 0.050, 0.100, 0.250, 0.500, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")]
    return [HistogramBucket(le=b) for b in bounds]


@dataclass
class Histogram:
    """Histogram metric with fixed bucket boundaries."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    buckets: list[HistogramBucket] = field(default_factory=_default_buckets)
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation (in seconds)."""
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Approximate quantile using linear interpolation within buckets.

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        target_rank = q * self.count
        prev_count = 0
        prev_le = 0.0
        for bucket in self.buckets:
            if bucket.count >= target_rank:
                in_bucket = bucket.count - prev_count
                if in_bucket == 0 or bucket.le == float("inf"):
                    return prev_le if bucket.le == float("inf") else bucket.le
                fraction = (target_rank - prev_count) / in_bucket
                return prev_le + fraction * (bucket.le - prev_le)
            prev_count = bucket.count
            prev_le = bucket.le

        return prev_le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_session_metrics()
        self._init_relay_metrics()

        logger.info("MetricsCollector initialized")

    def _init_session_metrics(self) -> None:
        self._gauges["sessions_active"] = Gauge(
            name="sessions_active",
            help="Number of sessions currently in the registry",
        )
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Number of open transport connections",
        )
        self._counters["joins_rejected_total"] = Counter(
            name="joins_rejected_total",
            help="Join requests rejected because the session was full",
        )
        self._counters["sessions_expired_total"] = Counter(
            name="sessions_expired_total",
            help="Sessions evicted by the expiry sweeper",
        )

    def _init_relay_metrics(self) -> None:
        self._counters["relays_total"] = Counter(
            name="relays_total",
            help="Voice clips delivered to a receiver",
        )
        self._counters["relays_synthesized_total"] = Counter(
            name="relays_synthesized_total",
            help="Delivered voice clips that required speech synthesis",
        )
        self._histograms["relay_latency_seconds"] = Histogram(
            name="relay_latency_seconds",
            help="End-to-end relay latency (clip received to delivery)",
        )
        for stage in RELAY_STAGES:
            self._counters[f"relay_failures_total:{stage}"] = Counter(
                name="relay_failures_total",
                help="Relay invocations aborted, by failing stage",
                labels={"stage": stage},
            )
            self._histograms[f"relay_stage_seconds:{stage}"] = Histogram(
                name="relay_stage_seconds",
                help="Latency of individual relay stages",
                labels={"stage": stage},
            )

    # === Session metrics ===

    def set_active_sessions(self, count: int) -> None:
        with self._lock:
            self._gauges["sessions_active"].set(float(count))

    def record_connection_open(self) -> None:
        with self._lock:
            self._gauges["connections_active"].inc()

    def record_connection_closed(self) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()

    def record_join_rejected(self) -> None:
        with self._lock:
            self._counters["joins_rejected_total"].inc()

    def record_sessions_expired(self, count: int) -> None:
        with self._lock:
            self._counters["sessions_expired_total"].inc(float(count))

    # === Relay metrics ===

    def record_stage_latency(self, stage: str, latency_seconds: float) -> None:
        """Record the duration of a single pipeline stage.

        Args:
            stage: Stage name (one of RELAY_STAGES)
            latency_seconds: Measured duration
        """
        with self._lock:
            histogram = self._histograms.get(f"relay_stage_seconds:{stage}")
            if histogram is not None:
                histogram.observe(latency_seconds)

    def record_relay_delivered(self, latency_seconds: float, synthesized: bool) -> None:
        with self._lock:
            self._counters["relays_total"].inc()
            if synthesized:
                self._counters["relays_synthesized_total"].inc()
            self._histograms["relay_latency_seconds"].observe(latency_seconds)

    def record_relay_failed(self, stage: str | None) -> None:
        """Record an aborted relay.

        Args:
            stage: Failing stage; unknown stages are counted under "deliver"
        """
        with self._lock:
            key = f"relay_failures_total:{stage}"
            if key not in self._counters:
                key = "relay_failures_total:deliver"
            self._counters[key].inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Metrics sharing a name (labelled series) get a single HELP/TYPE header.
        """
        with self._lock:
            lines: list[str] = []
            seen: set[str] = set()

            def header(name: str, help_text: str, kind: str) -> None:
                if name in seen:
                    return
                seen.add(name)
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} {kind}")

            for counter in self._counters.values():
                header(counter.name, counter.help, "counter")
                lines.append(f"{counter.name}{self._format_labels(counter.labels)} {counter.value}")

            for gauge in self._gauges.values():
                header(gauge.name, gauge.help, "gauge")
                lines.append(f"{gauge.name}{self._format_labels(gauge.labels)} {gauge.value}")

            for histogram in self._histograms.values():
                header(histogram.name, histogram.help, "histogram")
                labels_str = self._format_labels(histogram.labels)
                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    bucket_labels = self._format_labels({**histogram.labels, "le": le})
                    lines.append(f"{histogram.name}_bucket{bucket_labels} {bucket.count}")
                lines.append(f"{histogram.name}_sum{labels_str} {histogram.sum}")
                lines.append(f"{histogram.name}_count{labels_str} {histogram.count}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        if not labels:
            return ""
        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    def get_summary(self) -> dict[str, float | None]:
        """Key metrics and percentiles for dashboards and debugging."""
        with self._lock:
            latency = self._histograms["relay_latency_seconds"]
            p50 = latency.quantile(0.50)
            p95 = latency.quantile(0.95)

            summary: dict[str, float | None] = {
                "sessions_active": self._gauges["sessions_active"].value,
                "connections_active": self._gauges["connections_active"].value,
                "joins_rejected": self._counters["joins_rejected_total"].value,
                "sessions_expired": self._counters["sessions_expired_total"].value,
                "relays_total": self._counters["relays_total"].value,
                "relays_synthesized": self._counters["relays_synthesized_total"].value,
                "relay_latency_p50_ms": p50 * 1000 if p50 is not None else None,
                "relay_latency_p95_ms": p95 * 1000 if p95 is not None else None,
            }
            for stage in RELAY_STAGES:
                summary[f"relay_failures_{stage}"] = self._counters[
                    f"relay_failures_total:{stage}"
                ].value
            return summary


_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
