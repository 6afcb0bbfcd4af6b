"""
Observability Layer

RESPONSIBILITY: Logging setup and in-process metrics
ALLOWED INPUTS: Metric samples from the cache, the orchestrator and the API
OUTPUTS: MetricPoint series, aggregates

WHAT THIS LAYER MUST NOT DO:
============================
- Modify pipeline behavior
- Make decisions based on recorded data
- Block or delay other layers

BOUNDARY ENFORCEMENT:
=====================
- Append-only: recorded points are never modified
- Provides read-only copies of the series
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging
import sys


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO", stream=None):
    """Configure root logging once for a process entry point."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=stream or sys.stderr,
        force=True,
    )


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricType(Enum):
    """Types of metrics collected."""
    COUNTER = "counter"
    TIMING = "timing"


@dataclass(frozen=True)
class MetricDefinition:
    """Definition of a metric to collect."""
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: datetime
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


DEFAULT_METRICS = (
    MetricDefinition(
        name="stage_cache_hits_total",
        metric_type=MetricType.COUNTER,
        description="Stage values served from the store",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="stage_cache_misses_total",
        metric_type=MetricType.COUNTER,
        description="Stage lookups that started a computation",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="stage_cache_joins_total",
        metric_type=MetricType.COUNTER,
        description="Callers that joined an in-flight computation",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="stage_cache_computations_total",
        metric_type=MetricType.COUNTER,
        description="Successful stage computations",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="stage_cache_failures_total",
        metric_type=MetricType.COUNTER,
        description="Failed stage computations (never stored)",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="stage_compute_duration_ms",
        metric_type=MetricType.TIMING,
        description="Stage computation time in milliseconds",
        labels=("namespace",),
    ),
    MetricDefinition(
        name="collaborator_calls_total",
        metric_type=MetricType.COUNTER,
        description="Calls made to external collaborators",
        labels=("collaborator", "outcome"),
    ),
    MetricDefinition(
        name="audit_runs_total",
        metric_type=MetricType.COUNTER,
        description="Completed run_audit calls by final status",
        labels=("status",),
    ),
    MetricDefinition(
        name="audit_duration_ms",
        metric_type=MetricType.TIMING,
        description="End-to-end run_audit time in milliseconds",
    ),
)


class MetricsCollector:
    """
    Collect and aggregate metrics for one process.

    Metrics are append-only series of data points.
    """

    def __init__(self):
        self._metrics: Dict[str, List[MetricPoint]] = {}
        self._definitions: Dict[str, MetricDefinition] = {}
        for definition in DEFAULT_METRICS:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        """Register a new metric definition."""
        self._definitions[definition.name] = definition
        if definition.name not in self._metrics:
            self._metrics[definition.name] = []

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Record a metric data point."""
        if metric_name not in self._metrics:
            self._metrics[metric_name] = []

        label_tuple = tuple(sorted(labels.items())) if labels else ()
        self._metrics[metric_name].append(MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=datetime.now(timezone.utc),
            labels=label_tuple,
        ))

    def get_metric(
        self,
        metric_name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> List[MetricPoint]:
        """Get data points, optionally only those carrying the given labels."""
        points = self._metrics.get(metric_name, [])
        if labels:
            wanted = set(labels.items())
            points = [p for p in points if wanted <= set(p.labels)]
        return list(points)

    def total(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return sum(p.value for p in self.get_metric(metric_name, labels))

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        points = self._metrics.get(metric_name, [])
        return points[-1] if points else None

    def get_all_metrics(self) -> Dict[str, List[MetricPoint]]:
        """Get all metrics (copy)."""
        return {k: list(v) for k, v in self._metrics.items()}

    def compute_aggregates(
        self,
        metric_name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> Dict[str, float]:
        """Compute aggregate statistics for a metric."""
        values = [p.value for p in self.get_metric(metric_name, labels)]
        if not values:
            return {}
        return {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'avg': sum(values) / len(values),
        }
