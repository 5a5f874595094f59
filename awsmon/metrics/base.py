import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class MetricDesc:
    """Immutable description of one exported metric family"""
    name: str
    help: str
    labels: Tuple[str, ...] = ()
    kind: str = "gauge"  # 'gauge' or 'counter'

    def __post_init__(self):
        if self.kind not in ("gauge", "counter"):
            raise ValueError(f"unsupported metric kind: {self.kind}")

    def point(self, value: float, *label_values: str) -> "MetricPoint":
        """Create a data point for this family; label values follow self.labels order."""
        if len(label_values) != len(self.labels):
            raise ValueError(
                f"{self.name}: expected {len(self.labels)} label values, got {len(label_values)}"
            )
        return MetricPoint(self, float(value), dict(zip(self.labels, (str(v) for v in label_values))))


def gauge(name: str, help: str, *labels: str) -> MetricDesc:
    return MetricDesc(name, help, tuple(labels), "gauge")


def counter(name: str, help: str, *labels: str) -> MetricDesc:
    return MetricDesc(name, help, tuple(labels), "counter")


@dataclass
class MetricPoint:
    """Single metric data point"""
    desc: MetricDesc
    value: float
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.desc.name

    def with_label(self, name: str, value: str) -> "MetricPoint":
        """Copy of this point with one extra label (used for instance scoping)."""
        return MetricPoint(self.desc, self.value, {**self.labels, name: value})


class MetricSource(ABC):
    """
    Base class for per-instance metric sources.

    A source is bound to one endpoint for its whole life: when the endpoint
    changes the owner closes it and builds a new one.
    """

    def __init__(self, name: str, logger: logging.Logger = logging.getLogger("awsmon.metrics")):
        self.name = name
        self.logger = logger
        self.last_collection = 0.0
        self.closed = False

    @abstractmethod
    async def collect(self) -> List[MetricPoint]:
        """Collect metrics and return list of MetricPoint objects"""

    async def close(self) -> None:
        """Release connections. Must be idempotent."""
        self.closed = True

    async def safe_collect(self) -> List[MetricPoint]:
        """Safely collect metrics with error handling"""
        if self.closed:
            return []

        try:
            start_time = time.time()
            metrics = await self.collect()
            collection_time = time.time() - start_time

            self.logger.debug(f"{self.name}: collected {len(metrics)} metrics in {collection_time:.2f}s")
            self.last_collection = time.time()
            return metrics

        except Exception as e:
            self.logger.error(f"{self.name} collection failed: {e}")
            return []
