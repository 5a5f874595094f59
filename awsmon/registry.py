"""Instance-scoped metrics registration and text exposition"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from .errors import RegistrationError
from .metrics.base import MetricPoint
from .utils import id_with_region


class Collectable(Protocol):
    async def collect(self) -> List[MetricPoint]:
        ...


class InstanceRegistry:
    """
    Registry of live instance collectors for one resource family.

    Every point a collector returns is labelled with `label_name` set to the
    region-qualified instance id. Scrapes iterate over a snapshot of the map,
    so register/unregister may interleave freely with an in-flight scrape.
    """

    def __init__(self, label_name: str, region: str, logger: Optional[logging.Logger] = None):
        self.label_name = label_name
        self.region = region
        self.logger = logger or logging.getLogger("awsmon.registry")
        self._collectors: Dict[str, Collectable] = {}

    def label_value(self, instance_id: str) -> str:
        return id_with_region(self.region, instance_id)

    def register(self, instance_id: str, collector: Collectable) -> None:
        """Register a collector; raises RegistrationError if the label value is taken."""
        key = self.label_value(instance_id)
        if key in self._collectors:
            raise RegistrationError(f"duplicate registration for {self.label_name}={key}")
        self._collectors[key] = collector

    def unregister(self, instance_id: str, collector: Collectable) -> bool:
        """Remove a collector; returns False if it was not the registered one."""
        key = self.label_value(instance_id)
        if self._collectors.get(key) is not collector:
            return False
        del self._collectors[key]
        return True

    def __len__(self) -> int:
        return len(self._collectors)

    def __contains__(self, instance_id: str) -> bool:
        return self.label_value(instance_id) in self._collectors

    async def collect(self) -> List[MetricPoint]:
        items = list(self._collectors.items())
        results = await asyncio.gather(*(c.collect() for _, c in items), return_exceptions=True)

        points: List[MetricPoint] = []
        for (label, _), result in zip(items, results):
            if isinstance(result, BaseException):
                self.logger.error(f"collection failed for {self.label_name}={label}: {result}")
                continue
            points.extend(p.with_label(self.label_name, label) for p in result)
        return points


def to_families(points: Iterable[MetricPoint]) -> List[Metric]:
    """Group points by metric name into prometheus metric families."""
    families: Dict[str, Metric] = {}
    for point in points:
        desc = point.desc
        family = families.get(desc.name)
        if family is None:
            if desc.kind == "counter":
                family = CounterMetricFamily(desc.name, desc.help)
            else:
                family = GaugeMetricFamily(desc.name, desc.help)
            families[desc.name] = family
        sample_name = family.name + "_total" if family.type == "counter" else family.name
        family.add_sample(sample_name, point.labels, point.value)
    return list(families.values())


class PointsCollector:
    """Adapts a list of points to the prometheus_client collector interface."""

    def __init__(self, points: Iterable[MetricPoint]):
        self.points = list(points)

    def collect(self):
        return to_families(self.points)


def render(points: Iterable[MetricPoint], static: Optional[CollectorRegistry] = None) -> bytes:
    """Render points (and an optional registry of process-level metrics) as text exposition."""
    registry = CollectorRegistry(auto_describe=False)
    registry.register(PointsCollector(points))
    body = generate_latest(registry)
    if static is not None:
        body = generate_latest(static) + body
    return body
