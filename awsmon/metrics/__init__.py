"""Metric sources package - per-instance metrics collaborators"""

from .base import MetricDesc, MetricPoint, MetricSource, counter, gauge
from .enhanced import EnhancedMonitoring
from .factory import SOURCE_REGISTRY, build_metric_source, source_builder
from .memcached import MemcachedSource
from .postgres import PostgresSource
from .redis import RedisSource

__all__ = [
    # Base classes
    'MetricDesc',
    'MetricPoint',
    'MetricSource',
    'counter',
    'gauge',

    # Sources
    'PostgresSource',
    'RedisSource',
    'MemcachedSource',
    'EnhancedMonitoring',

    # Dispatch
    'SOURCE_REGISTRY',
    'build_metric_source',
    'source_builder',
]
