"""Pytest configuration and shared fixtures"""
import logging
from typing import Dict, List, Optional

import pytest

from awsmon.collectors import InstanceCollector
from awsmon.config import AgentConfig
from awsmon.errors import DiscoveryError, LogSourceError
from awsmon.metrics import MetricSource, gauge
from awsmon.models import ResourceDescriptor
from awsmon.registry import InstanceRegistry

dFake = gauge("fake_source_up", "Fake metric source", "endpoint")
dFakeStatus = gauge("fake_status", "Fake instance status", "status")


class FakeMetricSource(MetricSource):
    """Metric source that records how often it was closed"""

    def __init__(self, engine: str, host: str, port: int):
        super().__init__(engine, logging.getLogger("tests.source"))
        self.host = host
        self.port = port
        self.close_calls = 0

    async def collect(self):
        return [dFake.point(1, f"{self.host}:{self.port}")]

    async def close(self):
        self.close_calls += 1
        await super().close()


class RecordingSourceFactory:
    """Source factory building FakeMetricSource for known engines and recording every build"""

    engines = ("postgres", "redis", "memcached")

    def __init__(self):
        self.built: List[FakeMetricSource] = []

    async def __call__(self, engine, host, port, config, logger):
        if engine not in self.engines:
            return None
        source = FakeMetricSource(engine, host, port)
        self.built.append(source)
        return source

    def for_host(self, host: str) -> List[FakeMetricSource]:
        return [s for s in self.built if s.host == host]


class FakeCollector(InstanceCollector):
    """Collector exposing only a status gauge besides its source metrics"""

    def descriptor_points(self, descriptor, ip):
        return [dFakeStatus.point(1, descriptor.status)]


class RecordingRegistry(InstanceRegistry):
    """InstanceRegistry remembering every register/unregister call"""

    def __init__(self, label_name="rds_instance_id", region="us-east-1"):
        super().__init__(label_name, region)
        self.registered: List[tuple] = []
        self.unregistered: List[tuple] = []

    def register(self, instance_id, collector):
        self.registered.append((instance_id, collector))
        super().register(instance_id, collector)

    def unregister(self, instance_id, collector):
        self.unregistered.append((instance_id, collector))
        return super().unregister(instance_id, collector)


class FakeDiscoveryApi:
    """In-memory discovery API; `instances` and `tags` are set by the test"""

    def __init__(self, instances: Optional[List[ResourceDescriptor]] = None):
        self.instances = list(instances or [])
        self.tags: Dict[str, Dict[str, str]] = {}
        self.fail = False
        self.failing_tags = set()
        self.tag_lookups: List[str] = []

    def list_instances(self):
        if self.fail:
            raise DiscoveryError("throttled")
        return list(self.instances)

    def list_tags(self, descriptor):
        self.tag_lookups.append(descriptor.id)
        if descriptor.id in self.failing_tags:
            raise DiscoveryError("access denied")
        return dict(self.tags.get(descriptor.id, {}))


class FakeLogSource:
    """
    In-memory log source.

    `files` maps file name -> last written timestamp; `responses` holds the
    (text, marker) or (text, marker, pending) tuples returned by successive
    incremental reads of a file.
    """

    def __init__(self):
        self.files: Dict[str, int] = {}
        self.responses: Dict[str, List] = {}
        self.list_error: Optional[Exception] = None
        self.download_errors = set()
        self.calls: List[tuple] = []

    def list_log_files(self, instance_id):
        if self.list_error is not None:
            raise self.list_error
        return list(self.files.items())

    def download_portion(self, instance_id, file_name, marker=None, number_of_lines=None):
        self.calls.append((file_name, marker, number_of_lines))
        if file_name in self.download_errors:
            raise LogSourceError(f"failed to download file {file_name}")
        if number_of_lines is not None:
            return "last line before start\n", f"{file_name}@0", False
        response = self.responses[file_name].pop(0)
        return response if len(response) == 3 else (*response, False)


def make_descriptor(id, engine="postgres", host=None, port=5432, status="available", **kwargs):
    return ResourceDescriptor(
        id=id,
        engine=engine,
        endpoint_host=host if host is not None else f"{id}.example.internal",
        endpoint_port=port,
        status=status,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def no_dns(monkeypatch):
    """Keep collectors from resolving fake endpoint names"""
    monkeypatch.setattr("awsmon.collectors.base.resolve_ip", lambda host: "10.0.0.1")


@pytest.fixture
def config():
    """Agent config with a region and log tailing disabled"""
    cfg = AgentConfig(aws_region="us-east-1")
    cfg.rds.logs_scrape_interval = 0
    return cfg


@pytest.fixture
def source_factory():
    return RecordingSourceFactory()


@pytest.fixture
def collector_factory(config, source_factory):
    """Build FakeCollectors, remembering every instance"""
    built = []

    def factory(descriptor):
        collector = FakeCollector(descriptor, config.aws_region, config, source_factory=source_factory)
        built.append(collector)
        return collector

    factory.built = built
    return factory


@pytest.fixture
def log_source():
    return FakeLogSource()
