"""ElastiCache node collector"""
from typing import List

from ..metrics import MetricPoint, gauge
from ..models import ResourceDescriptor
from .base import InstanceCollector

dInfo = gauge("aws_elasticache_info", "Elasticache instance info",
              "region", "availability_zone", "endpoint", "ipv4", "port",
              "engine", "engine_version", "instance_type", "cluster_id")
dStatus = gauge("aws_elasticache_status", "Status of the Elasticache instance", "status")


class ElasticacheCollector(InstanceCollector):
    """Collector of one ElastiCache cache node."""

    def descriptor_points(self, descriptor: ResourceDescriptor, ip: str) -> List[MetricPoint]:
        a = descriptor.attributes
        cluster = a.get("ReplicationGroupId") or a.get("CacheClusterId", "")
        return [
            dStatus.point(1, descriptor.status),
            dInfo.point(
                1,
                self.region,
                descriptor.availability_zone,
                descriptor.endpoint_host,
                ip,
                descriptor.endpoint_port,
                descriptor.engine,
                descriptor.engine_version,
                descriptor.instance_class,
                cluster,
            ),
        ]
