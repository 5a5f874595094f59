"""ElastiCache discovery API"""
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import DiscoveryError
from ..models import ResourceDescriptor
from .rds import tags_to_dict


def descriptors_from_cluster(cluster: Dict[str, Any]) -> List[ResourceDescriptor]:
    """One descriptor per cache node, id '<cluster id>/<node id>'."""
    cluster_id = cluster["CacheClusterId"]
    attributes = {k: v for k, v in cluster.items() if k != "CacheNodes"}
    descriptors = []
    for node in cluster.get("CacheNodes") or []:
        endpoint = node.get("Endpoint") or {}
        descriptors.append(ResourceDescriptor(
            id=f"{cluster_id}/{node['CacheNodeId']}",
            engine=cluster.get("Engine", ""),
            endpoint_host=endpoint.get("Address", ""),
            endpoint_port=int(endpoint.get("Port") or 0),
            status=node.get("CacheNodeStatus", ""),
            engine_version=cluster.get("EngineVersion", ""),
            instance_class=cluster.get("CacheNodeType", ""),
            availability_zone=node.get("CustomerAvailabilityZone", ""),
            arn=cluster.get("ARN", ""),
            attributes={**attributes, "CacheNodeId": node["CacheNodeId"]},
        ))
    return descriptors


class ElasticacheApi:
    """Lists ElastiCache cache nodes through a boto3 'elasticache' client."""

    def __init__(self, elasticache_api, logger: Optional[logging.Logger] = None):
        self.api = elasticache_api
        self.logger = logger or logging.getLogger("awsmon.discovery.elasticache")

    def list_instances(self) -> List[ResourceDescriptor]:
        descriptors: List[ResourceDescriptor] = []
        try:
            paginator = self.api.get_paginator("describe_cache_clusters")
            for page in paginator.paginate(ShowCacheNodeInfo=True):
                for cluster in page.get("CacheClusters", []):
                    descriptors.extend(descriptors_from_cluster(cluster))
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"failed to describe cache clusters: {e}") from e
        return descriptors

    def list_tags(self, descriptor: ResourceDescriptor) -> Dict[str, str]:
        try:
            out = self.api.list_tags_for_resource(ResourceName=descriptor.arn)
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"failed to list tags of {descriptor.arn}: {e}") from e
        return tags_to_dict(out.get("TagList"))
