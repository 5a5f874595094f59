"""RDS discovery API"""
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import DiscoveryError
from ..models import ResourceDescriptor


def tags_to_dict(tag_list: List[Dict[str, str]]) -> Dict[str, str]:
    return {t.get("Key", ""): t.get("Value", "") for t in tag_list or []}


def descriptor_from_instance(instance: Dict[str, Any]) -> ResourceDescriptor:
    """Build a descriptor from one DescribeDBInstances record."""
    endpoint = instance.get("Endpoint") or {}
    tags = tags_to_dict(instance["TagList"]) if "TagList" in instance else None
    return ResourceDescriptor(
        id=instance["DBInstanceIdentifier"],
        engine=instance.get("Engine", ""),
        endpoint_host=endpoint.get("Address", ""),
        endpoint_port=int(endpoint.get("Port") or 0),
        status=instance.get("DBInstanceStatus", ""),
        engine_version=instance.get("EngineVersion", ""),
        instance_class=instance.get("DBInstanceClass", ""),
        availability_zone=instance.get("AvailabilityZone", ""),
        arn=instance.get("DBInstanceArn", ""),
        tags=tags,
        attributes=instance,
    )


class RdsApi:
    """Lists RDS DB instances through a boto3 'rds' client."""

    def __init__(self, rds_api, logger: Optional[logging.Logger] = None):
        self.api = rds_api
        self.logger = logger or logging.getLogger("awsmon.discovery.rds")

    def list_instances(self) -> List[ResourceDescriptor]:
        descriptors: List[ResourceDescriptor] = []
        try:
            paginator = self.api.get_paginator("describe_db_instances")
            for page in paginator.paginate():
                for instance in page.get("DBInstances", []):
                    if not (instance.get("Endpoint") or {}).get("Address"):
                        # still being created
                        self.logger.debug(f"{instance.get('DBInstanceIdentifier')} has no endpoint yet")
                        continue
                    descriptors.append(descriptor_from_instance(instance))
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"failed to describe DB instances: {e}") from e
        return descriptors

    def list_tags(self, descriptor: ResourceDescriptor) -> Dict[str, str]:
        try:
            out = self.api.list_tags_for_resource(ResourceName=descriptor.arn)
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"failed to list tags of {descriptor.arn}: {e}") from e
        return tags_to_dict(out.get("TagList"))
