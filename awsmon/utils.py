"""Utility functions shared by discovery and collectors"""
import fnmatch
import logging
import socket
from typing import Dict, Mapping, Optional


logger = logging.getLogger("awsmon.utils")


def id_with_region(region: str, resource_id: str) -> str:
    """
    Build the region-qualified instance id used as the instance label value.

    ARNs are reduced to their trailing resource-local segment and carry their
    own region, e.g. "arn:aws:rds:eu-west-1:123:db:orders" -> "eu-west-1/orders".
    An empty id stays empty.
    """
    if not resource_id:
        return ""
    if resource_id.startswith("arn:"):
        parts = resource_id.split(":", 5)
        if len(parts) == 6:
            region = parts[3]
            resource = parts[5]
            # resource is either "type:name" or a plain name
            segments = resource.split(":")
            resource_id = segments[1] if len(segments) > 1 else resource
    return f"{region}/{resource_id}"


def filtered(filters: Optional[Mapping[str, str]], tags: Optional[Mapping[str, str]]) -> bool:
    """
    Check whether an instance must be skipped according to tag filters.

    Every filter is a tag_name -> glob pattern rule; the instance is skipped if at
    least one rule does not match. A missing tag is matched as an empty string.
    """
    tags = tags or {}
    for tag_name, pattern in (filters or {}).items():
        if not fnmatch.fnmatchcase(tags.get(tag_name, ""), pattern):
            return True
    return False


def parse_tag_filters(value: str) -> Dict[str, str]:
    """Parse "name:glob,name2:glob2" (the env var form) into a filter dict."""
    result: Dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if ":" not in item:
            raise ValueError(f"invalid tag filter '{item}', expected tag_name:tag_value")
        name, pattern = item.split(":", 1)
        result[name.strip()] = pattern.strip()
    return result


def resolve_ip(host: str) -> str:
    """Resolve an endpoint host to an IPv4 address, empty string on failure."""
    if not host:
        return ""
    try:
        return socket.gethostbyname(host)
    except OSError as e:
        logger.warning(f"failed to resolve {host}: {e}")
        return ""
