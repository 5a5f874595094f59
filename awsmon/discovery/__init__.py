"""Discovery package - fleet reconciliation per resource family"""

from .base import Discoverer, DiscoveryApi
from .elasticache import ElasticacheApi
from .rds import RdsApi

__all__ = [
    'Discoverer',
    'DiscoveryApi',
    'RdsApi',
    'ElasticacheApi',
]
