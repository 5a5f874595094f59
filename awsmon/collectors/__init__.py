"""Instance collectors package - one lifecycle object per tracked instance"""

from .base import InstanceCollector
from .elasticache import ElasticacheCollector
from .rds import RdsCollector

__all__ = [
    'InstanceCollector',
    'RdsCollector',
    'ElasticacheCollector',
]
