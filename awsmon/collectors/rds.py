"""RDS instance collector"""
import logging
from typing import List, Optional

from ..config import AgentConfig
from ..logs import LogSource, RdsLogSource
from ..metrics import EnhancedMonitoring, MetricPoint, build_metric_source, counter, gauge
from ..models import ResourceDescriptor
from ..utils import id_with_region
from .base import InstanceCollector, SourceFactory

dInfo = gauge("aws_rds_info", "RDS instance info",
              "region", "availability_zone", "endpoint", "ipv4", "port",
              "engine", "engine_version", "instance_type", "storage_type",
              "secondary_availability_zone", "cluster_id", "source_instance_id")
dStatus = gauge("aws_rds_status", "Status of the RDS instance", "status")
dAllocatedStorage = gauge("aws_rds_allocated_storage_gibibytes", "Allocated storage size")
dStorageAutoscalingThreshold = gauge("aws_rds_storage_autoscaling_threshold_gibibytes",
                                     "Storage autoscaling threshold")
dStorageProvisionedIOPs = gauge("aws_rds_storage_provisioned_iops", "Number of provisioned IOPs")
dReadReplicaInfo = gauge("aws_rds_read_replica_info", "Read replica info", "replica_instance_id")
dBackupRetentionPeriod = gauge("aws_rds_backup_retention_period_days", "Backup retention period")
dLogMessages = counter("aws_rds_log_messages_total",
                       "Number of messages grouped by the automatically extracted repeated pattern",
                       "level", "pattern_hash", "sample")

# engines whose log files are plain line-oriented text
LOG_ENGINES = {"postgres", "aurora-postgresql"}


class RdsCollector(InstanceCollector):
    """Collector of one RDS DB instance."""

    log_messages_desc = dLogMessages

    def __init__(self, descriptor: ResourceDescriptor, region: str, config: AgentConfig,
                 rds_api=None, logs_api=None,
                 source_factory: SourceFactory = build_metric_source,
                 logger: Optional[logging.Logger] = None):
        super().__init__(descriptor, region, config, source_factory, logger)
        self.rds_api = rds_api
        self.enhanced = EnhancedMonitoring(logs_api, logger=self.logger) if logs_api is not None else None

    def logs_interval(self) -> float:
        return self.config.rds.logs_scrape_interval

    def log_source(self) -> Optional[LogSource]:
        if self.rds_api is None or self.descriptor.engine not in LOG_ENGINES:
            return None
        return RdsLogSource(self.rds_api, logger=self.logger.getChild("logs"))

    def has_host_metrics(self, descriptor: ResourceDescriptor) -> bool:
        a = descriptor.attributes
        return (self.enhanced is not None
                and (a.get("MonitoringInterval") or 0) > 0
                and bool(a.get("DbiResourceId")))

    async def host_metrics(self, descriptor: ResourceDescriptor) -> List[MetricPoint]:
        return await self.enhanced.collect(descriptor.attributes["DbiResourceId"])

    def descriptor_points(self, descriptor: ResourceDescriptor, ip: str) -> List[MetricPoint]:
        a = descriptor.attributes
        region = self.region
        metrics = [
            dStatus.point(1, descriptor.status),
            dInfo.point(
                1,
                region,
                descriptor.availability_zone,
                descriptor.endpoint_host,
                ip,
                descriptor.endpoint_port,
                descriptor.engine,
                descriptor.engine_version,
                descriptor.instance_class,
                a.get("StorageType", ""),
                a.get("SecondaryAvailabilityZone", ""),
                id_with_region(region, a.get("DBClusterIdentifier", "")),
                id_with_region(region, a.get("ReadReplicaSourceDBInstanceIdentifier", "")),
            ),
            dAllocatedStorage.point(a.get("AllocatedStorage") or 0),
            dStorageAutoscalingThreshold.point(a.get("MaxAllocatedStorage") or 0),
            dStorageProvisionedIOPs.point(a.get("Iops") or 0),
            dBackupRetentionPeriod.point(a.get("BackupRetentionPeriod") or 0),
        ]
        for replica in a.get("ReadReplicaDBInstanceIdentifiers") or []:
            metrics.append(dReadReplicaInfo.point(1, id_with_region(region, replica)))
        return metrics
