"""RDS Enhanced Monitoring exporter.

RDS publishes OS-level samples as JSON events into the RDSOSMetrics log group,
one stream per instance (stream name = DbiResourceId). Only the newest event
is read on each scrape.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .base import MetricPoint, gauge

LOG_GROUP_NAME = "RDSOSMetrics"

dCPUCores = gauge("aws_rds_cpu_cores", "The number of virtual CPUs")
dCpuUsage = gauge("aws_rds_cpu_usage_percent", "The percentage of the CPU spent in each mode", "mode")
dIOps = gauge("aws_rds_io_ops_per_second", "The number of I/O transactions per second", "device", "operation")
dIObytes = gauge("aws_rds_io_bytes_per_second", "The number of bytes read or written per second",
                 "device", "operation")
dIOlatency = gauge("aws_rds_io_latency_seconds",
                   "The average elapsed time between the submission of an I/O request and its completion "
                   "(Amazon Aurora only)", "device", "operation")
dIOawait = gauge("aws_rds_io_await_seconds",
                 "The number of seconds required to respond to requests, including queue time and service time",
                 "device")
dIOutil = gauge("aws_rds_io_util_percent", "The percentage of CPU time during which requests were issued.",
                "device")
dFSTotal = gauge("aws_rds_fs_total_bytes", "The total number of disk space available for the file system",
                 "mount_point")
dFSUsed = gauge("aws_rds_fs_used_bytes", "The amount of disk space used by files in the file system",
                "mount_point")
dMemTotal = gauge("aws_rds_memory_total_bytes", "The total amount of memory")
dMemCached = gauge("aws_rds_memory_cached_bytes", "The amount of memory used as page cache")
dMemFree = gauge("aws_rds_memory_free_bytes", "The amount of unassigned memory")
dNetRx = gauge("aws_rds_net_rx_bytes_per_second", "The number of bytes received per second", "interface")
dNetTx = gauge("aws_rds_net_tx_bytes_per_second", "The number of bytes transmitted per second", "interface")

CPU_MODES = ("guest", "irq", "nice", "steal", "system", "user", "wait")

# Aurora reports its network storage as a diskIO entry without a device name
AURORA_DEVICE = "aurora-data"


def parse_os_metrics(payload: Dict[str, Any]) -> List[MetricPoint]:
    """Convert one Enhanced Monitoring sample into metric points (KiB values are scaled by 1000)."""
    metrics: List[MetricPoint] = []

    if "numVCPUs" in payload:
        metrics.append(dCPUCores.point(payload["numVCPUs"]))

    cpu = payload.get("cpuUtilization") or {}
    for mode in CPU_MODES:
        if mode in cpu:
            metrics.append(dCpuUsage.point(cpu[mode], mode))

    memory = payload.get("memory") or {}
    if memory:
        metrics.extend([
            dMemTotal.point(memory.get("total", 0) * 1000),
            dMemCached.point(memory.get("cached", 0) * 1000),
            dMemFree.point(memory.get("free", 0) * 1000),
        ])

    for io in payload.get("physicalDeviceIO") or []:
        device = io.get("device", "")
        metrics.extend([
            dIOps.point(io.get("readIOsPS", 0), device, "read"),
            dIOps.point(io.get("writeIOsPS", 0), device, "write"),
            dIObytes.point(io.get("readKbPS", 0) * 1000, device, "read"),
            dIObytes.point(io.get("writeKbPS", 0) * 1000, device, "write"),
            dIOawait.point(io.get("await", 0) / 1000, device),
            dIOutil.point(io.get("util", 0), device),
        ])

    for io in payload.get("diskIO") or []:
        if io.get("device"):
            continue
        if io.get("readIOsPS") is not None and io.get("writeIOsPS") is not None:
            metrics.append(dIOps.point(io["readIOsPS"], AURORA_DEVICE, "read"))
            metrics.append(dIOps.point(io["writeIOsPS"], AURORA_DEVICE, "write"))
        if io.get("readLatency") is not None and io.get("writeLatency") is not None:
            metrics.append(dIOlatency.point(io["readLatency"] / 1000, AURORA_DEVICE, "read"))
            metrics.append(dIOlatency.point(io["writeLatency"] / 1000, AURORA_DEVICE, "write"))

    for fs in payload.get("fileSys") or []:
        mount_point = fs.get("mountPoint", "")
        metrics.append(dFSTotal.point(fs.get("total", 0) * 1000, mount_point))
        metrics.append(dFSUsed.point(fs.get("used", 0) * 1000, mount_point))

    for iface in payload.get("network") or []:
        name = iface.get("interface", "")
        metrics.append(dNetRx.point(iface.get("rx", 0), name))
        metrics.append(dNetTx.point(iface.get("tx", 0), name))

    return metrics


class EnhancedMonitoring:
    """Reads the latest Enhanced Monitoring sample of one RDS instance."""

    def __init__(self, logs_api, logger: Optional[logging.Logger] = None):
        self.logs_api = logs_api
        self.logger = logger or logging.getLogger("awsmon.metrics.enhanced")

    def fetch_latest_sample(self, resource_id: str) -> Optional[Dict[str, Any]]:
        """Return the newest sample as a dict, or None when the stream has no events."""
        out = self.logs_api.get_log_events(
            logGroupName=LOG_GROUP_NAME,
            logStreamName=resource_id,
            limit=1,
            startFromHead=False,
        )
        events = out.get("events") or []
        if not events:
            return None
        return json.loads(events[0]["message"])

    async def collect(self, resource_id: str) -> List[MetricPoint]:
        loop = asyncio.get_running_loop()
        try:
            sample = await loop.run_in_executor(None, self.fetch_latest_sample, resource_id)
        except (ClientError, BotoCoreError) as e:
            self.logger.warning(f"failed to read log stream {LOG_GROUP_NAME}:{resource_id}: {e}")
            return []
        except (ValueError, KeyError) as e:
            self.logger.warning(f"failed to parse enhanced monitoring data: {e}")
            return []
        if sample is None:
            return []
        return parse_os_metrics(sample)
