"""Redis / Valkey metric source based on the INFO command."""

import logging
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import MetricPoint, MetricSource, counter, gauge

dUp = gauge("redis_up", "Whether the last INFO round trip succeeded")
dInfo = gauge("redis_instance_info", "Redis server info", "redis_version", "role")
dUptime = gauge("redis_uptime_in_seconds", "Seconds since the server started")
dClients = gauge("redis_connected_clients", "Number of client connections")
dBlockedClients = gauge("redis_blocked_clients", "Number of clients pending on a blocking call")
dMemoryUsed = gauge("redis_memory_used_bytes", "Memory allocated by the server")
dMemoryMax = gauge("redis_memory_max_bytes", "Configured maxmemory")
dCommands = counter("redis_commands_processed_total", "Number of commands processed")
dConnectionsReceived = counter("redis_connections_received_total", "Number of accepted connections")
dHits = counter("redis_keyspace_hits_total", "Number of successful key lookups")
dMisses = counter("redis_keyspace_misses_total", "Number of failed key lookups")
dEvicted = counter("redis_evicted_keys_total", "Number of keys evicted due to maxmemory")
dExpired = counter("redis_expired_keys_total", "Number of keys expired")
dKeys = gauge("redis_db_keys", "Number of keys per database", "db")
dKeysExpiring = gauge("redis_db_keys_expiring", "Number of keys with an expiration per database", "db")

# INFO field -> descriptor for plain numeric fields
SIMPLE_FIELDS = {
    "uptime_in_seconds": dUptime,
    "connected_clients": dClients,
    "blocked_clients": dBlockedClients,
    "used_memory": dMemoryUsed,
    "maxmemory": dMemoryMax,
    "total_commands_processed": dCommands,
    "total_connections_received": dConnectionsReceived,
    "keyspace_hits": dHits,
    "keyspace_misses": dMisses,
    "evicted_keys": dEvicted,
    "expired_keys": dExpired,
}


def parse_info(info: Dict[str, Any]) -> List[MetricPoint]:
    """Convert a parsed INFO mapping into metric points."""
    metrics: List[MetricPoint] = [
        dInfo.point(1, info.get("redis_version", ""), info.get("role", "")),
    ]
    for key, desc in SIMPLE_FIELDS.items():
        if key in info:
            try:
                metrics.append(desc.point(float(info[key])))
            except (TypeError, ValueError):
                continue

    for key, value in info.items():
        # keyspace section: db0 -> {'keys': 12, 'expires': 1, 'avg_ttl': 0}
        if key.startswith("db") and key[2:].isdigit() and isinstance(value, dict):
            metrics.append(dKeys.point(value.get("keys", 0), key))
            metrics.append(dKeysExpiring.point(value.get("expires", 0), key))
    return metrics


class RedisSource(MetricSource):
    """Collects INFO metrics from one Redis-compatible node."""

    def __init__(self, host: str, port: int, connect_timeout: float = 1.0,
                 logger: Optional[logging.Logger] = None, client: Optional[Redis] = None):
        super().__init__("redis", logger or logging.getLogger("awsmon.metrics.redis"))
        self.host = host
        self.port = port
        self.client = client or Redis(
            host=host,
            port=port,
            socket_connect_timeout=connect_timeout,
            socket_timeout=connect_timeout,
        )
        self.logger.info(f"redis collector -> redis://{host}:{port}")

    async def collect(self) -> List[MetricPoint]:
        if self.closed:
            return []
        try:
            info = await self.client.info()
        except (RedisError, OSError) as e:
            self.logger.warning(f"redis INFO failed: {e}")
            return [dUp.point(0)]
        return [dUp.point(1)] + parse_info(info)

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        await self.client.aclose()
