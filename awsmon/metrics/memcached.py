"""Memcached metric source using the text protocol 'stats' command."""

import asyncio
import logging
from typing import Dict, List, Optional

from .base import MetricPoint, MetricSource, counter, gauge

dUp = gauge("memcached_up", "Whether the last stats round trip succeeded")
dVersion = gauge("memcached_version", "Memcached server version", "version")
dUptime = gauge("memcached_uptime_seconds", "Seconds since the server started")
dConnections = gauge("memcached_current_connections", "Number of open connections")
dItems = gauge("memcached_current_items", "Number of items currently stored")
dBytes = gauge("memcached_current_bytes", "Bytes used to store items")
dLimit = gauge("memcached_limit_bytes", "Configured storage limit")
dHits = counter("memcached_get_hits_total", "Number of get hits")
dMisses = counter("memcached_get_misses_total", "Number of get misses")
dEvictions = counter("memcached_items_evicted_total", "Number of valid items evicted")
dConnectionsTotal = counter("memcached_connections_total", "Number of accepted connections")

STAT_FIELDS = {
    "uptime": dUptime,
    "curr_connections": dConnections,
    "curr_items": dItems,
    "bytes": dBytes,
    "limit_maxbytes": dLimit,
    "get_hits": dHits,
    "get_misses": dMisses,
    "evictions": dEvictions,
    "total_connections": dConnectionsTotal,
}


def parse_stats(text: str) -> Dict[str, str]:
    """Parse 'STAT name value' lines up to END."""
    stats: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if line == "END":
            break
        parts = line.split(" ", 2)
        if len(parts) == 3 and parts[0] == "STAT":
            stats[parts[1]] = parts[2]
    return stats


def stats_to_metrics(stats: Dict[str, str]) -> List[MetricPoint]:
    metrics: List[MetricPoint] = []
    if "version" in stats:
        metrics.append(dVersion.point(1, stats["version"]))
    for key, desc in STAT_FIELDS.items():
        try:
            metrics.append(desc.point(float(stats[key])))
        except (KeyError, ValueError):
            continue
    return metrics


class MemcachedSource(MetricSource):
    """Collects stats from one memcached node; opens a short connection per scrape."""

    def __init__(self, host: str, port: int, timeout: float = 1.0,
                 logger: Optional[logging.Logger] = None):
        super().__init__("memcached", logger or logging.getLogger("awsmon.metrics.memcached"))
        self.host = host
        self.port = port
        self.timeout = timeout
        self.logger.info(f"memcached collector -> {host}:{port}")

    async def _stats(self) -> str:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), timeout=self.timeout
        )
        try:
            writer.write(b"stats\r\n")
            await writer.drain()
            data = await asyncio.wait_for(reader.readuntil(b"END\r\n"), timeout=self.timeout)
            return data.decode(errors="replace")
        finally:
            writer.close()
            await writer.wait_closed()

    async def collect(self) -> List[MetricPoint]:
        if self.closed:
            return []
        try:
            text = await self._stats()
        except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError) as e:
            self.logger.warning(f"memcached stats failed: {e}")
            return [dUp.point(0)]
        return [dUp.point(1)] + stats_to_metrics(parse_stats(text))
