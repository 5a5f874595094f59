"""Unit tests for metric sources

Tests the engine dispatch and the PostgreSQL, Redis, Memcached and
Enhanced Monitoring sources against fake servers and clients.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg2
import pytest
from botocore.exceptions import ClientError
from redis.exceptions import ConnectionError as RedisConnectionError

from awsmon.metrics import (
    EnhancedMonitoring, MemcachedSource, PostgresSource, RedisSource, build_metric_source, source_builder,
)
from awsmon.metrics.enhanced import parse_os_metrics
from awsmon.metrics.memcached import parse_stats, stats_to_metrics
from awsmon.metrics.redis import parse_info


def values(points):
    return {(p.name, tuple(sorted(p.labels.items()))): p.value for p in points}


def names(points):
    return {p.name for p in points}


class TestDispatch:
    """Test engine -> source selection"""

    @pytest.mark.parametrize("engine", ["postgres", "aurora-postgresql", "redis", "valkey", "memcached", "Redis"])
    def test_supported_engines(self, engine):
        assert source_builder(engine) is not None

    @pytest.mark.parametrize("engine", ["mysql", "oracle-ee", "", None])
    def test_unsupported_engines(self, engine):
        assert source_builder(engine) is None

    @pytest.mark.asyncio
    async def test_unknown_engine_builds_nothing(self, config):
        assert await build_metric_source("sqlserver-ex", "h", 1433, config, MagicMock()) is None

    @pytest.mark.asyncio
    async def test_postgres_without_credentials_is_skipped(self, config):
        assert await build_metric_source("postgres", "h", 5432, config, MagicMock()) is None

    @pytest.mark.asyncio
    async def test_construction_failure_yields_no_source(self, config):
        config.rds.db_user = "monitor"
        with patch.object(PostgresSource, "create", AsyncMock(side_effect=psycopg2.OperationalError("refused"))):
            assert await build_metric_source("postgres", "h", 5432, config, MagicMock()) is None

    @pytest.mark.asyncio
    async def test_redis_source(self, config):
        source = await build_metric_source("redis", "cache.internal", 6379, config, MagicMock())
        assert isinstance(source, RedisSource)
        await source.close()

    @pytest.mark.asyncio
    async def test_memcached_source(self, config):
        source = await build_metric_source("memcached", "mc.internal", 11211, config, MagicMock())
        assert isinstance(source, MemcachedSource)
        assert source.timeout == config.elasticache.connect_timeout


class TestPostgresSource:
    """Test PostgreSQL collection through a fake psycopg2 connection"""

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        conn.closed = 0
        cur = conn.cursor.return_value.__enter__.return_value
        cur.fetchone.return_value = ("15.4",)
        cur.fetchall.side_effect = [
            [("active", 3), ("idle", 7)],
            [("orders", 1048576, 1200, 4)],
        ]
        return conn

    @pytest.fixture
    def connect(self, conn):
        return MagicMock(return_value=conn)

    @pytest.mark.asyncio
    async def test_create_connects_with_timeouts(self, connect):
        await PostgresSource.create("db.internal", 5432, "monitor", "secret",
                                    connect_timeout=1, query_timeout=30, connect=connect)

        kwargs = connect.call_args.kwargs
        assert kwargs["host"] == "db.internal"
        assert kwargs["connect_timeout"] == 1
        assert kwargs["options"] == "-c statement_timeout=30000"

    @pytest.mark.asyncio
    async def test_collect(self, connect):
        source = await PostgresSource.create("db.internal", 5432, "monitor", "secret", connect=connect)

        points = values(await source.collect())

        assert points[("pg_up", ())] == 1
        assert points[("pg_info", (("server_version", "15.4"),))] == 1
        assert points[("pg_connections", (("state", "idle"),))] == 7
        assert points[("pg_database_size_bytes", (("db", "orders"),))] == 1048576
        assert points[("pg_xact_commit_total", (("db", "orders"),))] == 1200
        assert points[("pg_xact_rollback_total", (("db", "orders"),))] == 4

    @pytest.mark.asyncio
    async def test_results_are_cached_within_scrape_interval(self, connect, conn):
        source = await PostgresSource.create("db.internal", 5432, "monitor", "secret",
                                             scrape_interval=60, connect=connect)

        first = await source.collect()
        second = await source.collect()

        assert values(first) == values(second)
        assert conn.cursor.call_count == 1

    @pytest.mark.asyncio
    async def test_query_failure_reports_down_and_reconnects(self, connect, conn):
        source = await PostgresSource.create("db.internal", 5432, "monitor", "secret", connect=connect)
        conn.cursor.return_value.__enter__.return_value.execute.side_effect = psycopg2.OperationalError("gone")

        points = await source.collect()

        assert values(points) == {("pg_up", ()): 0}
        conn.close.assert_called_once()
        assert source._conn is None

    @pytest.mark.asyncio
    async def test_close(self, connect, conn):
        source = await PostgresSource.create("db.internal", 5432, "monitor", "secret", connect=connect)

        await source.close()
        await source.close()

        conn.close.assert_called_once()
        assert await source.safe_collect() == []


class TestRedisSource:
    """Test INFO based collection"""

    INFO = {
        "redis_version": "7.1.0",
        "role": "master",
        "uptime_in_seconds": 3600,
        "connected_clients": 12,
        "used_memory": 1024,
        "keyspace_hits": 90,
        "keyspace_misses": 10,
        "db0": {"keys": 100, "expires": 5, "avg_ttl": 0},
    }

    def test_parse_info(self):
        points = values(parse_info(self.INFO))

        assert points[("redis_instance_info", (("redis_version", "7.1.0"), ("role", "master")))] == 1
        assert points[("redis_connected_clients", ())] == 12
        assert points[("redis_keyspace_hits_total", ())] == 90
        assert points[("redis_db_keys", (("db", "db0"),))] == 100
        assert points[("redis_db_keys_expiring", (("db", "db0"),))] == 5

    @pytest.mark.asyncio
    async def test_collect(self):
        client = MagicMock()
        client.info = AsyncMock(return_value=self.INFO)
        source = RedisSource("cache.internal", 6379, client=client)

        points = values(await source.collect())

        assert points[("redis_up", ())] == 1
        assert ("redis_memory_used_bytes", ()) in points

    @pytest.mark.asyncio
    async def test_unreachable(self):
        client = MagicMock()
        client.info = AsyncMock(side_effect=RedisConnectionError("refused"))
        source = RedisSource("cache.internal", 6379, client=client)

        assert values(await source.collect()) == {("redis_up", ()): 0}

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        source = RedisSource("cache.internal", 6379, client=client)

        await source.close()
        await source.close()

        client.aclose.assert_awaited_once()


STATS = (
    "STAT pid 1\r\n"
    "STAT uptime 500\r\n"
    "STAT version 1.6.21\r\n"
    "STAT curr_connections 10\r\n"
    "STAT curr_items 42\r\n"
    "STAT get_hits 7\r\n"
    "STAT limit_maxbytes 67108864\r\n"
    "END\r\n"
)


class TestMemcachedSource:
    """Test the stats text protocol"""

    def test_parse_stats(self):
        stats = parse_stats(STATS)
        assert stats["version"] == "1.6.21"
        assert stats["curr_items"] == "42"

        points = values(stats_to_metrics(stats))
        assert points[("memcached_version", (("version", "1.6.21"),))] == 1
        assert points[("memcached_current_items", ())] == 42
        assert points[("memcached_get_hits_total", ())] == 7
        assert ("memcached_get_misses_total", ()) not in points

    @pytest.mark.asyncio
    async def test_collect_from_server(self):
        async def handle(reader, writer):
            command = await reader.readline()
            if command == b"stats\r\n":
                writer.write(STATS.encode())
                await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            source = MemcachedSource("127.0.0.1", port, timeout=1)
            points = values(await source.collect())
        finally:
            server.close()
            await server.wait_closed()

        assert points[("memcached_up", ())] == 1
        assert points[("memcached_uptime_seconds", ())] == 500

    @pytest.mark.asyncio
    async def test_unreachable(self):
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        source = MemcachedSource("127.0.0.1", port, timeout=1)

        assert values(await source.collect()) == {("memcached_up", ()): 0}


SAMPLE = {
    "engine": "POSTGRES",
    "numVCPUs": 2,
    "cpuUtilization": {"user": 10.5, "system": 2.0, "wait": 0.5},
    "memory": {"total": 8000000, "cached": 2000000, "free": 1000000},
    "physicalDeviceIO": [
        {"device": "nvme0n1", "readIOsPS": 5, "writeIOsPS": 10, "readKbPS": 40, "writeKbPS": 80,
         "await": 2.5, "util": 3.0},
    ],
    "diskIO": [{"readIOsPS": 1, "writeIOsPS": 2, "readLatency": 0.5, "writeLatency": 1.5}],
    "fileSys": [{"mountPoint": "/rdsdbdata", "total": 100000, "used": 25000}],
    "network": [{"interface": "eth0", "rx": 1500.0, "tx": 900.0}],
}


class TestEnhancedMonitoring:
    """Test RDSOSMetrics sample parsing"""

    def test_parse_os_metrics(self):
        points = values(parse_os_metrics(SAMPLE))

        assert points[("aws_rds_cpu_cores", ())] == 2
        assert points[("aws_rds_cpu_usage_percent", (("mode", "user"),))] == 10.5
        assert points[("aws_rds_memory_total_bytes", ())] == 8000000 * 1000
        assert points[("aws_rds_io_bytes_per_second", (("device", "nvme0n1"), ("operation", "read")))] == 40000
        assert points[("aws_rds_io_await_seconds", (("device", "nvme0n1"),))] == 0.0025
        assert points[("aws_rds_io_ops_per_second", (("device", "aurora-data"), ("operation", "write")))] == 2
        assert points[("aws_rds_io_latency_seconds", (("device", "aurora-data"), ("operation", "read")))] == 0.0005
        assert points[("aws_rds_fs_used_bytes", (("mount_point", "/rdsdbdata"),))] == 25000000
        assert points[("aws_rds_net_rx_bytes_per_second", (("interface", "eth0"),))] == 1500.0

    @pytest.mark.asyncio
    async def test_collect_reads_latest_event(self):
        logs_api = MagicMock()
        logs_api.get_log_events.return_value = {"events": [{"message": json.dumps(SAMPLE)}]}

        points = await EnhancedMonitoring(logs_api).collect("db-ABCDEF")

        assert "aws_rds_cpu_cores" in names(points)
        logs_api.get_log_events.assert_called_once_with(
            logGroupName="RDSOSMetrics", logStreamName="db-ABCDEF", limit=1, startFromHead=False,
        )

    @pytest.mark.asyncio
    async def test_no_sample_is_not_an_error(self):
        logs_api = MagicMock()
        logs_api.get_log_events.return_value = {"events": []}

        assert await EnhancedMonitoring(logs_api).collect("db-ABCDEF") == []

    @pytest.mark.asyncio
    async def test_api_error_yields_nothing(self):
        logs_api = MagicMock()
        logs_api.get_log_events.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "no stream"}}, "GetLogEvents",
        )

        assert await EnhancedMonitoring(logs_api).collect("db-ABCDEF") == []
