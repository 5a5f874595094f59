"""PostgreSQL metric source.

Queries pg_stat_activity and pg_stat_database through psycopg2. The driver is
blocking, so every round trip runs in the default executor. Results are cached
for db_scrape_interval so frequent scrapes do not hammer the database.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

import psycopg2

from .base import MetricPoint, MetricSource, counter, gauge

dUp = gauge("pg_up", "Whether the last query round trip to PostgreSQL succeeded")
dInfo = gauge("pg_info", "PostgreSQL server info", "server_version")
dConnections = gauge("pg_connections", "Number of client connections by state", "state")
dDbSize = gauge("pg_database_size_bytes", "Disk space used by the database", "db")
dCommits = counter("pg_xact_commit_total", "Number of committed transactions", "db")
dRollbacks = counter("pg_xact_rollback_total", "Number of rolled back transactions", "db")

CONNECTIONS_QUERY = """
    SELECT coalesce(state, 'unknown'), count(*)
    FROM pg_stat_activity
    WHERE backend_type = 'client backend'
    GROUP BY 1
"""

DATABASES_QUERY = """
    SELECT datname, pg_database_size(datname), xact_commit, xact_rollback
    FROM pg_stat_database
    WHERE datname IS NOT NULL AND datname NOT LIKE 'template%'
"""


class PostgresSource(MetricSource):
    """Collects server-level metrics from one PostgreSQL endpoint."""

    def __init__(self, host: str, port: int, user: str, password: str,
                 connect_timeout: float = 1.0, query_timeout: float = 30.0,
                 scrape_interval: float = 30.0, logger: Optional[logging.Logger] = None,
                 connect: Callable = psycopg2.connect):
        super().__init__("postgres", logger or logging.getLogger("awsmon.metrics.postgres"))
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.connect_timeout = max(1, int(connect_timeout))
        self.statement_timeout_ms = int(query_timeout * 1000)
        self.scrape_interval = scrape_interval
        self._connect = connect
        self._conn = None
        self._lock = asyncio.Lock()
        self._cached: List[MetricPoint] = []
        self._cached_at = 0.0

    @classmethod
    async def create(cls, *args, **kwargs) -> "PostgresSource":
        """Build the source and open its connection; raises if the server is unreachable."""
        source = cls(*args, **kwargs)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, source._ensure_connection)
        source.logger.info(f"started postgres collector: {source.host}:{source.port}")
        return source

    def _ensure_connection(self):
        if self._conn is None or self._conn.closed:
            self._conn = self._connect(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                dbname="postgres",
                connect_timeout=self.connect_timeout,
                options=f"-c statement_timeout={self.statement_timeout_ms}",
                application_name="awsmon",
            )
            self._conn.autocommit = True
        return self._conn

    def _query(self) -> List[MetricPoint]:
        conn = self._ensure_connection()
        metrics: List[MetricPoint] = []
        with conn.cursor() as cur:
            cur.execute("SHOW server_version")
            metrics.append(dInfo.point(1, cur.fetchone()[0]))

            cur.execute(CONNECTIONS_QUERY)
            for state, count in cur.fetchall():
                metrics.append(dConnections.point(count, state))

            cur.execute(DATABASES_QUERY)
            for db, size, commits, rollbacks in cur.fetchall():
                metrics.extend([
                    dDbSize.point(size, db),
                    dCommits.point(commits, db),
                    dRollbacks.point(rollbacks, db),
                ])
        return metrics

    def _reset(self):
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error:
                pass
            self._conn = None

    async def collect(self) -> List[MetricPoint]:
        if self.closed:
            return []
        async with self._lock:
            if self._cached and time.time() - self._cached_at < self.scrape_interval:
                return list(self._cached)

            loop = asyncio.get_running_loop()
            try:
                metrics = await loop.run_in_executor(None, self._query)
            except psycopg2.Error as e:
                self.logger.warning(f"postgres query failed: {e}")
                # next round trip reconnects
                await loop.run_in_executor(None, self._reset)
                self._cached = []
                return [dUp.point(0)]

            self._cached = [dUp.point(1)] + metrics
            self._cached_at = time.time()
            return list(self._cached)

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        async with self._lock:
            await asyncio.get_running_loop().run_in_executor(None, self._reset)
