"""Engine -> metric source dispatch"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from ..config import AgentConfig
from .base import MetricSource
from .memcached import MemcachedSource
from .postgres import PostgresSource
from .redis import RedisSource

SourceBuilder = Callable[[str, int, AgentConfig, logging.Logger], Awaitable[Optional[MetricSource]]]


async def _postgres(host: str, port: int, config: AgentConfig, logger: logging.Logger) -> Optional[MetricSource]:
    rds = config.rds
    if not rds.db_user:
        logger.info("no database credentials configured, skipping postgres collector")
        return None
    return await PostgresSource.create(
        host, port, rds.db_user, rds.db_password,
        connect_timeout=rds.db_connect_timeout,
        query_timeout=rds.db_query_timeout,
        scrape_interval=rds.db_scrape_interval,
        logger=logger,
    )


async def _redis(host: str, port: int, config: AgentConfig, logger: logging.Logger) -> Optional[MetricSource]:
    return RedisSource(host, port, connect_timeout=config.elasticache.connect_timeout, logger=logger)


async def _memcached(host: str, port: int, config: AgentConfig, logger: logging.Logger) -> Optional[MetricSource]:
    return MemcachedSource(host, port, timeout=config.elasticache.connect_timeout, logger=logger)


# Registry mapping engine identifiers to source builders
SOURCE_REGISTRY: Dict[str, SourceBuilder] = {
    "postgres": _postgres,
    "aurora-postgresql": _postgres,
    "redis": _redis,
    "valkey": _redis,
    "memcached": _memcached,
}


def source_builder(engine: str) -> Optional[SourceBuilder]:
    """Return the builder for an engine, None for engines without a metric source."""
    return SOURCE_REGISTRY.get((engine or "").lower())


async def build_metric_source(engine: str, host: str, port: int, config: AgentConfig,
                              logger: logging.Logger) -> Optional[MetricSource]:
    """
    Build the metric source for an engine.

    Returns None if the engine is unsupported or construction failed; failures are
    logged and never propagate, the instance then only exposes identity metrics.
    """
    builder = source_builder(engine)
    if builder is None:
        logger.debug(f"no metric source for engine '{engine}'")
        return None
    try:
        return await builder(host, port, config, logger)
    except Exception as e:
        logger.warning(f"failed to init {engine} collector for {host}:{port}: {e}")
        return None
