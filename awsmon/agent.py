#!/usr/bin/env python3
"""
awsmon agent - discovers RDS and ElastiCache instances and serves their metrics

Run: awsmon --aws-region us-east-1 [--config config.yaml]
"""

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import boto3
import uvicorn
from botocore.config import Config as BotoConfig
from dotenv import load_dotenv
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge

from . import __version__
from .collectors import ElasticacheCollector, RdsCollector
from .config import AgentConfig
from .discovery import Discoverer, ElasticacheApi, RdsApi
from .errors import ConfigError
from .registry import InstanceRegistry, render

logger = logging.getLogger("awsmon")

# time given to in-flight reconciliation cycles before they are cancelled on shutdown
STOP_TIMEOUT = 10.0


class Agent:
    """Owns the AWS clients, the per-family discoverers and their registries."""

    def __init__(self, config: AgentConfig, session=None):
        self.config = config
        self.session = session or boto3.session.Session(region_name=config.aws_region)
        self.rds_registry = InstanceRegistry("rds_instance_id", config.aws_region,
                                             logger=logging.getLogger("awsmon.registry.rds"))
        self.ec_registry = InstanceRegistry("ec_instance_id", config.aws_region,
                                            logger=logging.getLogger("awsmon.registry.elasticache"))
        self.discoverers: List[Discoverer] = []
        self._tasks: List[asyncio.Task] = []

        self.static_registry = CollectorRegistry()
        info = Gauge("aws_agent_info", "Agent info", ["version"], registry=self.static_registry)
        info.labels(version=__version__).set(1)

    def _client(self, service: str):
        cfg = BotoConfig(
            connect_timeout=self.config.aws_connect_timeout,
            read_timeout=self.config.aws_read_timeout,
            retries={"max_attempts": self.config.aws_max_attempts, "mode": "standard"},
        )
        return self.session.client(service, region_name=self.config.aws_region, config=cfg)

    def build_discoverers(self) -> List[Discoverer]:
        config = self.config
        region = config.aws_region
        discoverers = []

        if config.rds.enabled:
            rds_api = self._client("rds")
            logs_api = self._client("logs")

            def rds_collector(descriptor):
                return RdsCollector(descriptor, region, config, rds_api=rds_api, logs_api=logs_api)

            discoverers.append(Discoverer("rds", RdsApi(rds_api), self.rds_registry, rds_collector,
                                          config.discovery_interval, config.rds.filters))

        if config.elasticache.enabled:
            ec_api = self._client("elasticache")

            def ec_collector(descriptor):
                return ElasticacheCollector(descriptor, region, config)

            discoverers.append(Discoverer("elasticache", ElasticacheApi(ec_api), self.ec_registry,
                                          ec_collector, config.discovery_interval,
                                          config.elasticache.filters))
        return discoverers

    async def start(self) -> None:
        self.discoverers = self.build_discoverers()
        self._tasks = [asyncio.create_task(d.run()) for d in self.discoverers]
        logger.info(f"awsmon {__version__} started: region={self.config.aws_region}, "
                    f"families={[d.name for d in self.discoverers]}")

    async def stop(self) -> None:
        for d in self.discoverers:
            d.stop()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=STOP_TIMEOUT)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        for d in self.discoverers:
            await d.shutdown()
        self._tasks = []
        logger.info("awsmon stopped")

    async def scrape(self) -> bytes:
        rds_points, ec_points = await asyncio.gather(self.rds_registry.collect(), self.ec_registry.collect())
        return render(rds_points + ec_points, self.static_registry)


def create_app(agent: Agent) -> FastAPI:
    """Create the FastAPI app serving `agent` metrics; the agent runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await agent.start()
        try:
            yield
        finally:
            await agent.stop()

    app = FastAPI(title="awsmon", version=__version__, lifespan=lifespan)
    app.state.agent = agent

    @app.get("/metrics")
    async def metrics():
        return Response(content=await agent.scrape(), media_type=CONTENT_TYPE_LATEST)

    return app


def parse_listen_address(address: str):
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"invalid listen address: {address}")
    return host or "0.0.0.0", int(port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="awsmon - AWS RDS and ElastiCache metrics agent")
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--aws-region", help="AWS region (env AWS_REGION)")
    parser.add_argument("--listen-address", help="Listen address host:port (env LISTEN_ADDRESS)")
    parser.add_argument("--discovery-interval", type=float, help="Discovery interval in seconds")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def load_config(argv: Optional[List[str]] = None) -> AgentConfig:
    args = build_parser().parse_args(argv)
    return (AgentConfig.from_file(Path(args.config))
            .override_with_env()
            .override_with_args(args)
            .validate())


def main(argv: Optional[List[str]] = None):
    """Main entry point for the awsmon agent."""
    load_dotenv()
    try:
        config = load_config(argv)
        host, port = parse_listen_address(config.listen_address)
    except ConfigError as e:
        raise SystemExit(f"awsmon: {e}")

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug(f"config: {config.redacted()}")

    app = create_app(Agent(config))
    uvicorn.run(app, host=host, port=port, access_log=False)


if __name__ == "__main__":
    main()
