"""Per-instance collector lifecycle.

An InstanceCollector owns everything attached to one tracked instance: the
engine metric source, the log tailer with its parser and, for engines that
have one, the host-metrics reader. Collaborators are bound to the endpoint
they were built for; when the endpoint moves they are closed and rebuilt,
never patched in place.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

from ..config import AgentConfig
from ..errors import CollectorInitError
from ..logs import LogParser, LogSource, LogTailer
from ..metrics import MetricDesc, MetricPoint, MetricSource, build_metric_source
from ..models import ResourceDescriptor
from ..utils import resolve_ip

SourceFactory = Callable[[str, str, int, AgentConfig, logging.Logger], Awaitable[Optional[MetricSource]]]

# how long a stopping log tailer may take to finish its in-flight pass
TAILER_STOP_TIMEOUT = 5.0


class InstanceCollector(ABC):
    """Base class for the collector of one discovered instance."""

    # counter the parsed log patterns are exported under, None if logs are not tailed
    log_messages_desc: Optional[MetricDesc] = None

    def __init__(self, descriptor: ResourceDescriptor, region: str, config: AgentConfig,
                 source_factory: SourceFactory = build_metric_source,
                 logger: Optional[logging.Logger] = None):
        if not descriptor.endpoint_host:
            raise CollectorInitError(f"endpoint is not defined for {descriptor.id}")
        self.descriptor = descriptor
        self.region = region
        self.config = config
        self.source_factory = source_factory
        self.logger = logger or logging.getLogger(f"awsmon.collector.{descriptor.id}")

        self.metric_source: Optional[MetricSource] = None
        self.log_tailer: Optional[LogTailer] = None
        self.log_parser: Optional[LogParser] = None
        self.restarts = 0
        self.closed = False

    # ---------- lifecycle ----------

    async def start(self) -> None:
        """Build the collaborators for the current endpoint."""
        d = self.descriptor
        self.metric_source = await self.source_factory(
            d.engine, d.endpoint_host, d.endpoint_port, self.config, self.logger
        )
        self._start_log_collector()

    async def update(self, descriptor: ResourceDescriptor) -> None:
        """
        Apply the descriptor observed in the latest cycle.

        Collaborators are rebuilt only when (host, port) changed; any other
        attribute change is picked up by simply storing the new descriptor.
        """
        if descriptor.endpoint != self.descriptor.endpoint:
            self.logger.info(
                f"endpoint changed {self.descriptor.endpoint_host}:{self.descriptor.endpoint_port} -> "
                f"{descriptor.endpoint_host}:{descriptor.endpoint_port}, restarting collectors"
            )
            await self._stop_collaborators()
            self.descriptor = descriptor
            await self.start()
            self.restarts += 1
        self.descriptor = descriptor

    async def close(self) -> None:
        """Close the metric source and stop log tailing. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        await self._stop_collaborators()

    def _start_log_collector(self) -> None:
        interval = self.logs_interval()
        if interval <= 0:
            return
        source = self.log_source()
        if source is None:
            return
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.log_queue_size)
        self.log_parser = LogParser(queue, logger=self.logger.getChild("logparser"))
        self.log_tailer = LogTailer(source, self.descriptor.id, queue, interval,
                                    logger=self.logger.getChild("logs"))
        self.log_parser.start()
        self.log_tailer.start()

    async def _stop_collaborators(self) -> None:
        source, self.metric_source = self.metric_source, None
        tailer, self.log_tailer = self.log_tailer, None
        parser, self.log_parser = self.log_parser, None

        if tailer is not None:
            tailer.stop()
        if parser is not None:
            await parser.stop()
        if source is not None:
            try:
                await source.close()
            except Exception as e:
                self.logger.warning(f"failed to close {source.name} collector: {e}")
        if tailer is not None:
            await tailer.wait_stopped(TAILER_STOP_TIMEOUT)

    # ---------- hooks ----------

    def logs_interval(self) -> float:
        """Log scrape interval for this family, 0 when logs are not tailed."""
        return 0

    def log_source(self) -> Optional[LogSource]:
        """Log source for the instance, None if the engine has no tailable logs."""
        return None

    def has_host_metrics(self, descriptor: ResourceDescriptor) -> bool:
        return False

    async def host_metrics(self, descriptor: ResourceDescriptor) -> List[MetricPoint]:
        return []

    @abstractmethod
    def descriptor_points(self, descriptor: ResourceDescriptor, ip: str) -> List[MetricPoint]:
        """Identity, status and capacity metrics read off the descriptor."""

    # ---------- collection ----------

    async def _timed(self, what: str, job: Awaitable[List[MetricPoint]]) -> List[MetricPoint]:
        started = time.time()
        try:
            return await job
        except Exception as e:
            self.logger.warning(f"{what} metrics collection failed: {e}")
            return []
        finally:
            self.logger.debug(f"{what} metrics collected in {time.time() - started:.2f}s")

    async def collect(self) -> List[MetricPoint]:
        descriptor = self.descriptor
        source = self.metric_source
        parser = self.log_parser
        loop = asyncio.get_running_loop()

        jobs = [loop.run_in_executor(None, resolve_ip, descriptor.endpoint_host)]
        if source is not None:
            jobs.append(self._timed(source.name, source.safe_collect()))
        if self.has_host_metrics(descriptor):
            jobs.append(self._timed("os", self.host_metrics(descriptor)))
        ip, *results = await asyncio.gather(*jobs)

        metrics = self.descriptor_points(descriptor, ip)
        for result in results:
            metrics.extend(result)

        if parser is not None and self.log_messages_desc is not None:
            for c in parser.get_counters():
                metrics.append(self.log_messages_desc.point(c.messages, c.level, c.hash, c.sample))
        return metrics
