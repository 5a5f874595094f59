"""Fleet reconciliation.

A Discoverer periodically lists the instances of one resource family, applies
the tag filters and brings the set of tracked collectors in line with it:

- new ids get a collector, which is registered before it becomes tracked;
- known ids get the fresh descriptor (the collector decides whether to restart);
- vanished ids are unregistered first, then closed, then forgotten.

Only the discoverer's own loop touches `instances`.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Protocol

from ..collectors import InstanceCollector
from ..errors import DiscoveryError, RegistrationError
from ..models import ResourceDescriptor
from ..registry import InstanceRegistry
from ..utils import filtered


class DiscoveryApi(Protocol):
    def list_instances(self) -> List[ResourceDescriptor]:
        """Return all instances, pagination flattened. Raises DiscoveryError."""

    def list_tags(self, descriptor: ResourceDescriptor) -> Dict[str, str]:
        """Return the tags of one instance. Raises DiscoveryError."""


CollectorFactory = Callable[[ResourceDescriptor], InstanceCollector]


class Discoverer:
    """Keeps one InstanceCollector per discovered instance of a resource family."""

    def __init__(self, name: str, api: DiscoveryApi, registry: InstanceRegistry,
                 collector_factory: CollectorFactory, interval: float,
                 filters: Optional[Mapping[str, str]] = None,
                 logger: Optional[logging.Logger] = None):
        self.name = name
        self.api = api
        self.registry = registry
        self.collector_factory = collector_factory
        self.interval = interval
        self.filters = dict(filters or {})
        self.logger = logger or logging.getLogger(f"awsmon.discovery.{name}")
        self.instances: Dict[str, InstanceCollector] = {}
        self._stop = asyncio.Event()

    # ---------- loop ----------

    async def run(self) -> None:
        """Reconcile now, then again `interval` seconds after each cycle completes."""
        while not self._stop.is_set():
            try:
                await self.refresh()
            except Exception as e:
                self.logger.exception(f"{self.name} reconciliation failed: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop.set()

    async def shutdown(self) -> None:
        """Stop the loop and release every tracked instance."""
        self.stop()
        for instance_id in list(self.instances):
            await self._remove(instance_id)

    # ---------- one cycle ----------

    def _fetch(self) -> List[ResourceDescriptor]:
        """List instances and drop the ones excluded by tag filters (blocking)."""
        result = []
        # nodes of one cache cluster share its ARN, tags are looked up once per resource
        tags_by_resource: Dict[str, Dict[str, str]] = {}
        for descriptor in self.api.list_instances():
            tags = descriptor.tags
            if tags is None and self.filters:
                resource = descriptor.arn or descriptor.id
                tags = tags_by_resource.get(resource)
                if tags is None:
                    try:
                        tags = self.api.list_tags(descriptor)
                    except DiscoveryError as e:
                        self.logger.error(f"failed to list tags of {descriptor.id}: {e}")
                        tags = {}
                    tags_by_resource[resource] = tags
                descriptor = dataclasses.replace(descriptor, tags=tags)
            if filtered(self.filters, tags):
                self.logger.info(
                    f"instance {descriptor.id} (tags: {dict(tags or {})}) was skipped "
                    f"according to the tag-based filters: {self.filters}"
                )
                continue
            result.append(descriptor)
        return result

    async def refresh(self) -> bool:
        """
        Run one reconciliation cycle.

        Returns:
            False if discovery failed and nothing was changed, True otherwise
        """
        started = time.time()
        loop = asyncio.get_running_loop()
        try:
            descriptors = await loop.run_in_executor(None, self._fetch)
        except DiscoveryError as e:
            self.logger.warning(f"{self.name} discovery failed: {e}")
            return False

        current = {d.id: d for d in descriptors}
        added = [i for i in current if i not in self.instances]
        kept = [i for i in current if i in self.instances]
        removed = [i for i in self.instances if i not in current]

        for instance_id in added:
            await self._add(current[instance_id])
        for instance_id in kept:
            await self._update(current[instance_id])
        for instance_id in removed:
            self.logger.info(f"{self.name} instance no longer exists: {instance_id}")
            await self._remove(instance_id)

        self.logger.info(f"{self.name} instances refreshed in {time.time() - started:.2f}s "
                         f"({len(self.instances)} tracked)")
        return True

    async def _add(self, descriptor: ResourceDescriptor) -> None:
        self.logger.info(f"new {self.name} instance found: {descriptor.id}")
        try:
            collector = self.collector_factory(descriptor)
        except Exception as e:
            self.logger.warning(f"failed to init {self.name} collector for {descriptor.id}: {e}")
            return
        try:
            await collector.start()
        except Exception as e:
            self.logger.warning(f"failed to start {self.name} collector for {descriptor.id}: {e}")
            await self._close(descriptor.id, collector)
            return
        try:
            self.registry.register(descriptor.id, collector)
        except RegistrationError as e:
            self.logger.warning(str(e))
            await self._close(descriptor.id, collector)
            return
        self.instances[descriptor.id] = collector

    async def _update(self, descriptor: ResourceDescriptor) -> None:
        try:
            await self.instances[descriptor.id].update(descriptor)
        except Exception as e:
            self.logger.warning(f"failed to update {self.name} collector for {descriptor.id}: {e}")

    async def _remove(self, instance_id: str) -> None:
        collector = self.instances[instance_id]
        # unregister first so no scrape sees a half-closed collector
        if not self.registry.unregister(instance_id, collector):
            self.logger.warning(f"{instance_id} was not registered")
        await self._close(instance_id, collector)
        del self.instances[instance_id]

    async def _close(self, instance_id: str, collector: InstanceCollector) -> None:
        try:
            await collector.close()
        except Exception as e:
            self.logger.warning(f"failed to close collector for {instance_id}: {e}")
