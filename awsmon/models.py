from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    Snapshot of one discovered instance for one reconciliation cycle.

    Descriptors are rebuilt from the API response on every cycle and never
    edited. `id` identifies the instance across cycles; the endpoint
    (host, port) decides whether its collaborators must be restarted.
    """
    id: str
    engine: str
    endpoint_host: str
    endpoint_port: int
    status: str = ""
    engine_version: str = ""
    instance_class: str = ""
    availability_zone: str = ""
    arn: str = ""
    # None means tags were not part of the listing and must be looked up
    tags: Optional[Mapping[str, str]] = field(default=None, compare=False, hash=False)
    # raw API record, engine specific display attributes
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def endpoint(self) -> Tuple[str, int]:
        return self.endpoint_host, self.endpoint_port
