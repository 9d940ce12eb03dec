"""Read-only registry of provisioned tenants.

There is no separate allocation store: the topology document, the routing
document and the ``apps/`` listing are the registry. ``RegistryReader``
scans them once per run and derives a ``TenantIndex`` that is never
persisted, so it cannot drift from the documents it describes.
"""

from dataclasses import dataclass, field, replace
import logging
from pathlib import Path

from tenant_provisioner.adapters.base import DocumentAdapter, DocumentScan
from tenant_provisioner.adapters.routing_document import RoutingDocumentAdapter
from tenant_provisioner.adapters.topology_document import TopologyDocumentAdapter
from tenant_provisioner.config import Settings
from tenant_provisioner.domain.model import TenantEntry
from tenant_provisioner.exceptions import ProvisioningIOError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantIndex:
    """Derived lookup tables over every existing tenant.

    Attributes:
        bound_ports: Ports bound by any service or server block.
        tenant_ports: Ports of tenant entry points (routing service and server blocks).
        cache_namespaces: Redis database indices already assigned.
        topology_names: Tenants with a worker or mount in the topology document.
        routing_names: Tenants with a server block in the routing document.
        directories: Tenant directories present under ``apps/``.
        entries: Merged view of each tenant, keyed by name.
    """

    bound_ports: frozenset[int] = frozenset()
    tenant_ports: frozenset[int] = frozenset()
    cache_namespaces: frozenset[int] = frozenset()
    topology_names: frozenset[str] = frozenset()
    routing_names: frozenset[str] = frozenset()
    directories: frozenset[str] = frozenset()
    entries: dict[str, TenantEntry] = field(default_factory=dict)

    @classmethod
    def build(cls, topology: DocumentScan, routing: DocumentScan, directories: frozenset[str]) -> "TenantIndex":
        entries: dict[str, TenantEntry] = {}
        for name, entry in [*routing.entries.items(), *topology.entries.items()]:
            known = entries.get(name)
            if known is None:
                entries[name] = entry
                continue
            entries[name] = replace(
                known,
                port=known.port if known.port is not None else entry.port,
                cache_namespace=(
                    known.cache_namespace if known.cache_namespace is not None else entry.cache_namespace
                ),
                database_name=known.database_name or entry.database_name,
                has_worker=known.has_worker or entry.has_worker,
                has_route=known.has_route or entry.has_route,
            )
        return cls(
            bound_ports=frozenset(topology.bound_ports | routing.bound_ports),
            tenant_ports=frozenset(topology.tenant_ports | routing.tenant_ports),
            cache_namespaces=frozenset(topology.cache_namespaces | routing.cache_namespaces),
            topology_names=frozenset(topology.entries),
            routing_names=frozenset(routing.entries),
            directories=directories,
            entries=dict(sorted(entries.items())),
        )


class RegistryReader:
    """Scan the configuration documents and the tenant directory listing."""

    def __init__(
        self,
        settings: Settings,
        *,
        topology: DocumentAdapter | None = None,
        routing: DocumentAdapter | None = None,
    ):
        self.settings = settings
        self.topology = topology or TopologyDocumentAdapter()
        self.routing = routing or RoutingDocumentAdapter()

    def load(self) -> TenantIndex:
        topology_scan = self._scan(self.topology, self.settings.topology_path)
        routing_scan = self._scan(self.routing, self.settings.routing_path)
        index = TenantIndex.build(topology_scan, routing_scan, self._directories())
        logger.debug(
            "Registry loaded: %d tenants, ports=%s, namespaces=%s",
            len(index.entries),
            sorted(index.tenant_ports),
            sorted(index.cache_namespaces),
        )
        return index

    def _scan(self, adapter: DocumentAdapter, path: Path) -> DocumentScan:
        try:
            document = adapter.read(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise ProvisioningIOError(f"Cannot read {adapter.label} document {path}: {exc}") from exc
        return adapter.scan(document)

    def _directories(self) -> frozenset[str]:
        apps = self.settings.apps_path
        if not apps.is_dir():
            return frozenset()
        return frozenset(entry.name for entry in apps.iterdir() if entry.is_dir())
