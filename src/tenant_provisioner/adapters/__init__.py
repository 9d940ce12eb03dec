"""Document adapters for the topology (docker-compose) and routing (nginx) files."""

from tenant_provisioner.adapters.base import DocumentAdapter, DocumentScan
from tenant_provisioner.adapters.routing_document import RoutingDocumentAdapter
from tenant_provisioner.adapters.topology_document import TopologyDocumentAdapter


__all__ = [
    "DocumentAdapter",
    "DocumentScan",
    "RoutingDocumentAdapter",
    "TopologyDocumentAdapter",
]
