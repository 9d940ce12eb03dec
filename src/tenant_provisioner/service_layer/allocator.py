"""Port and cache namespace allocation.

The configuration documents are the allocation ledger. Auto-allocation
returns one past the highest value already in use; explicit values are
checked against the same bounds and the same in-use sets. Allocation never
writes anything, so calling it twice without committing a tenant returns
the same value.
"""

import logging

from tenant_provisioner.config import Settings
from tenant_provisioner.exceptions import ConflictError, OutOfRangeError
from tenant_provisioner.registry import TenantIndex


logger = logging.getLogger(__name__)


class ResourceAllocator:
    """Allocate non-conflicting ports and Redis database indices."""

    def __init__(self, index: TenantIndex, settings: Settings):
        self.index = index
        self.settings = settings

    @property
    def assigned_namespaces(self) -> frozenset[int]:
        return self.index.cache_namespaces | {self.settings.primary_cache_namespace}

    def next_port(self) -> int:
        """Return one past the highest tenant port inside the allocation window."""
        floor, ceiling = self.settings.port_floor, self.settings.port_ceiling
        candidates = [port for port in self.index.tenant_ports if floor < port < ceiling]
        return max(candidates, default=floor) + 1

    def next_cache_namespace(self) -> int:
        return max(self.assigned_namespaces) + 1

    def allocate_port(self, explicit: int | None = None) -> int:
        """Return ``explicit`` after validation, or the next free port.

        Raises:
            OutOfRangeError: Port outside ``[min_port, max_port]``.
            ConflictError: Port already bound by another service or tenant.
        """
        port = self.next_port() if explicit is None else explicit
        if not self.settings.min_port <= port <= self.settings.max_port:
            raise OutOfRangeError(
                f"Port must be between {self.settings.min_port} and {self.settings.max_port}: {port}"
            )
        if port in self.index.bound_ports:
            raise ConflictError(f"Port {port} is already in use")
        logger.info("%s port: %d", "Using explicit" if explicit is not None else "Auto-detected", port)
        return port

    def allocate_cache_namespace(self, explicit: int | None = None) -> int:
        """Return ``explicit`` after validation, or the next free Redis database index.

        Raises:
            OutOfRangeError: Index outside ``[0, max_cache_namespace]``.
            ConflictError: Index already assigned to an existing tenant.
        """
        namespace = self.next_cache_namespace() if explicit is None else explicit
        if not 0 <= namespace <= self.settings.max_cache_namespace:
            raise OutOfRangeError(
                f"Redis DB must be between 0 and {self.settings.max_cache_namespace}: {namespace}"
            )
        if namespace in self.assigned_namespaces:
            raise ConflictError(f"Redis DB {namespace} is already in use")
        logger.info(
            "%s Redis DB: %d", "Using explicit" if explicit is not None else "Auto-detected", namespace
        )
        return namespace
