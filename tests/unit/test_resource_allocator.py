"""Unit tests for port and Redis database allocation."""

import pytest

from tenant_provisioner.config import Settings
from tenant_provisioner.exceptions import ConflictError, OutOfRangeError
from tenant_provisioner.registry import RegistryReader, TenantIndex
from tenant_provisioner.service_layer.allocator import ResourceAllocator


@pytest.fixture
def allocator(settings: Settings) -> ResourceAllocator:
    return ResourceAllocator(RegistryReader(settings).load(), settings)


def _allocator(**index_fields) -> ResourceAllocator:
    fields = {key: frozenset(value) for key, value in index_fields.items()}
    return ResourceAllocator(TenantIndex(**fields), Settings())


@pytest.mark.unit
class TestPortAllocation:
    """Automatic and explicit ports."""

    def test_next_port_after_highest_tenant_port(self, allocator: ResourceAllocator):
        assert allocator.allocate_port() == 8082

    def test_allocation_is_idempotent(self, allocator: ResourceAllocator):
        assert allocator.allocate_port() == allocator.allocate_port()

    def test_only_primary_instance_starts_at_floor(self):
        assert _allocator(tenant_ports={80}, bound_ports={80}).allocate_port() == 8081

    def test_ports_outside_window_do_not_drive_allocation(self):
        allocator = _allocator(tenant_ports={80, 8081, 9000, 9443}, bound_ports={80, 8081, 9000, 9443})

        assert allocator.allocate_port() == 8082

    def test_explicit_port(self, allocator: ResourceAllocator):
        assert allocator.allocate_port(8085) == 8085

    def test_explicit_port_conflict(self, allocator: ResourceAllocator):
        with pytest.raises(ConflictError) as excinfo:
            allocator.allocate_port(8081)

        assert excinfo.value.code == "conflict"

    def test_explicit_port_conflicts_with_infrastructure(self, allocator: ResourceAllocator):
        with pytest.raises(ConflictError):
            allocator.allocate_port(6379)

    @pytest.mark.parametrize("port", [0, 80, 1023, 65536, 70000])
    def test_explicit_port_out_of_range(self, allocator: ResourceAllocator, port: int):
        with pytest.raises(OutOfRangeError):
            allocator.allocate_port(port)

    def test_boundaries_are_inclusive(self, allocator: ResourceAllocator):
        assert allocator.allocate_port(1024) == 1024
        assert allocator.allocate_port(65535) == 65535


@pytest.mark.unit
class TestCacheNamespaceAllocation:
    """Automatic and explicit Redis database indices."""

    def test_next_namespace_after_highest(self, allocator: ResourceAllocator):
        assert allocator.allocate_cache_namespace() == 2

    def test_primary_namespace_always_assigned(self):
        allocator = _allocator()

        assert allocator.allocate_cache_namespace() == 1
        with pytest.raises(ConflictError):
            allocator.allocate_cache_namespace(0)

    def test_explicit_namespace(self, allocator: ResourceAllocator):
        assert allocator.allocate_cache_namespace(5) == 5

    def test_explicit_namespace_conflict(self, allocator: ResourceAllocator):
        with pytest.raises(ConflictError):
            allocator.allocate_cache_namespace(1)

    @pytest.mark.parametrize("namespace", [-1, 16, 99])
    def test_explicit_namespace_out_of_range(self, allocator: ResourceAllocator, namespace: int):
        with pytest.raises(OutOfRangeError):
            allocator.allocate_cache_namespace(namespace)

    def test_exhausted_namespaces(self):
        allocator = _allocator(cache_namespaces=range(16))

        with pytest.raises(OutOfRangeError) as excinfo:
            allocator.allocate_cache_namespace()

        assert excinfo.value.code == "out_of_range"

    def test_gaps_are_not_reused(self):
        assert _allocator(cache_namespaces={0, 4}).allocate_cache_namespace() == 5
