"""Adapter contract shared by the topology and routing documents."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path

from tenant_provisioner.domain.documents import Anchor, Block, BlockDocument, read_text_exact
from tenant_provisioner.domain.model import Tenant, TenantEntry


@dataclass(slots=True)
class DocumentScan:
    """Identifiers found in one document.

    Attributes:
        bound_ports: Every port number appearing in a binding.
        tenant_ports: Ports that belong to tenant entry points.
        cache_namespaces: Redis database indices assigned to tenants.
        entries: Tenants recorded in the document, keyed by name.
    """

    bound_ports: set[int] = field(default_factory=set)
    tenant_ports: set[int] = field(default_factory=set)
    cache_namespaces: set[int] = field(default_factory=set)
    entries: dict[str, TenantEntry] = field(default_factory=dict)

    def record(self, name: str, **changes: object) -> None:
        """Merge ``changes`` into the entry for ``name``, keeping values already known."""
        entry = self.entries.get(name) or TenantEntry(name=name)
        updates = {key: value for key, value in changes.items() if value is not None}
        for key in ("port", "cache_namespace", "database_name"):
            if getattr(entry, key) is not None:
                updates.pop(key, None)
        self.entries[name] = replace(entry, **updates)


class DocumentAdapter(ABC):
    """Parse, scan, extend and validate one kind of configuration document."""

    label: str
    anchor: Anchor

    def read(self, path: Path) -> BlockDocument:
        return self.parse(read_text_exact(path), path)

    @abstractmethod
    def parse(self, text: str, path: Path | None = None) -> BlockDocument:
        """Split ``text`` into blocks without losing a single byte."""
        raise NotImplementedError

    @abstractmethod
    def scan(self, document: BlockDocument) -> DocumentScan:
        """Collect ports, namespaces and tenant names from ``document``."""
        raise NotImplementedError

    @abstractmethod
    def render_block(self, tenant: Tenant, newline: str = "\n") -> Block:
        """Render the block registering ``tenant``."""
        raise NotImplementedError

    def apply_secondary_edits(self, document: BlockDocument, tenant: Tenant) -> list[str]:
        """Apply line-level edits that accompany the main block.

        Returns:
            Human-readable descriptions of the edits that were applied.
        """
        return []

    @abstractmethod
    def validate(self, text: str, tenant: Tenant) -> None:
        """Raise ``DocumentValidationError`` if ``text`` is not a valid document."""
        raise NotImplementedError
