"""Snapshot-then-insert mutation of a configuration document."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from pathlib import Path

from tenant_provisioner.adapters.base import DocumentAdapter
from tenant_provisioner.domain.model import Tenant
from tenant_provisioner.exceptions import ProvisioningIOError
from tenant_provisioner.service_layer.unit_of_work import AbstractUnitOfWork


logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


@dataclass(slots=True)
class MutationResult:
    document: Path
    backup: Path
    block_index: int
    secondary_edits: list[str] = field(default_factory=list)
    content: str = ""


def backup_path_for(path: Path, suffix: str = ".bak", now: datetime | None = None) -> Path:
    """Return a timestamped backup path next to ``path`` that does not exist yet."""
    stamp = (now or datetime.now(timezone.utc)).strftime(BACKUP_TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.name}{suffix}.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}{suffix}.{stamp}-{counter}")
        counter += 1
    return candidate


class DocumentMutator:
    """Insert tenant blocks into configuration documents through a unit of work."""

    def __init__(self, uow: AbstractUnitOfWork, *, backup_suffix: str = ".bak"):
        self.uow = uow
        self.backup_suffix = backup_suffix
        self.backups: list[Path] = []

    def snapshot(self, path: Path, current: str) -> Path:
        """Write the pre-mutation content of ``path`` to a new backup file.

        Fails closed: nothing is mutated if the backup cannot be written.
        """
        backup = backup_path_for(path, self.backup_suffix)
        try:
            with backup.open("x", encoding="utf-8", newline="") as handle:
                handle.write(current)
        except OSError as exc:
            raise ProvisioningIOError(f"Cannot write backup {backup}: {exc}") from exc
        self.backups.append(backup)
        logger.info("Backed up %s to %s", path.name, backup.name)
        return backup

    def insert_tenant_block(self, adapter: DocumentAdapter, path: Path, tenant: Tenant) -> MutationResult:
        """Register ``tenant`` in the document at ``path``.

        Steps: read the whole document, snapshot it, insert the rendered
        block before the adapter's anchor, apply the adapter's secondary
        edits, validate, then write through the unit of work.

        Raises:
            ProvisioningIOError: The document cannot be read, backed up or written.
            AnchorNotFoundError: The anchor is missing; the document is left untouched.
            DocumentValidationError: The rewritten document would not parse.
        """
        current = self.uow.read_text(path)
        backup = self.snapshot(path, current)

        document = adapter.parse(current, path)
        block = adapter.render_block(tenant, document.newline)
        block_index = document.insert_before(adapter.anchor, block)
        edits = adapter.apply_secondary_edits(document, tenant)

        content = document.serialize()
        adapter.validate(content, tenant)
        self.uow.write_text(path, content)

        logger.info(
            "Inserted %s block for %s before %s in %s",
            adapter.label,
            tenant.name,
            adapter.anchor.description,
            path.name,
        )
        return MutationResult(
            document=path, backup=backup, block_index=block_index, secondary_edits=edits, content=content
        )
