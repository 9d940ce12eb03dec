"""Provisioning workflow.

Runs the provisioning steps in a fixed order::

    START -> VALIDATED -> ALLOCATED -> TOPOLOGY_MUTATED -> ROUTING_MUTATED
          -> SCAFFOLDED -> DONE

Any ``ProvisioningError`` moves the run to ``FAILED``. Errors raised before
``TOPOLOGY_MUTATED`` never leave anything behind. After that point the
outcome depends on the unit of work: a staged run discards its staging
directory and leaves the live files untouched, a direct run keeps the
documents it already rewrote and reports them (plus their backups) so an
operator can finish or revert by hand.
"""

from collections.abc import Callable
import logging

from tenant_provisioner.adapters.base import DocumentAdapter
from tenant_provisioner.adapters.routing_document import RoutingDocumentAdapter
from tenant_provisioner.adapters.topology_document import TopologyDocumentAdapter
from tenant_provisioner.config import Settings
from tenant_provisioner.domain.model import ProvisioningReport, Tenant, WorkflowState, next_state
from tenant_provisioner.exceptions import ProvisioningError
from tenant_provisioner.observability import bind_tenant, create_span, unbind_tenant
from tenant_provisioner.registry import RegistryReader
from tenant_provisioner.service_layer.allocator import ResourceAllocator
from tenant_provisioner.service_layer.document_mutator import DocumentMutator
from tenant_provisioner.service_layer.scaffold import ScaffoldGenerator, render_env
from tenant_provisioner.service_layer.unit_of_work import (
    AbstractUnitOfWork,
    DirectUnitOfWork,
    StagedUnitOfWork,
)
from tenant_provisioner.service_layer.validator import IdentityValidator


logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[Settings], AbstractUnitOfWork]


def default_uow_factory(settings: Settings) -> AbstractUnitOfWork:
    uow_class = StagedUnitOfWork if settings.transactional else DirectUnitOfWork
    return uow_class(settings.project_root, lock_path=settings.lock_path)


def next_steps(tenant: Tenant) -> list[str]:
    """Manual follow-up actions the engine does not perform itself."""
    name = tenant.name
    return [
        f"Install Laravel in the new app directory: cd apps/{name} && "
        "composer create-project laravel/laravel . --prefer-dist",
        f"Create the database: docker compose exec postgres createdb -U laravel {tenant.database_name} "
        "(or recreate the PostgreSQL volume with 'docker compose down -v', which deletes all existing data)",
        "Start the services: docker compose up -d",
        f"Generate the application key: docker compose exec php-fpm php /var/www/{name}/artisan key:generate",
        f"Run migrations: docker compose exec php-fpm php /var/www/{name}/artisan migrate",
        f"Open the application at {tenant.url}",
    ]


class ProvisioningWorkflow:
    """Orchestrate validation, allocation, document mutation and scaffolding."""

    def __init__(
        self,
        settings: Settings,
        *,
        topology: DocumentAdapter | None = None,
        routing: DocumentAdapter | None = None,
        uow_factory: UnitOfWorkFactory = default_uow_factory,
    ):
        self.settings = settings
        self.topology = topology or TopologyDocumentAdapter()
        self.routing = routing or RoutingDocumentAdapter()
        self.uow_factory = uow_factory

    def run(
        self,
        name: str,
        port: int | None = None,
        cache_namespace: int | None = None,
        *,
        dry_run: bool = False,
    ) -> ProvisioningReport:
        """Provision tenant ``name`` and return a report of what happened.

        Only ``ProvisioningError`` is turned into a ``FAILED`` report; any
        other exception propagates.
        """
        token = bind_tenant(name)
        try:
            uow = self.uow_factory(self.settings)
            report = ProvisioningReport(name=name, dry_run=dry_run, transactional=uow.transactional)

            with create_span("tenant.provision", attributes={"tenant.name": name, "dry_run": dry_run}) as span:
                try:
                    with uow:
                        self._run_steps(uow, report, name, port, cache_namespace)
                except ProvisioningError as exc:
                    self._fail(report, exc, uow)
                    span.set_attribute("provision.failed_at", report.failed_at.value if report.failed_at else "")
                span.set_attribute("provision.state", report.state.value)
        finally:
            unbind_tenant(token)
        return report

    def _advance(self, report: ProvisioningReport) -> None:
        report.state = next_state(report.state)
        logger.debug("Provisioning %s reached %s", report.name, report.state.value)

    def _run_steps(
        self,
        uow: AbstractUnitOfWork,
        report: ProvisioningReport,
        name: str,
        port: int | None,
        cache_namespace: int | None,
    ) -> None:
        settings = self.settings

        with create_span("tenant.validate"):
            index = RegistryReader(settings, topology=self.topology, routing=self.routing).load()
            IdentityValidator(settings.apps_path, index).validate(name)
        self._advance(report)

        with create_span("tenant.allocate"):
            allocator = ResourceAllocator(index, settings)
            tenant = Tenant(
                name=name,
                port=allocator.allocate_port(port),
                cache_namespace=allocator.allocate_cache_namespace(cache_namespace),
            )
        report.tenant = tenant
        report.next_steps = next_steps(tenant)
        self._advance(report)

        if report.dry_run:
            report.rendered = {
                self.topology.label: self.topology.render_block(tenant).text,
                self.routing.label: self.routing.render_block(tenant).text,
                "env": render_env(tenant),
            }
            logger.info("Dry run for %s: nothing written", name)
            report.state = WorkflowState.DONE
            return

        mutator = DocumentMutator(uow, backup_suffix=settings.backup_suffix)
        for adapter, path in ((self.topology, settings.topology_path), (self.routing, settings.routing_path)):
            with create_span(f"tenant.mutate.{adapter.label}", attributes={"document": str(path)}):
                try:
                    result = mutator.insert_tenant_block(adapter, path, tenant)
                finally:
                    report.backups = list(mutator.backups)
            self._record_written(report, uow)
            report.rendered[adapter.label] = result.content
            self._advance(report)

        with create_span("tenant.scaffold"):
            env_path = ScaffoldGenerator(uow, settings.apps_path).create_tenant_scaffold(tenant)
            report.rendered["env"] = render_env(tenant)
        self._advance(report)

        uow.commit()
        self._record_written(report, uow)
        logger.info(
            "Provisioned %s on port %d with Redis DB %d (%s)",
            name,
            tenant.port,
            tenant.cache_namespace,
            env_path.parent,
            extra={"port": tenant.port, "cache_namespace": tenant.cache_namespace},
        )
        self._advance(report)

    def _record_written(self, report: ProvisioningReport, uow: AbstractUnitOfWork) -> None:
        documents = {self.settings.topology_path, self.settings.routing_path}
        for path in uow.written:
            if path in documents:
                if path not in report.modified_documents:
                    report.modified_documents.append(path)
            elif path not in report.created_paths:
                report.created_paths.append(path)

    def _fail(self, report: ProvisioningReport, exc: ProvisioningError, uow: AbstractUnitOfWork) -> None:
        self._record_written(report, uow)
        report.failed_at = report.state
        report.state = WorkflowState.FAILED
        report.error = exc
        if report.is_partial:
            logger.error(
                "Provisioning %s failed after %s (%s); already modified: %s",
                report.name,
                report.failed_at.value,
                exc.code,
                ", ".join(str(path) for path in report.modified_documents + report.created_paths),
            )
        else:
            logger.error("Provisioning %s failed at %s (%s): %s", report.name, report.failed_at.value, exc.code, exc)
