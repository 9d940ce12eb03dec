"""Unit tests for the provisioning workflow.

Covers the happy path in both write modes plus every documented failure:
- validation and allocation failures change nothing
- a drifted routing document stops the run after the topology step
- a held lock rejects the run before anything is read
"""

from pathlib import Path

import pytest

from tenant_provisioner.adapters.routing_document import RoutingDocumentAdapter
from tenant_provisioner.config import Settings
from tenant_provisioner.domain.model import Tenant, WorkflowState
from tenant_provisioner.exceptions import (
    AlreadyExistsError,
    AnchorNotFoundError,
    ConflictError,
    DocumentValidationError,
    InvalidFormatError,
    LockUnavailableError,
    OutOfRangeError,
    ProvisioningIOError,
)
from tenant_provisioner.observability import get_trace_context, set_trace_context
from tenant_provisioner.service_layer.unit_of_work import STAGING_DIR_PREFIX, ProjectLock
from tenant_provisioner.service_layer.workflow import ProvisioningWorkflow, next_steps


def _staging_dirs(root: Path) -> list[Path]:
    return [entry for entry in root.iterdir() if entry.name.startswith(STAGING_DIR_PREFIX)]


def _truncate_routing(settings: Settings) -> bytes:
    """Drop the final closing brace so the routing anchor cannot be found."""
    text = settings.routing_path.read_bytes()[: -len(b"}\n")]
    settings.routing_path.write_bytes(text)
    return text


class _ExplodingRouting(RoutingDocumentAdapter):
    def render_block(self, tenant, newline="\n"):
        raise RuntimeError("renderer crashed")


class _RejectingRouting(RoutingDocumentAdapter):
    def validate(self, text, tenant):
        raise DocumentValidationError("Routing document rejected")


@pytest.mark.unit
class TestSuccessfulProvisioning:
    """Provisioning app3 into a project holding app1 and app2."""

    @pytest.mark.parametrize("transactional", [True, False])
    def test_provisions_next_free_identifiers(self, project: Path, transactional: bool):
        settings = Settings(project_root=project, transactional=transactional)

        report = ProvisioningWorkflow(settings).run("app3")

        assert report.succeeded
        assert report.state is WorkflowState.DONE
        assert report.transactional is transactional
        assert report.tenant == Tenant(name="app3", port=8082, cache_namespace=2)
        assert report.modified_documents == [settings.topology_path, settings.routing_path]
        assert report.created_paths == [settings.apps_path / "app3" / ".env"]
        assert _staging_dirs(project) == []

    def test_documents_register_the_tenant(self, settings: Settings):
        ProvisioningWorkflow(settings).run("app3")

        topology = settings.topology_path.read_text(encoding="utf-8")
        routing = settings.routing_path.read_text(encoding="utf-8")
        env = (settings.apps_path / "app3" / ".env").read_text(encoding="utf-8")
        assert "  queue-app3:\n" in topology
        assert "      - REDIS_DB=2\n" in topology
        assert "POSTGRES_MULTIPLE_DATABASES: app1_db,app2_db,app3_db\n" in topology
        assert "listen 8082;" in routing
        assert "fastcgi_param REDIS_DB 2;" in routing
        assert "REDIS_DB=2\n" in env
        assert "DB_DATABASE=app3_db\n" in env

    def test_backups_hold_previous_content(self, settings: Settings, compose_text: str, nginx_text: str):
        report = ProvisioningWorkflow(settings).run("app3")

        assert len(report.backups) == 2
        topology_backup, routing_backup = report.backups
        assert topology_backup.read_text(encoding="utf-8") == compose_text
        assert routing_backup.read_text(encoding="utf-8") == nginx_text

    def test_consecutive_runs_allocate_distinct_identifiers(self, settings: Settings):
        first = ProvisioningWorkflow(settings).run("app3")
        second = ProvisioningWorkflow(settings).run("my-api", dry_run=False)

        assert first.tenant.port == 8082
        assert second.tenant == Tenant(name="my-api", port=8083, cache_namespace=3)
        assert "NGINX_PORT_MY_API:-8083" in settings.topology_path.read_text(encoding="utf-8")

    def test_explicit_identifiers(self, settings: Settings):
        report = ProvisioningWorkflow(settings).run("admin", 8085, 5)

        assert report.tenant == Tenant(name="admin", port=8085, cache_namespace=5)

    def test_next_steps(self, settings: Settings):
        report = ProvisioningWorkflow(settings).run("app3")

        assert report.next_steps == next_steps(report.tenant)
        assert len(report.next_steps) == 6
        assert report.next_steps[-1].endswith("http://localhost:8082")


@pytest.mark.unit
class TestDryRun:
    """Dry runs allocate and render but write nothing."""

    def test_writes_nothing(self, settings: Settings, snapshot_tree):
        before = snapshot_tree(settings.project_root)

        report = ProvisioningWorkflow(settings).run("app3", dry_run=True)

        assert report.succeeded
        assert report.dry_run
        assert snapshot_tree(settings.project_root) == before
        assert report.backups == []
        assert set(report.rendered) == {"topology", "routing", "env"}
        assert "listen 8082;" in report.rendered["routing"]

    def test_still_validates(self, settings: Settings):
        report = ProvisioningWorkflow(settings).run("app2", dry_run=True)

        assert isinstance(report.error, AlreadyExistsError)


@pytest.mark.unit
class TestPreconditionFailures:
    """Failures before any document is touched."""

    @pytest.mark.parametrize(
        ("name", "port", "namespace", "error", "failed_at"),
        [
            ("Admin", None, None, InvalidFormatError, WorkflowState.START),
            ("", None, None, InvalidFormatError, WorkflowState.START),
            ("app2", None, None, AlreadyExistsError, WorkflowState.START),
            ("app3", 8081, None, ConflictError, WorkflowState.VALIDATED),
            ("app3", 5432, None, ConflictError, WorkflowState.VALIDATED),
            ("app3", 80, None, OutOfRangeError, WorkflowState.VALIDATED),
            ("app3", None, 1, ConflictError, WorkflowState.VALIDATED),
        ],
    )
    def test_changes_nothing(self, settings: Settings, snapshot_tree, name, port, namespace, error, failed_at):
        before = snapshot_tree(settings.project_root)

        report = ProvisioningWorkflow(settings).run(name, port, namespace)

        assert report.state is WorkflowState.FAILED
        assert report.failed_at is failed_at
        assert isinstance(report.error, error)
        assert not report.is_partial
        assert report.backups == []
        assert snapshot_tree(settings.project_root) == before

    def test_lock_held_by_another_run(self, settings: Settings, snapshot_tree):
        before = snapshot_tree(settings.project_root)
        lock = ProjectLock(settings.lock_path)
        lock.acquire()
        try:
            report = ProvisioningWorkflow(settings).run("app3")
        finally:
            lock.release()

        assert isinstance(report.error, LockUnavailableError)
        assert report.failed_at is WorkflowState.START
        assert snapshot_tree(settings.project_root) == before


    def test_undecodable_document(self, settings: Settings, snapshot_tree):
        with settings.topology_path.open("ab") as handle:
            handle.write(b"# caf\xe9\n")
        before = snapshot_tree(settings.project_root)

        report = ProvisioningWorkflow(settings).run("app3")

        assert isinstance(report.error, ProvisioningIOError)
        assert report.failed_at is WorkflowState.START
        assert snapshot_tree(settings.project_root) == before

    def test_names_sharing_variable_prefix(self, settings: Settings):
        first = ProvisioningWorkflow(settings).run("my-api")
        second = ProvisioningWorkflow(settings).run("my_api")

        assert first.succeeded
        assert isinstance(second.error, AlreadyExistsError)
        assert second.failed_at is WorkflowState.START
        topology = settings.topology_path.read_text(encoding="utf-8")
        assert topology.count("NGINX_PORT_MY_API") == 1
        assert topology.count("MY_API_KEY") == 1
        assert not (settings.apps_path / "my_api").exists()

@pytest.mark.unit
class TestMutationFailures:
    """Failures after the first document has been mutated."""

    def test_sequential_run_reports_partial_state(self, sequential_settings: Settings, compose_text: str):
        settings = sequential_settings
        truncated = _truncate_routing(settings)

        report = ProvisioningWorkflow(settings).run("app3")

        assert isinstance(report.error, AnchorNotFoundError)
        assert report.failed_at is WorkflowState.TOPOLOGY_MUTATED
        assert report.is_partial
        assert report.modified_documents == [settings.topology_path]
        assert report.created_paths == []
        # the topology change is kept, not reverted
        assert "queue-app3:" in settings.topology_path.read_text(encoding="utf-8")
        assert settings.routing_path.read_bytes() == truncated
        assert not (settings.apps_path / "app3").exists()
        assert report.backups[0].read_text(encoding="utf-8") == compose_text

    def test_staged_run_leaves_live_files_untouched(self, settings: Settings, compose_text: str):
        truncated = _truncate_routing(settings)

        report = ProvisioningWorkflow(settings).run("app3")

        assert isinstance(report.error, AnchorNotFoundError)
        assert report.failed_at is WorkflowState.TOPOLOGY_MUTATED
        assert not report.is_partial
        assert report.modified_documents == []
        assert settings.topology_path.read_text(encoding="utf-8") == compose_text
        assert settings.routing_path.read_bytes() == truncated
        assert not (settings.apps_path / "app3").exists()
        assert _staging_dirs(settings.project_root) == []
        assert len(report.backups) == 2

    def test_validation_failure_stops_run(self, settings: Settings, compose_text: str):
        report = ProvisioningWorkflow(settings, routing=_RejectingRouting()).run("app3")

        assert isinstance(report.error, DocumentValidationError)
        assert report.failed_at is WorkflowState.TOPOLOGY_MUTATED
        assert settings.topology_path.read_text(encoding="utf-8") == compose_text

    def test_unexpected_errors_propagate(self, settings: Settings, compose_text: str):
        with pytest.raises(RuntimeError, match="renderer crashed"):
            ProvisioningWorkflow(settings, routing=_ExplodingRouting()).run("app3")

        assert settings.topology_path.read_text(encoding="utf-8") == compose_text
        assert not ProjectLock(settings.lock_path).held
        lock = ProjectLock(settings.lock_path)
        lock.acquire()
        lock.release()

    def test_sequential_scaffold_failure_keeps_both_documents(self, project: Path, compose_text: str, nginx_text: str):
        (project / "apps-file").write_text("not a directory", encoding="utf-8")
        settings = Settings(project_root=project, apps_dir=Path("apps-file"), transactional=False)

        report = ProvisioningWorkflow(settings).run("app3")

        assert isinstance(report.error, ProvisioningIOError)
        assert report.failed_at is WorkflowState.ROUTING_MUTATED
        assert report.is_partial
        assert report.modified_documents == [settings.topology_path, settings.routing_path]
        assert report.created_paths == []
        assert [backup.read_text(encoding="utf-8") for backup in report.backups] == [compose_text, nginx_text]
        assert "listen 8082;" in settings.routing_path.read_text(encoding="utf-8")


@pytest.mark.unit
class TestLogContext:
    """The tenant is attached to log records only while its run is active."""

    def test_tenant_unbound_after_run(self, settings: Settings):
        set_trace_context("trace-1", "span-1")

        ProvisioningWorkflow(settings).run("app3")

        ctx = get_trace_context()
        assert "tenant" not in ctx
        assert ctx["trace_id"] == "trace-1"

    def test_tenant_unbound_after_unexpected_error(self, settings: Settings):
        set_trace_context("trace-1", "span-1")

        with pytest.raises(RuntimeError):
            ProvisioningWorkflow(settings, routing=_ExplodingRouting()).run("app3")

        assert "tenant" not in get_trace_context()
