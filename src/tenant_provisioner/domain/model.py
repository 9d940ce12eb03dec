"""Domain model - tenants, workflow states and run reports.

The domain model has no dependency on the documents it is stored in.
Value objects are immutable pydantic dataclasses so a tenant with an
invalid name or an out-of-range identifier can never be constructed.
"""

from dataclasses import dataclass as std_dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic.dataclasses import dataclass

from tenant_provisioner.exceptions import ProvisioningError


TENANT_NAME_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"


def to_env_var_name(name: str) -> str:
    """Upper-case identifier used for per-tenant compose variables (``my-api`` -> ``MY_API``)."""
    return name.replace("-", "_").upper()


@dataclass(frozen=True)
class Tenant:
    """Value object holding a tenant's resolved identifiers.

    Only ``name``, ``port`` and ``cache_namespace`` are stored; every other
    identifier is derived from the name so the three artifacts written for
    a tenant always agree with each other.
    """

    name: str = Field(min_length=1, pattern=TENANT_NAME_PATTERN)
    port: int = Field(ge=1, le=65535)
    cache_namespace: int = Field(ge=0)

    @property
    def database_name(self) -> str:
        return f"{self.name}_db"

    @property
    def queue_name(self) -> str:
        return self.name

    @property
    def cache_prefix(self) -> str:
        return f"{self.name}_cache_"

    @property
    def redis_prefix(self) -> str:
        return f"{self.name}_"

    @property
    def env_var_name(self) -> str:
        return to_env_var_name(self.name)

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"


@std_dataclass(frozen=True, slots=True)
class TenantEntry:
    """A tenant as currently recorded in the configuration documents.

    Fields are optional because the primary instance usually relies on
    defaults instead of explicit overrides.
    """

    name: str
    port: int | None = None
    cache_namespace: int | None = None
    database_name: str | None = None
    has_worker: bool = False
    has_route: bool = False


class WorkflowState(str, Enum):
    """States of a provisioning run."""

    START = "start"
    VALIDATED = "validated"
    ALLOCATED = "allocated"
    TOPOLOGY_MUTATED = "topology_mutated"
    ROUTING_MUTATED = "routing_mutated"
    SCAFFOLDED = "scaffolded"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {WorkflowState.DONE, WorkflowState.FAILED}


_TRANSITIONS: dict[WorkflowState, WorkflowState] = {
    WorkflowState.START: WorkflowState.VALIDATED,
    WorkflowState.VALIDATED: WorkflowState.ALLOCATED,
    WorkflowState.ALLOCATED: WorkflowState.TOPOLOGY_MUTATED,
    WorkflowState.TOPOLOGY_MUTATED: WorkflowState.ROUTING_MUTATED,
    WorkflowState.ROUTING_MUTATED: WorkflowState.SCAFFOLDED,
    WorkflowState.SCAFFOLDED: WorkflowState.DONE,
}


def next_state(state: WorkflowState) -> WorkflowState:
    """Return the successor of ``state`` on the happy path."""
    if state.is_terminal:
        raise ValueError(f"{state.value} is terminal")
    return _TRANSITIONS[state]


@std_dataclass(slots=True)
class ProvisioningReport:
    """Outcome of a provisioning run, successful or not."""

    name: str
    state: WorkflowState = WorkflowState.START
    failed_at: WorkflowState | None = None
    tenant: Tenant | None = None
    error: ProvisioningError | None = None
    dry_run: bool = False
    transactional: bool = True
    modified_documents: list[Path] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)
    created_paths: list[Path] = field(default_factory=list)
    rendered: dict[str, str] = field(default_factory=dict)
    next_steps: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is WorkflowState.DONE

    @property
    def is_partial(self) -> bool:
        """True when a failed run left some artifacts already written."""
        return self.state is WorkflowState.FAILED and bool(self.modified_documents or self.created_paths)
