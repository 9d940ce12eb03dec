"""Tenant name validation."""

import logging
from pathlib import Path
import re

from tenant_provisioner.domain.model import TENANT_NAME_PATTERN, to_env_var_name
from tenant_provisioner.exceptions import AlreadyExistsError, InvalidFormatError
from tenant_provisioner.registry import TenantIndex


logger = logging.getLogger(__name__)

_NAME_RE = re.compile(TENANT_NAME_PATTERN)


class IdentityValidator:
    """Check a proposed tenant name against the naming rules and existing tenants."""

    def __init__(self, apps_dir: Path, index: TenantIndex | None = None):
        self.apps_dir = apps_dir
        self.index = index or TenantIndex()

    def validate(self, name: str) -> str:
        """Return ``name`` if it can be provisioned.

        Raises:
            InvalidFormatError: Empty name, or one that is not lowercase
                alphanumeric with ``_``/``-`` starting with an alphanumeric.
            AlreadyExistsError: A directory or document entry already uses the name,
                or an existing tenant maps to the same compose variable prefix
                (``my-api`` and ``my_api`` both use ``MY_API``).
        """
        if not name:
            raise InvalidFormatError("Tenant name is required")
        if not _NAME_RE.fullmatch(name):
            raise InvalidFormatError(
                f"Tenant name {name!r} must be lowercase alphanumeric (underscores and hyphens allowed), "
                "e.g. app3, admin, my-api, user_service"
            )
        directory = self.apps_dir / name
        if directory.exists():
            raise AlreadyExistsError(f"Tenant directory already exists: {directory}")
        if name in self.index.topology_names:
            raise AlreadyExistsError(f"Tenant {name!r} is already registered in the topology document")
        if name in self.index.routing_names:
            raise AlreadyExistsError(f"Tenant {name!r} is already registered in the routing document")
        self._check_variable_prefix(name)
        logger.debug("Tenant name %s is available", name)
        return name

    def _check_variable_prefix(self, name: str) -> None:
        prefix = to_env_var_name(name)
        existing = self.index.topology_names | self.index.routing_names | self.index.directories
        for other in sorted(existing):
            if other != name and to_env_var_name(other) == prefix:
                raise AlreadyExistsError(
                    f"Tenant {name!r} would share the {prefix}_* compose variables with existing tenant {other!r}"
                )
