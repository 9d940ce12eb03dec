"""Tenant directory and environment descriptor generation."""

import logging
from pathlib import Path

from tenant_provisioner.domain.model import Tenant
from tenant_provisioner.exceptions import ProvisioningIOError
from tenant_provisioner.service_layer.unit_of_work import AbstractUnitOfWork


logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"


def render_env(tenant: Tenant) -> str:
    """Render the Laravel ``.env`` for ``tenant`` with its isolation settings filled in."""
    name = tenant.name
    return f"""\
# =============================================================================
# Docker Local Development Environment - {name}
# =============================================================================

# -----------------------------------------------------------------------------
# Application Settings
# -----------------------------------------------------------------------------
APP_NAME="Laravel {name}"
APP_ENV=local
APP_KEY=
APP_DEBUG=true
APP_TIMEZONE=UTC
APP_URL={tenant.url}

# Locale
APP_LOCALE=en
APP_FALLBACK_LOCALE=en
APP_FAKER_LOCALE=en_US

# Maintenance mode driver
APP_MAINTENANCE_DRIVER=file

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
LOG_CHANNEL=stack
LOG_STACK=single
LOG_DEPRECATIONS_CHANNEL=null
LOG_LEVEL=debug

# -----------------------------------------------------------------------------
# Database (PostgreSQL)
# -----------------------------------------------------------------------------
DB_CONNECTION=pgsql
DB_HOST=postgres
DB_PORT=5432
DB_DATABASE={tenant.database_name}
DB_USERNAME=laravel
DB_PASSWORD=secret

# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------
SESSION_DRIVER=redis
SESSION_LIFETIME=120
SESSION_ENCRYPT=false
SESSION_PATH=/
SESSION_DOMAIN=null

# -----------------------------------------------------------------------------
# Cache
# -----------------------------------------------------------------------------
CACHE_STORE=redis
CACHE_PREFIX={tenant.cache_prefix}

# -----------------------------------------------------------------------------
# Queue
# -----------------------------------------------------------------------------
QUEUE_CONNECTION=redis
QUEUE_QUEUE={tenant.queue_name}

# -----------------------------------------------------------------------------
# Redis
# -----------------------------------------------------------------------------
REDIS_CLIENT=phpredis
REDIS_HOST=redis
REDIS_PASSWORD=
REDIS_PORT=6379
REDIS_DB={tenant.cache_namespace}
REDIS_PREFIX={tenant.redis_prefix}

# -----------------------------------------------------------------------------
# Mail (log for development)
# -----------------------------------------------------------------------------
MAIL_MAILER=log
"""


class ScaffoldGenerator:
    """Create ``apps/<name>/`` and its environment descriptor."""

    def __init__(self, uow: AbstractUnitOfWork, apps_dir: Path):
        self.uow = uow
        self.apps_dir = apps_dir

    def directory_for(self, tenant: Tenant) -> Path:
        return self.apps_dir / tenant.name

    def create_tenant_scaffold(self, tenant: Tenant) -> Path:
        """Write ``apps/<name>/.env`` and return its path.

        Raises:
            ProvisioningIOError: The directory or descriptor cannot be written.
        """
        directory = self.directory_for(tenant)
        env_path = directory / ENV_FILENAME
        try:
            if not self.uow.transactional:
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProvisioningIOError(f"Cannot create {directory}: {exc}") from exc
        self.uow.write_text(env_path, render_env(tenant))
        logger.info("Created %s", env_path)
        return env_path
