"""Centralized configuration for tenant-provisioner using Pydantic Settings."""

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Every value can be overridden with a ``TENANT_PROVISIONER_`` prefixed
    environment variable or a ``.env`` file in the working directory.
    Document paths are resolved relative to ``project_root``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANT_PROVISIONER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Layout
    project_root: Path = Field(default=Path("."), description="Root of the multi-app docker project")
    topology_file: Path = Field(
        default=Path("docker-compose.yml"), description="Topology document (relative to project_root)"
    )
    routing_file: Path = Field(
        default=Path("docker/development/nginx/nginx.conf"),
        description="Routing document (relative to project_root)",
    )
    apps_dir: Path = Field(default=Path("apps"), description="Directory holding one sub-directory per tenant")
    lock_file: Path = Field(
        default=Path(".provision.lock"), description="Advisory lock file held for the duration of a run"
    )

    # Port allocation
    min_port: int = Field(default=1024, ge=1, le=65535, description="Lowest port a tenant may bind")
    max_port: int = Field(default=65535, ge=1, le=65535, description="Highest port a tenant may bind")
    port_floor: int = Field(
        default=8080,
        ge=0,
        description="Auto-allocation baseline; ports at or below it are ignored when finding the maximum",
    )
    port_ceiling: int = Field(
        default=9000,
        ge=1,
        description="Auto-allocation ceiling; ports at or above it are ignored when finding the maximum",
    )

    # Redis database indices
    max_cache_namespace: int = Field(default=15, ge=0, description="Highest Redis database index")
    primary_cache_namespace: int = Field(
        default=0, ge=0, description="Namespace implicitly owned by the primary instance"
    )

    # Mutation behaviour
    backup_suffix: str = Field(
        default=".bak", min_length=1, description="Suffix placed before the timestamp of document backups"
    )
    transactional: bool = Field(
        default=True,
        description="Stage every write and rename into place only after all steps succeed",
    )

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit structured JSON logs instead of plain text")

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.port_floor >= self.port_ceiling:
            raise ValueError("port_floor must be lower than port_ceiling")
        if self.min_port > self.max_port:
            raise ValueError("min_port must not exceed max_port")
        if self.primary_cache_namespace > self.max_cache_namespace:
            raise ValueError("primary_cache_namespace must not exceed max_cache_namespace")
        return self

    def _resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.project_root / path

    @property
    def topology_path(self) -> Path:
        return self._resolve(self.topology_file)

    @property
    def routing_path(self) -> Path:
        return self._resolve(self.routing_file)

    @property
    def apps_path(self) -> Path:
        return self._resolve(self.apps_dir)

    @property
    def lock_path(self) -> Path:
        return self._resolve(self.lock_file)
