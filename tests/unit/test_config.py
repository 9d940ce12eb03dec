"""Unit tests for Settings."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from tenant_provisioner.config import Settings


@pytest.mark.unit
class TestDefaults:
    """Default layout of a multi-app project."""

    def test_paths_resolve_against_project_root(self, tmp_path: Path):
        settings = Settings(project_root=tmp_path)

        assert settings.topology_path == tmp_path / "docker-compose.yml"
        assert settings.routing_path == tmp_path / "docker" / "development" / "nginx" / "nginx.conf"
        assert settings.apps_path == tmp_path / "apps"
        assert settings.lock_path == tmp_path / ".provision.lock"

    def test_absolute_paths_are_kept(self, tmp_path: Path):
        settings = Settings(project_root=tmp_path / "root", routing_file=tmp_path / "custom.conf")

        assert settings.routing_path == tmp_path / "custom.conf"

    def test_allocation_defaults(self):
        settings = Settings()

        assert (settings.min_port, settings.max_port) == (1024, 65535)
        assert (settings.port_floor, settings.port_ceiling) == (8080, 9000)
        assert settings.max_cache_namespace == 15
        assert settings.transactional is True


@pytest.mark.unit
class TestEnvironment:
    """Overrides from TENANT_PROVISIONER_* variables."""

    def test_env_override(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("TENANT_PROVISIONER_PROJECT_ROOT", str(tmp_path))
        monkeypatch.setenv("TENANT_PROVISIONER_TRANSACTIONAL", "false")
        monkeypatch.setenv("TENANT_PROVISIONER_MAX_CACHE_NAMESPACE", "31")

        settings = Settings()

        assert settings.project_root == tmp_path
        assert settings.transactional is False
        assert settings.max_cache_namespace == 31


@pytest.mark.unit
class TestValidation:
    """Inconsistent bounds are rejected."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"port_floor": 9000, "port_ceiling": 9000},
            {"min_port": 5000, "max_port": 4000},
            {"primary_cache_namespace": 16},
            {"max_port": 70000},
            {"backup_suffix": ""},
        ],
    )
    def test_rejects_invalid_settings(self, overrides: dict):
        with pytest.raises(ValidationError):
            Settings(**overrides)
