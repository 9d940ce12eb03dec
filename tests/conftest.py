"""Shared test fixtures and configuration."""

import os
from pathlib import Path
import shutil
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "project"

from tenant_provisioner.config import Settings


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop any TENANT_PROVISIONER_* variables leaking in from the host."""
    for key in list(os.environ):
        if key.upper().startswith("TENANT_PROVISIONER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def compose_text() -> str:
    return (FIXTURES_DIR / "docker-compose.yml").read_text(encoding="utf-8")


@pytest.fixture
def nginx_text() -> str:
    return (FIXTURES_DIR / "nginx.conf").read_text(encoding="utf-8")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Multi-app project with app1 (port 80, Redis DB 0) and app2 (port 8081, Redis DB 1)."""
    root = tmp_path / "project"
    nginx_dir = root / "docker" / "development" / "nginx"
    nginx_dir.mkdir(parents=True)
    shutil.copyfile(FIXTURES_DIR / "docker-compose.yml", root / "docker-compose.yml")
    shutil.copyfile(FIXTURES_DIR / "nginx.conf", nginx_dir / "nginx.conf")
    for app in ("app1", "app2"):
        (root / "apps" / app).mkdir(parents=True)
        (root / "apps" / app / ".env").write_text(f"APP_NAME={app}\n", encoding="utf-8")
    return root


@pytest.fixture
def settings(project: Path) -> Settings:
    return Settings(project_root=project)


@pytest.fixture
def sequential_settings(project: Path) -> Settings:
    return Settings(project_root=project, transactional=False)


@pytest.fixture
def snapshot_tree():
    """Return a helper mapping every file under a root (except the lock file) to its bytes."""

    def _snapshot(root: Path) -> dict[str, bytes]:
        return {
            str(path.relative_to(root)): path.read_bytes()
            for path in sorted(root.rglob("*"))
            if path.is_file() and path.name != ".provision.lock"
        }

    return _snapshot
