"""Unit of Work for provisioning writes.

A unit of work owns the project lock for the duration of a run and routes
every write of the run:

- ``StagedUnitOfWork`` writes into a private staging directory and moves the
  staged files into place on ``commit()``, so a run that fails half way
  leaves no live file modified.
- ``DirectUnitOfWork`` writes each file in place as soon as it is produced
  (via a temporary file and an atomic rename). A failed run keeps what was
  already written; nothing is reverted.
"""

from abc import ABC, abstractmethod
import contextlib
import fcntl
import logging
import os
from pathlib import Path
import shutil
import time
from typing import IO
import uuid

from tenant_provisioner.domain.documents import read_text_exact
from tenant_provisioner.exceptions import LockUnavailableError, ProvisioningIOError


logger = logging.getLogger(__name__)

# Each UoW instance gets a unique staging subdirectory
STAGING_DIR_PREFIX = ".staging_"


def cleanup_orphaned_staging_dirs(base_dir: Path, max_age_hours: float = 1.0) -> int:
    """Remove staging directories left behind by crashed runs.

    Args:
        base_dir: Directory containing staging subdirectories
        max_age_hours: Age after which a staging directory is considered orphaned

    Returns:
        Number of staging directories removed
    """
    cleaned_count = 0
    max_age_seconds = max_age_hours * 3600
    current_time = time.time()

    try:
        entries = list(base_dir.iterdir())
    except OSError as e:
        logger.warning(f"Failed to iterate base directory {base_dir}: {e}")
        return 0

    for entry in entries:
        if not entry.is_dir() or not entry.name.startswith(STAGING_DIR_PREFIX):
            continue
        try:
            if current_time - entry.stat().st_mtime > max_age_seconds:
                shutil.rmtree(entry)
                cleaned_count += 1
                logger.info(f"Cleaned up orphaned staging directory: {entry}")
        except OSError as e:
            logger.warning(f"Failed to clean up staging directory {entry}: {e}")

    return cleaned_count


class ProjectLock:
    """Exclusive, non-blocking advisory lock on a file."""

    def __init__(self, path: Path):
        self.path = path
        self._handle: IO[str] | None = None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise ProvisioningIOError(f"Cannot open lock file {self.path}: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            handle.close()
            raise LockUnavailableError(
                f"Another provisioning run holds {self.path}; retry once it finishes"
            ) from exc
        self._handle = handle

    def release(self) -> None:
        if not self.held:
            return
        with contextlib.suppress(OSError):
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        self._handle.close()
        self._handle = None

    @property
    def held(self) -> bool:
        return self._handle is not None


class AbstractUnitOfWork(ABC):
    """Lock-holding transaction boundary around the files written by a run."""

    transactional: bool

    def __init__(self, base_dir: Path, *, lock_path: Path | None = None):
        self.base_dir = base_dir
        self.lock = ProjectLock(lock_path) if lock_path else None
        self.written: list[Path] = []
        self._committed = False

    def __enter__(self):
        if self.lock:
            self.lock.acquire()
        self._committed = False
        self.written = []
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            # Only rollback if we haven't committed yet
            if not self._committed:
                self.rollback()
        finally:
            if self.lock:
                self.lock.release()

    @abstractmethod
    def read_text(self, path: Path) -> str:
        """Read ``path`` as seen by this unit of work (staged content first)."""
        raise NotImplementedError

    @abstractmethod
    def write_text(self, path: Path, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp-{uuid.uuid4().hex[:8]}")
    try:
        with tmp_path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except OSError:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise


class DirectUnitOfWork(AbstractUnitOfWork):
    """Write every file in place immediately; rollback is a no-op."""

    transactional = False

    def read_text(self, path: Path) -> str:
        try:
            return read_text_exact(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise ProvisioningIOError(f"Cannot read {path}: {exc}") from exc

    def write_text(self, path: Path, content: str) -> None:
        try:
            _atomic_write(path, content)
        except OSError as exc:
            raise ProvisioningIOError(f"Cannot write {path}: {exc}") from exc
        self.written.append(path)

    def commit(self) -> None:
        self._committed = True

    def rollback(self) -> None:
        if self.written:
            logger.warning("Run stopped with %d file(s) already written; nothing is reverted", len(self.written))


class StagedUnitOfWork(AbstractUnitOfWork):
    """Stage writes in ``.staging_<id>`` and move them into place on commit.

    Each instance gets its own UUID-based staging directory so an orphaned
    directory from a crashed run can never be mistaken for live state.
    """

    transactional = True

    def __init__(self, base_dir: Path, *, lock_path: Path | None = None):
        super().__init__(base_dir, lock_path=lock_path)
        self._staging_id = uuid.uuid4().hex[:8]
        self.staging_dir = self.base_dir / f"{STAGING_DIR_PREFIX}{self._staging_id}"
        self._staged: dict[Path, Path] = {}

    def __enter__(self):
        super().__enter__()
        cleanup_orphaned_staging_dirs(self.base_dir)
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.__exit__(type(exc), exc, exc.__traceback__)
            raise ProvisioningIOError(f"Cannot create staging directory {self.staging_dir}: {exc}") from exc
        self._staged = {}
        return self

    def read_text(self, path: Path) -> str:
        source = self._staged.get(path, path)
        try:
            return read_text_exact(source)
        except (OSError, UnicodeDecodeError) as exc:
            raise ProvisioningIOError(f"Cannot read {path}: {exc}") from exc

    def write_text(self, path: Path, content: str) -> None:
        staged = self._staged.get(path) or self.staging_dir / f"{len(self._staged):03d}_{path.name}"
        try:
            staged.parent.mkdir(parents=True, exist_ok=True)
            staged.write_text(content, encoding="utf-8", newline="")
        except OSError as exc:
            raise ProvisioningIOError(f"Cannot stage {path}: {exc}") from exc
        self._staged[path] = staged

    def commit(self) -> None:
        """Move every staged file to its destination, in staging order."""
        for destination, staged in self._staged.items():
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(staged), str(destination))
            except OSError as exc:
                raise ProvisioningIOError(f"Cannot move staged {destination.name} into place: {exc}") from exc
            self.written.append(destination)
        self._staged = {}
        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
        self._committed = True

    def rollback(self) -> None:
        """Discard the staging directory; files already moved into place stay."""
        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
        self._staged = {}
        self._committed = False
