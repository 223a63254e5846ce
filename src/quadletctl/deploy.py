"""Install rendered unit payloads into the Quadlet unit directory."""
from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .providers.systemd import service_name
from .templates import WorkingUnit

BACKUP_MARKER = ".bak-"
DEFAULT_UNIT_MODE = 0o644


class DeploymentError(RuntimeError):
    """Raised when a unit cannot be backed up or installed."""


def run_stamp(now: datetime | None = None) -> str:
    """Return the ``YYYYmmdd-HHMMSS`` stamp identifying a run."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


@dataclass(frozen=True, slots=True)
class DeploymentRecord:
    """What happened to a single installed unit."""

    destination_name: str
    destination: Path
    service: str
    backup: Path | None = None


@dataclass(slots=True)
class Deployer:
    """Back up existing units and atomically install new payloads.

    The backup directory is a sibling of ``unit_dir`` named
    ``<unit_dir>.bak-<stamp>``. It is created on first use; if a directory
    with that name already exists a numeric suffix is appended so that a
    previous run's backups are never mixed with this one.
    """

    unit_dir: Path
    stamp: str = field(default_factory=run_stamp)
    mode: int = DEFAULT_UNIT_MODE
    _backup_dir: Path | None = field(default=None, init=False, repr=False)
    _installed: set[str] = field(default_factory=set, init=False, repr=False)

    @property
    def backup_dir(self) -> Path | None:
        """Return the backup directory if this run created one."""
        return self._backup_dir

    def planned_backup_dir(self) -> Path:
        """Return the base backup directory name for this run."""
        return self.unit_dir.with_name(f"{self.unit_dir.name}{BACKUP_MARKER}{self.stamp}")

    def destination_for(self, name: str) -> Path:
        """Return the install path for unit file *name*."""
        return self.unit_dir / name

    def prepare(self) -> None:
        """Ensure the unit directory exists."""
        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DeploymentError(f"Failed to prepare {self.unit_dir}: {exc}") from exc

    def deploy(self, unit: WorkingUnit) -> DeploymentRecord:
        """Install *unit*, moving any existing file of the same name aside."""
        name = unit.entry.destination_name
        destination = self.destination_for(name)
        backup: Path | None = None
        # A file this run already installed is not the pre-existing unit.
        first_write = name not in self._installed
        if first_write and (destination.exists() or destination.is_symlink()):
            backup = self._ensure_backup_dir() / name
            try:
                shutil.move(str(destination), str(backup))
            except OSError as exc:
                raise DeploymentError(
                    f"Failed to back up {destination} to {backup}: {exc}"
                ) from exc
        self._write_atomic(destination, unit.payload)
        self._installed.add(name)
        return DeploymentRecord(
            destination_name=name,
            destination=destination,
            service=service_name(name),
            backup=backup,
        )

    def deploy_all(self, units: Sequence[WorkingUnit]) -> list[DeploymentRecord]:
        """Install every unit in order, stopping at the first failure."""
        self.prepare()
        return [self.deploy(unit) for unit in units]

    # ------------------------------------------------------------------
    def _ensure_backup_dir(self) -> Path:
        if self._backup_dir is not None:
            return self._backup_dir
        base = self.planned_backup_dir()
        candidate = base
        attempt = 0
        while True:
            try:
                candidate.mkdir(parents=True)
            except FileExistsError:
                attempt += 1
                candidate = base.with_name(f"{base.name}-{attempt}")
                continue
            except OSError as exc:
                raise DeploymentError(f"Failed to create backup directory {candidate}: {exc}") from exc
            break
        self._backup_dir = candidate
        return candidate

    def _write_atomic(self, destination: Path, payload: str) -> None:
        try:
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(destination.parent),
                prefix=f".{destination.name}.",
            )
        except OSError as exc:
            raise DeploymentError(f"Failed to stage {destination}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.chmod(tmp_path, self.mode)
            os.replace(tmp_path, destination)
        except OSError as exc:
            raise DeploymentError(f"Failed to install {destination}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["BACKUP_MARKER", "DeploymentError", "DeploymentRecord", "Deployer", "run_stamp"]
