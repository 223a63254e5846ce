"""Systemd provider for reloading and activating Quadlet-generated services."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

POD_SUFFIX = ".pod"
CONTAINER_SUFFIX = ".container"

# ``systemctl is-enabled`` states for which an explicit enable is redundant.
ENABLED_STATES = frozenset({"enabled", "static", "indirect", "generated", "enabled-runtime"})


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


def service_name(destination_name: str) -> str:
    """Return the generated service name for a Quadlet unit file.

    ``web.container`` becomes ``web.service`` and ``stack.pod`` becomes
    ``stack-pod.service``, matching podman's systemd generator.
    """
    if destination_name.endswith(POD_SUFFIX):
        return f"{destination_name[: -len(POD_SUFFIX)]}-pod.service"
    if destination_name.endswith(CONTAINER_SUFFIX):
        return f"{destination_name[: -len(CONTAINER_SUFFIX)]}.service"
    return f"{destination_name}.service"


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` for the activation phase."""

    systemctl_bin: str = "systemctl"

    def is_available(self) -> bool:
        """Return True when the systemctl binary can be located."""
        return shutil.which(self.systemctl_bin) is not None

    def daemon_reload(self, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-run generators and reload unit files."""
        return self._systemctl("daemon-reload", dry_run=dry_run)

    def start(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Start *service*."""
        return self._systemctl("start", service, dry_run=dry_run)

    def enable(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Enable *service* for boot persistence."""
        return self._systemctl("enable", service, dry_run=dry_run)

    def is_enabled(self, service: str) -> str:
        """Return the ``systemctl is-enabled`` state for *service* (may be empty)."""
        try:
            result = self._systemctl("is-enabled", service, check=False)
        except SystemdError:
            return ""
        return (result.stdout or "").strip()

    def status(self, service: str) -> subprocess.CompletedProcess[str]:
        """Return the status output for *service*."""
        return self._systemctl("status", service, check=False)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        if dry_run:
            return subprocess.CompletedProcess(
                list(args),
                returncode=0,
                stdout="",
                stderr="",
            )
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ENABLED_STATES", "SystemdError", "SystemdProvider", "service_name"]
