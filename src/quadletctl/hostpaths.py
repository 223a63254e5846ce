"""Best-effort creation of host directories referenced by bind mounts.

Only ``Volume=``, ``Bind=`` and ``BindReadOnly=`` lines are inspected. For
each whitespace-separated value the part before the first ``:`` is taken as
the host path; relative paths and named volumes are ignored. Anything outside
that narrow grammar is skipped rather than reported.
"""
from __future__ import annotations

import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

MOUNT_DIRECTIVE_RE = re.compile(r"^\s*(Volume|Bind|BindReadOnly)\s*=(.*)$")


@dataclass(slots=True)
class HostPathReport:
    """Directories created (or that would be created) and failures."""

    created: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def extract_host_paths(payload: str) -> list[Path]:
    """Return absolute host paths declared by mount directives in *payload*."""
    paths: list[Path] = []
    for raw in payload.splitlines():
        line = raw.split("#", 1)[0]
        match = MOUNT_DIRECTIVE_RE.match(line)
        if not match:
            continue
        for item in match.group(2).split():
            host = item.split(":", 1)[0]
            if host.startswith("~"):
                host = os.path.expanduser(host)
            if not host.startswith("/"):
                continue
            path = Path(host)
            if path not in paths:
                paths.append(path)
    return paths


def directory_for(path: Path) -> Path:
    """Return the directory to create for *path*.

    A basename containing a period is assumed to name a file, so its parent
    is created instead.
    """
    if "." in path.name:
        return path.parent
    return path


def materialize_host_paths(
    payloads: Iterable[str],
    *,
    dry_run: bool = False,
) -> HostPathReport:
    """Create missing host directories referenced by *payloads*."""
    report = HostPathReport()
    for payload in payloads:
        for path in extract_host_paths(payload):
            if path.exists():
                continue
            target = directory_for(path)
            if target.exists() or target in report.created:
                continue
            if dry_run:
                report.created.append(target)
                continue
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                report.warnings.append(f"Could not create host path {target}: {exc}")
                continue
            report.created.append(target)
    return report


__all__ = ["HostPathReport", "directory_for", "extract_host_paths", "materialize_host_paths"]
