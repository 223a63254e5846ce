"""Reload systemd and start/enable freshly deployed Quadlet services."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from .deploy import DeploymentRecord
from .providers.systemd import ENABLED_STATES, SystemdError, SystemdProvider

# systemctl's diagnostic when asked to enable a generator-produced unit.
GENERATED_UNIT_MARKERS = ("transient or generated",)


class EnableOutcome(str, Enum):
    """Result of the enable step for a single service."""

    ENABLED = "enabled"
    ALREADY_ENABLED = "already-enabled"
    GENERATED = "generated"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ActivationWarning:
    """A non-fatal start or enable failure for one service."""

    service: str
    action: str
    message: str

    def __str__(self) -> str:
        return f"{self.action} {self.service}: {self.message}"


@dataclass(slots=True)
class ActivationResult:
    """Outcome of starting and enabling one deployed unit."""

    service: str
    destination_name: str
    started: bool = False
    start_detail: str = ""
    enable: EnableOutcome = EnableOutcome.SKIPPED
    enable_detail: str = ""

    @property
    def warnings(self) -> list[ActivationWarning]:
        """Return warnings raised while activating this unit."""
        warnings: list[ActivationWarning] = []
        if not self.started:
            warnings.append(ActivationWarning(self.service, "start", self.start_detail))
        if self.enable is EnableOutcome.FAILED:
            warnings.append(ActivationWarning(self.service, "enable", self.enable_detail))
        return warnings

    @property
    def note(self) -> str | None:
        """Return an informational note about the enable step, if any."""
        if self.enable is EnableOutcome.ALREADY_ENABLED:
            return f"{self.service} already enabled/state={self.enable_detail}; skipping enable."
        if self.enable is EnableOutcome.GENERATED:
            return f"{self.service} is a generated unit; enable not applicable."
        return None


@dataclass(slots=True)
class ActivationReport:
    """Aggregated activation results for a run."""

    results: list[ActivationResult] = field(default_factory=list)

    @property
    def started(self) -> list[str]:
        """Return services that started successfully, in deployment order."""
        return [result.service for result in self.results if result.started]

    @property
    def warnings(self) -> list[ActivationWarning]:
        """Return every non-fatal warning across all units."""
        return [warning for result in self.results for warning in result.warnings]

    @property
    def notes(self) -> list[str]:
        """Return informational notes across all units."""
        return [note for result in self.results if (note := result.note)]


def is_generated_unit_error(message: str) -> bool:
    """Return True when *message* says enable is meaningless for the unit."""
    lowered = message.lower()
    return any(marker in lowered for marker in GENERATED_UNIT_MARKERS)


@dataclass(slots=True)
class Activator:
    """Drive systemctl for the services produced by deployed units."""

    systemd: SystemdProvider
    dry_run: bool = False

    def reload(self) -> None:
        """Run ``daemon-reload``; failures propagate as :class:`SystemdError`."""
        self.systemd.daemon_reload(dry_run=self.dry_run)

    def activate(self, records: Sequence[DeploymentRecord]) -> ActivationReport:
        """Reload systemd, then start and enable each deployed service."""
        self.reload()
        report = ActivationReport()
        for record in records:
            report.results.append(self.activate_one(record))
        return report

    def activate_one(self, record: DeploymentRecord) -> ActivationResult:
        """Start then enable a single service, recording each outcome."""
        result = ActivationResult(service=record.service, destination_name=record.destination_name)
        try:
            self.systemd.start(record.service, dry_run=self.dry_run)
        except SystemdError as exc:
            result.start_detail = (
                f"{exc} (check logs: journalctl -u {record.service})"
            )
        else:
            result.started = True

        state = "" if self.dry_run else self.systemd.is_enabled(record.service)
        if state in ENABLED_STATES:
            result.enable = EnableOutcome.ALREADY_ENABLED
            result.enable_detail = state
            return result

        try:
            self.systemd.enable(record.service, dry_run=self.dry_run)
        except SystemdError as exc:
            message = str(exc)
            result.enable_detail = message
            if is_generated_unit_error(message):
                result.enable = EnableOutcome.GENERATED
            else:
                result.enable = EnableOutcome.FAILED
        else:
            result.enable = EnableOutcome.ENABLED
        return result


__all__ = [
    "ActivationReport",
    "ActivationResult",
    "ActivationWarning",
    "Activator",
    "EnableOutcome",
    "is_generated_unit_error",
]
