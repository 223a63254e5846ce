"""Tests for the systemd provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence

import pytest

from quadletctl.providers import systemd as systemd_module
from quadletctl.providers.systemd import SystemdError, SystemdProvider, service_name


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def provider() -> SystemdProvider:
    """Return a provider whose binary is never actually invoked."""
    return SystemdProvider(systemctl_bin="systemctl")


@pytest.mark.parametrize(
    ("destination", "expected"),
    [
        ("web.container", "web.service"),
        ("stack.pod", "stack-pod.service"),
        ("odd.name", "odd.name.service"),
    ],
)
def test_service_name(destination: str, expected: str) -> None:
    assert service_name(destination) == expected


def test_activation_calls_systemctl(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """daemon-reload, start and enable call systemctl with checking enabled."""
    calls: list[tuple[str, str | None, bool, bool]] = []

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> DummyResult:
        calls.append((command, unit, check, dry_run))
        return DummyResult()

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    provider.daemon_reload()
    provider.start("web.service")
    provider.enable("web.service", dry_run=True)

    assert calls == [
        ("daemon-reload", None, True, False),
        ("start", "web.service", True, False),
        ("enable", "web.service", True, True),
    ]


def test_is_enabled_returns_trimmed_state(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """is-enabled never checks the exit code and strips output."""
    seen: list[bool] = []

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> DummyResult:
        seen.append(check)
        return DummyResult(returncode=1, stdout="disabled\n")

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    assert provider.is_enabled("web.service") == "disabled"
    assert seen == [False]


def test_is_enabled_swallows_missing_binary(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    def fake_systemctl(self: SystemdProvider, *args: object, **kwargs: object) -> DummyResult:
        raise SystemdError("systemctl not found")

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    assert provider.is_enabled("web.service") == ""


def test_dry_run_skips_systemctl(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """Dry-run requests never reach subprocess."""

    def fail_run(*args: object, **kwargs: object) -> None:
        raise AssertionError("subprocess.run should not be called in dry-run")

    monkeypatch.setattr(systemd_module.subprocess, "run", fail_run)

    result = provider.start("web.service", dry_run=True)

    assert result.returncode == 0
    assert result.args == ["systemctl", "start", "web.service"]


def test_failed_command_raises_with_stderr(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    captured: list[Sequence[str]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        captured.append(args)
        return DummyResult(returncode=5, stderr="Unit web.service not found.\n")

    monkeypatch.setattr(systemd_module.subprocess, "run", fake_run)

    with pytest.raises(SystemdError) as excinfo:
        provider.start("web.service")

    assert captured == [["systemctl", "start", "web.service"]]
    assert str(excinfo.value) == (
        "systemctl start failed (exit 5): Unit web.service not found."
    )


def test_missing_binary_raises(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    def fake_run(args: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(systemd_module.subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="systemctl not found"):
        provider.daemon_reload()


def test_is_available_uses_which(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    monkeypatch.setattr(systemd_module.shutil, "which", lambda name: None)
    assert provider.is_available() is False

    monkeypatch.setattr(systemd_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    assert provider.is_available() is True
