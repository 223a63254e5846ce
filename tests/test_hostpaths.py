"""Tests for bind-mount host path extraction and creation."""
from __future__ import annotations

from pathlib import Path

import pytest

from quadletctl import hostpaths
from quadletctl.hostpaths import directory_for, extract_host_paths, materialize_host_paths


def test_extract_host_paths_reads_mount_directives_only() -> None:
    payload = "\n".join(
        [
            "[Container]",
            "Volume=/srv/app/data:/data:Z",
            "Volume=named-volume:/cache",
            "Volume=relative/dir:/rel",
            "Bind=/srv/app/config.yml:/etc/app.yml /srv/app/logs:/logs",
            "BindReadOnly=/srv/app/certs:/certs",
            "Environment=DATA=/srv/not-a-mount",
            "# Volume=/srv/commented:/x",
            "Volume=/srv/app/data:/data:Z",
        ]
    )

    assert extract_host_paths(payload) == [
        Path("/srv/app/data"),
        Path("/srv/app/config.yml"),
        Path("/srv/app/logs"),
        Path("/srv/app/certs"),
    ]


def test_extract_host_paths_expands_home(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", "/home/op")

    assert extract_host_paths("Volume=~/media:/media\n") == [Path("/home/op/media")]


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/srv/app/data", "/srv/app/data"),
        ("/srv/app/config.yml", "/srv/app"),
        ("/srv/app/.env", "/srv/app"),
    ],
)
def test_directory_for(path: str, expected: str) -> None:
    assert directory_for(Path(path)) == Path(expected)


def test_materialize_creates_missing_directories(tmp_path: Path) -> None:
    existing = tmp_path / "exists"
    existing.mkdir()
    payload = (
        f"Volume={tmp_path}/data/db:/db\n"
        f"Bind={tmp_path}/conf/app.ini:/app.ini\n"
        f"Volume={existing}:/e\n"
    )

    report = materialize_host_paths([payload])

    assert report.created == [tmp_path / "data" / "db", tmp_path / "conf"]
    assert report.warnings == []
    assert (tmp_path / "data" / "db").is_dir()
    assert (tmp_path / "conf").is_dir()
    assert not (tmp_path / "conf" / "app.ini").exists()


def test_materialize_dry_run_touches_nothing(tmp_path: Path) -> None:
    report = materialize_host_paths([f"Volume={tmp_path}/later:/x\n"], dry_run=True)

    assert report.created == [tmp_path / "later"]
    assert not (tmp_path / "later").exists()


def test_materialize_failures_become_warnings(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Creation failures are reported, never raised."""

    def boom(self: Path, *args: object, **kwargs: object) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(hostpaths.Path, "mkdir", boom)

    report = materialize_host_paths([f"Volume={tmp_path}/blocked:/x\n"])

    assert report.created == []
    assert len(report.warnings) == 1
    assert "blocked" in report.warnings[0]
