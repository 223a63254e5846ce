"""Resolve Quadlet unit candidates from a manifest or a directory scan."""
from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from .providers.fetch import FetchError, UrlFetcher, is_remote

UNIT_SUFFIXES = (".container", ".pod")
DEFAULT_SUFFIX = ".container"
COMMENT_MARKER = "#"
LABEL_DELIMITER = "|"

_LINE_ENDINGS = re.compile(r"\r\n?")


class ResolutionError(RuntimeError):
    """Raised when no usable unit entries can be resolved."""


@dataclass(frozen=True, slots=True)
class UnitEntry:
    """A candidate unit file that may be installed."""

    description: str
    source: str
    payload_path: Path
    destination_name: str

    def read_payload(self) -> str:
        """Return the unit payload text (the source file is never modified)."""
        return self.payload_path.read_text(encoding="utf-8")


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """One ``source[|label]`` item parsed from a manifest."""

    locator: str
    label: str | None = None
    line: int = 0


@dataclass(slots=True)
class ResolutionReport:
    """Entries resolved from a source plus any non-fatal warnings."""

    entries: list[UnitEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    origin: str = ""


def normalize_destination_name(name: str) -> str:
    """Append ``.container`` to *name* unless it already has a unit suffix."""
    if name.endswith(UNIT_SUFFIXES):
        return name
    return f"{name}{DEFAULT_SUFFIX}"


def is_valid_destination_name(name: str) -> bool:
    """Return True when *name* is usable as a unit filename."""
    if not name or "/" in name or "\\" in name:
        return False
    stem = name
    for suffix in UNIT_SUFFIXES:
        if name.endswith(suffix):
            stem = name[: -len(suffix)]
            break
    return bool(stem) and stem not in {".", ".."}


def parse_manifest(text: str) -> tuple[list[ManifestEntry], list[str]]:
    """Parse manifest *text* into entries and per-line warnings.

    Comments start at ``#`` and run to end of line. Each remaining line may
    hold several whitespace-separated entries, each ``source`` or
    ``source|label``.
    """
    entries: list[ManifestEntry] = []
    warnings: list[str] = []
    normalized = _LINE_ENDINGS.sub("\n", text)
    for lineno, raw in enumerate(normalized.split("\n"), start=1):
        line = raw.split(COMMENT_MARKER, 1)[0].strip()
        if not line:
            continue
        for token in line.split():
            locator, sep, label = token.partition(LABEL_DELIMITER)
            locator = locator.strip()
            if not locator:
                warnings.append(f"Manifest line {lineno}: entry {token!r} has no source; skipped.")
                continue
            clean_label = label.strip() if sep else ""
            entries.append(ManifestEntry(locator=locator, label=clean_label or None, line=lineno))
    return entries, warnings


@dataclass(slots=True)
class SourceResolver:
    """Turn a manifest locator or a directory into :class:`UnitEntry` items.

    Remote payloads are downloaded into *workdir*, which the caller owns and
    removes when the run finishes.
    """

    workdir: Path
    fetcher: UrlFetcher = field(default_factory=UrlFetcher)
    base_dir: Path = field(default_factory=Path.cwd)

    def resolve(self, manifest: str | None) -> ResolutionReport:
        """Resolve *manifest* (URL or path), or scan ``base_dir`` when None."""
        if manifest:
            return self.resolve_manifest(manifest)
        return self.discover_local()

    def resolve_manifest(self, manifest: str) -> ResolutionReport:
        """Resolve every usable entry listed in *manifest*."""
        text = self._read_manifest(manifest)
        items, warnings = parse_manifest(text)
        report = ResolutionReport(warnings=list(warnings), origin=manifest)

        remote_index = 0
        for item in items:
            if is_remote(item.locator):
                remote_index += 1
                entry = self._resolve_remote(item, remote_index, report)
            else:
                entry = self._resolve_local(item, report)
            if entry is not None:
                report.entries.append(entry)

        if not report.entries:
            raise ResolutionError(
                f"No valid entries found in manifest {manifest} (check manifest formatting)."
            )
        return report

    def discover_local(self) -> ResolutionReport:
        """Collect unit files in ``base_dir`` (non-recursive, sorted by name)."""
        report = ResolutionReport(origin=str(self.base_dir))
        try:
            children = sorted(self.base_dir.iterdir(), key=lambda child: child.name)
        except OSError as exc:
            raise ResolutionError(f"Cannot list {self.base_dir}: {exc}") from exc
        for child in children:
            if not child.is_file() or not child.name.endswith(UNIT_SUFFIXES):
                continue
            full = child.resolve()
            report.entries.append(
                UnitEntry(
                    description=f"{child.name}  (local)",
                    source=str(full),
                    payload_path=full,
                    destination_name=child.name,
                )
            )
        if not report.entries:
            suffixes = "/".join(UNIT_SUFFIXES)
            raise ResolutionError(
                f"No {suffixes} files found in {self.base_dir}. "
                "Use --manifest to pull from a remote list."
            )
        return report

    # ------------------------------------------------------------------
    def _read_manifest(self, manifest: str) -> str:
        if is_remote(manifest):
            target = self.workdir / "manifest.txt"
            try:
                self.fetcher.fetch(manifest, target)
            except FetchError as exc:
                raise ResolutionError(f"Failed to download manifest: {exc}") from exc
        else:
            target = Path(manifest).expanduser()
            if not target.is_absolute():
                target = self.base_dir / target
            if not target.is_file():
                raise ResolutionError(f"Manifest not found: {manifest}")
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ResolutionError(f"Failed to read manifest {manifest}: {exc}") from exc

    def _resolve_remote(
        self,
        item: ManifestEntry,
        index: int,
        report: ResolutionReport,
    ) -> UnitEntry | None:
        base = PurePosixPath(urllib.parse.urlsplit(item.locator).path).name
        if not base:
            report.warnings.append(f"Cannot derive a filename from {item.locator}; skipped.")
            return None
        destination = self._destination(item, base, report)
        if destination is None:
            return None
        target = self.workdir / f"{index:02d}_{base}"
        try:
            self.fetcher.fetch(item.locator, target)
        except FetchError as exc:
            report.warnings.append(f"Failed to download {item.locator}: {exc}; skipped.")
            return None
        if not _has_payload(target):
            report.warnings.append(f"Downloaded unit {item.locator} is empty; skipped.")
            return None
        return UnitEntry(
            description=f"{destination}  (from URL: {base})",
            source=item.locator,
            payload_path=target,
            destination_name=destination,
        )

    def _resolve_local(self, item: ManifestEntry, report: ResolutionReport) -> UnitEntry | None:
        candidate = Path(item.locator).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        if not candidate.is_file():
            report.warnings.append(f"Missing local file in manifest: {item.locator}")
            return None
        full = candidate.resolve()
        destination = self._destination(item, full.name, report)
        if destination is None:
            return None
        if not _has_payload(full):
            report.warnings.append(f"Local unit {item.locator} is empty; skipped.")
            return None
        return UnitEntry(
            description=f"{destination}  (from local: {full.name})",
            source=str(full),
            payload_path=full,
            destination_name=destination,
        )

    @staticmethod
    def _destination(item: ManifestEntry, base: str, report: ResolutionReport) -> str | None:
        destination = normalize_destination_name(item.label or base)
        if not is_valid_destination_name(destination):
            report.warnings.append(
                f"Invalid install name {destination!r} for {item.locator}; skipped."
            )
            return None
        return destination


def _has_payload(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


__all__ = [
    "ManifestEntry",
    "ResolutionError",
    "ResolutionReport",
    "SourceResolver",
    "UNIT_SUFFIXES",
    "UnitEntry",
    "is_valid_destination_name",
    "normalize_destination_name",
    "parse_manifest",
]
