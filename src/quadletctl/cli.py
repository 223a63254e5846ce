"""Typer-powered command line for ``quadletctl``.

``quadletctl install`` runs the whole pipeline: resolve unit sources, select a
subset, fill template tokens, pre-create bind-mount host directories, deploy
into the Quadlet unit directory, then reload systemd and start/enable the
generated services.
"""
from __future__ import annotations

import json
import os
import tempfile
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .activation import ActivationReport, Activator
from .config import AppConfig, ConfigurationError, load_config
from .deploy import Deployer, DeploymentError, DeploymentRecord
from .exit_codes import ExitCode
from .hostpaths import materialize_host_paths
from .logging import OperationScope, StructuredLogger
from .providers import SystemdError, SystemdProvider, UrlFetcher
from .selection import SelectionError, parse_selection
from .sources import ResolutionError, ResolutionReport, SourceResolver, UnitEntry
from .templates import (
    MissingTemplateValueError,
    TemplateEngine,
    WorkingUnit,
    parse_var_assignments,
)

console = Console()
err_console = Console(stderr=True)

SELECTION_PROMPT = "Select by number/comma, ranges (e.g. 1,3-4), filenames, or 'all'"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to quadletctl's YAML config file.",
)

MANIFEST_OPTION = typer.Option(
    None,
    "--manifest",
    help=(
        "URL (raw) or local path to a manifest listing .container/.pod sources. "
        "Entries may be separated by newlines or spaces; label one with "
        "'source|install-name.container'."
    ),
)

SCAN_OPTION = typer.Option(
    False,
    "--scan",
    help="Ignore any configured manifest and use .container/.pod files in the current directory.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install Podman Quadlet units into systemd.

        Gathers .container/.pod files from a manifest or the current directory,
        fills in {{TOKEN}} placeholders, deploys them to the Quadlet unit
        directory and starts/enables the generated services.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    systemd_provider: SystemdProvider
    fetcher: UrlFetcher


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigurationError as exc:
        err_console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        systemd_provider=SystemdProvider(systemctl_bin=config.systemd.systemctl_bin),
        fetcher=UrlFetcher(timeout=config.fetch_timeout),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the quadletctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"quadletctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a one-line diagnostic on stderr and terminate the command."""
    err_console.print(f"[red]Error: {escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _is_root() -> bool:
    return os.geteuid() == 0


def _require_environment(runtime: RuntimeContext, op: OperationScope) -> None:
    """Fail unless running as root with systemctl available."""
    if not _is_root():
        _command_error(op, "Please run as root (e.g., sudo quadletctl install).", rc=ExitCode.ENVIRONMENT)
    if not runtime.systemd_provider.is_available():
        _command_error(
            op,
            f"{runtime.systemd_provider.systemctl_bin} not found.",
            rc=ExitCode.ENVIRONMENT,
        )
    op.add_step("environment.check", status="success")


def _choose_manifest(config: AppConfig, manifest: str | None, scan: bool) -> str | None:
    if scan:
        return None
    if manifest:
        return manifest
    if config.manifest:
        console.print(
            f"No --manifest provided; using configured manifest: {escape(config.manifest)}"
        )
    return config.manifest


def _resolve_sources(
    runtime: RuntimeContext,
    op: OperationScope,
    manifest: str | None,
    workdir: Path,
) -> ResolutionReport:
    if manifest:
        console.print(f"Using manifest: {escape(manifest)}")
    resolver = SourceResolver(workdir=workdir, fetcher=runtime.fetcher)
    try:
        report = resolver.resolve(manifest)
    except ResolutionError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    op.add_step(
        "sources.resolve",
        status="warning" if report.warnings else "success",
        detail=f"entries={len(report.entries)} warnings={len(report.warnings)}",
    )
    return report


def _render_entries(entries: Sequence[UnitEntry]) -> None:
    table = Table(title="Discovered Quadlet entries", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Install name")
    table.add_column("Source")
    for position, entry in enumerate(entries, start=1):
        origin = entry.description.partition("  ")[2] or entry.source
        table.add_row(str(position), escape(entry.destination_name), escape(origin))
    console.print(table)


def _render_summary(
    records: Sequence[DeploymentRecord],
    report: ActivationReport,
    backup_dir: Path | None,
) -> None:
    console.print()
    console.print("[bold]Done![/bold]")
    console.print("Services started (attempted) and enabled/skipped as appropriate:")
    for service in report.started:
        console.print(f"  - {service}")
    if report.started:
        console.print()
        console.print("Manage with:")
        for service in report.started:
            console.print(f"  systemctl status {service}")
    console.print()
    console.print(
        "If you edit any units, run:  systemctl daemon-reload && systemctl restart <service>"
    )
    replaced = [record for record in records if record.backup is not None]
    if backup_dir is not None:
        console.print(f"Backups of replaced units ({len(replaced)}): {backup_dir}")
    else:
        console.print("Backups of replaced units: none")


@app.command()
def install(
    ctx: typer.Context,
    manifest: str | None = MANIFEST_OPTION,
    scan: bool = SCAN_OPTION,
    install_dir: Path | None = typer.Option(
        None,
        "--install-dir",
        help="Path injected for {{INSTALL_DIR}} / %%INSTALL_DIR%% (default from config).",
    ),
    unit_dir: Path | None = typer.Option(
        None,
        "--unit-dir",
        help="Override the Quadlet unit directory for this invocation.",
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Run without prompts. Requires --select and any needed --var KEY=VALUE.",
    ),
    select: str | None = typer.Option(
        None,
        "--select",
        help="Comma-separated numbers/ranges/filenames (or 'all') to install.",
    ),
    var: list[str] | None = typer.Option(
        None,
        "--var",
        metavar="KEY=VALUE",
        help=(
            "Provide a template variable (repeatable), e.g. --var GATEWAY_HOST_PORT=8080. "
            "An empty value counts as not provided."
        ),
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Resolve, select and render units, then report without installing.",
    ),
) -> None:
    """Install selected Quadlet units and start their services."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    target_dir = (unit_dir or config.unit_dir).expanduser()
    interactive = not non_interactive

    with runtime.logger.operation(
        "install",
        args={
            "manifest": manifest,
            "scan": scan,
            "install_dir": install_dir,
            "non_interactive": non_interactive,
            "select": select,
            "vars": sorted(_var_names(var)),
            "dry_run": dry_run,
        },
        target={"kind": "units", "unit_dir": target_dir},
    ) as op:
        try:
            explicit = parse_var_assignments(var or [])
        except ConfigurationError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        if non_interactive and not (select or "").strip():
            _command_error(op, "--non-interactive requires --select.", rc=ExitCode.VALIDATION)

        if not dry_run:
            _require_environment(runtime, op)

        source = _choose_manifest(config, manifest, scan)

        resolved_install_dir = (install_dir or config.install_dir).expanduser()
        if interactive and install_dir is None:
            answer = typer.prompt(
                "Install/data path",
                default=str(resolved_install_dir),
                show_default=True,
            )
            resolved_install_dir = Path(str(answer)).expanduser()

        with tempfile.TemporaryDirectory(prefix="quadletctl-") as workdir:
            report = _resolve_sources(runtime, op, source, Path(workdir))
            _render_entries(report.entries)

            expression = select
            if not (expression or "").strip() and interactive:
                expression = str(typer.prompt(SELECTION_PROMPT, default="", show_default=False))
            try:
                selection = parse_selection(expression, report.entries)
            except SelectionError as exc:
                _command_error(op, str(exc), rc=ExitCode.VALIDATION)
            selected = selection.entries(report.entries)
            op.add_step(
                "selection",
                status="success",
                detail=", ".join(entry.destination_name for entry in selected),
            )

            try:
                units = [WorkingUnit.from_entry(entry) for entry in selected]
            except (OSError, UnicodeDecodeError) as exc:
                _command_error(op, f"Failed to read unit payload: {exc}", rc=ExitCode.ENVIRONMENT)

        try:
            engine = TemplateEngine.build(
                str(resolved_install_dir),
                explicit=explicit,
                defaults=config.template_defaults,
                interactive=interactive,
            )
            context = engine.prepare(units)
            engine.render_units(units)
        except (MissingTemplateValueError, ConfigurationError) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        op.add_step("templates.render", status="success", detail=f"tokens={len(context.values)}")

        deployer = Deployer(unit_dir=target_dir, mode=config.unit_mode)
        if dry_run:
            _report_dry_run(op, units, deployer, resolved_install_dir)
            return

        console.print()
        console.print(
            "Injecting variables, ensuring host paths exist, and installing to "
            f"{escape(str(target_dir))} ..."
        )
        try:
            resolved_install_dir.mkdir(parents=True, exist_ok=True)
            resolved_install_dir.chmod(0o755)
        except OSError as exc:
            _command_error(
                op,
                f"Failed to prepare install directory {resolved_install_dir}: {exc}",
                rc=ExitCode.PROVIDER,
            )

        hostpaths = materialize_host_paths(unit.payload for unit in units)
        for warning in hostpaths.warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        op.add_step(
            "hostpaths.create",
            status="warning" if hostpaths.warnings else "success",
            detail=f"created={len(hostpaths.created)}",
        )

        try:
            records = deployer.deploy_all(units)
        except DeploymentError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        for record in records:
            if record.backup is not None:
                console.print(
                    f"  Backing up existing {escape(record.destination_name)} -> {record.backup}"
                )
        op.add_step("deploy", status="success", detail=f"units={len(records)}")

        console.print()
        console.print("Reloading systemd daemon, then starting and enabling services ...")
        activator = Activator(runtime.systemd_provider)
        try:
            activation = activator.activate(records)
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        for note in activation.notes:
            console.print(f"Info: {escape(note)}")
        for warning in activation.warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(str(warning))}")

        _render_summary(records, activation, deployer.backup_dir)

        log_context: dict[str, object] = {
            "installed": [str(record.destination) for record in records],
            "started": activation.started,
        }
        backups = [str(record.backup) for record in records if record.backup is not None]
        if activation.warnings:
            op.warning(
                "Units installed with activation warnings.",
                warnings=[str(warning) for warning in activation.warnings],
                changed=len(records),
                backups=backups,
                context=log_context,
            )
        else:
            op.success(
                "Units installed and activated.",
                changed=len(records),
                backups=backups,
                context=log_context,
            )


def _var_names(pairs: Sequence[str] | None) -> set[str]:
    return {pair.partition("=")[0].strip() for pair in pairs or []}


def _report_dry_run(
    op: OperationScope,
    units: Sequence[WorkingUnit],
    deployer: Deployer,
    install_dir: Path,
) -> None:
    hostpaths = materialize_host_paths((unit.payload for unit in units), dry_run=True)
    console.print(f"[yellow]Dry run[/yellow]: install dir {install_dir}")
    for unit in units:
        destination = deployer.destination_for(unit.entry.destination_name)
        note = " (existing file would be backed up)" if destination.exists() else ""
        console.print(f"  would install {destination}{note}")
    for path in hostpaths.created:
        console.print(f"  would create {path}")
    op.add_step("deploy", status="skipped", detail="dry-run")
    op.success(
        "Dry run complete.",
        changed=0,
        context={"units": [unit.entry.destination_name for unit in units]},
    )


@app.command("list")
def list_entries(
    ctx: typer.Context,
    manifest: str | None = MANIFEST_OPTION,
    scan: bool = SCAN_OPTION,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit entries as JSON instead of a table.",
    ),
) -> None:
    """List the unit entries a manifest or directory would offer."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"manifest": manifest, "scan": scan, "json": json_output},
        target={"kind": "sources"},
    ) as op:
        source = _choose_manifest(runtime.config, manifest, scan)
        with tempfile.TemporaryDirectory(prefix="quadletctl-") as workdir:
            report = _resolve_sources(runtime, op, source, Path(workdir))
        if json_output:
            console.print_json(data={"entries": [_entry_payload(e) for e in report.entries]})
        else:
            _render_entries(report.entries)
        op.success("Listed unit entries.", changed=0, context={"count": len(report.entries)})


def _entry_payload(entry: UnitEntry) -> Mapping[str, object]:
    return {
        "install_name": entry.destination_name,
        "source": entry.source,
        "description": entry.description,
    }


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, escape(rendered))

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
