"""Typer-powered command line interface for ``calderactl``.

``provision`` walks the full plan; the remaining commands expose individual
pieces of it (the sanitizer, the rendered application config, the plan
itself) so an operator can inspect a host before changing it.
"""
from __future__ import annotations

import logging
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .orchestrator import Orchestrator, ProvisionOutcome, ProvisionReport
from .plan import APP_CONFIG_TEMPLATE, application_context, build_plan, build_primitives
from .primitives import ProvisionSession
from .runner import CommandRunner
from .sanitizer import REPAIR_STEP_ID, sanitize
from .stages import StageExecutor, StageResult, StageStatus
from .templates import TemplateEngine, TemplateError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to calderactl's YAML config file.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report what would change without executing commands or writing files.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)

WILDCARD_HOSTS = {"0.0.0.0", "::", ""}

STATUS_STYLES = {
    StageStatus.SKIPPED: "dim",
    StageStatus.PERFORMED: "green",
    StageStatus.FAILED: "red",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision a host to run the MITRE CALDERA server.

        Every step is idempotent: re-running provision on a configured host
        skips work that is already done and rewrites generated files in full.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine

    def runner(self, *, dry_run: bool = False) -> CommandRunner:
        """Return a command runner honouring the elevation settings."""
        return CommandRunner(
            elevate=self.config.elevation.enabled,
            sudo_bin=self.config.elevation.sudo_bin,
            dry_run=dry_run,
        )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )
        return
    # Keep library warnings off the terminal; the console summary covers them.
    logging.getLogger("calderactl").addHandler(logging.NullHandler())


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the calderactl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every command and probe to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"calderactl {__version__}")
        raise typer.Exit(code=0)

    _configure_logging(verbose)
    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _print_stage_result(result: StageResult) -> None:
    style = STATUS_STYLES[result.status]
    label = "warning" if result.is_degraded else result.status.value
    if result.is_degraded:
        style = "yellow"
    message = escape((result.reason if result.is_failure else result.detail) or "")
    console.print(f"[{style}]{label:>9}[/{style}]  {result.stage}  {message}".rstrip())
    for warning in result.warnings:
        console.print(f"           [yellow]![/yellow] {escape(warning)}")


def _access_url(config: AppConfig) -> str:
    host = config.application.host
    shown = "<your_ip>" if host in WILDCARD_HOSTS else host
    return f"https://{shown}:{config.application.port}"


def _print_summary(config: AppConfig, report: ProvisionReport, *, dry_run: bool) -> None:
    counts = ", ".join(
        f"{report.count(status)} {status.value}" for status in StageStatus
    )
    console.print(f"Stages: {counts}")

    outcome = report.outcome
    if outcome is ProvisionOutcome.ABORTED:
        failure = report.failure
        reason = failure.reason if failure else "unknown error"
        phase = report.halted_phase.value if report.halted_phase else "unknown"
        console.print(
            f"[red]Provisioning aborted at stage '{report.halted_stage}' "
            f"(phase {phase}): {escape(reason or '')}[/red]"
        )
        return

    if dry_run:
        console.print("[yellow]Dry run[/yellow]: no commands were executed.")
        return

    if outcome is ProvisionOutcome.WARNINGS:
        console.print(
            f"[yellow]Provisioning completed with {len(report.warnings)} warning(s).[/yellow]"
        )
    else:
        console.print("[green]Provisioning complete.[/green]")

    console.print(f"Access CALDERA at: {_access_url(config)}")
    defaults = [user.username for user in config.application.users if user.uses_default_password]
    if defaults:
        console.print(
            "[yellow]Default credentials in use for: "
            f"{', '.join(defaults)}. Change them in {config.app_config_path}.[/yellow]"
        )
    if "--insecure" in config.service.exec_args:
        console.print(
            "For TLS, replace --insecure in the service ExecStart with --tls "
            "and provide certificates."
        )


def _record_report(op: OperationScope, report: ProvisionReport) -> None:
    changed = report.count(StageStatus.PERFORMED)
    context = {"state": report.state.value, "outcome": report.outcome.value}
    if report.outcome is ProvisionOutcome.ABORTED:
        failure = report.failure
        message = f"Aborted at {report.halted_stage}."
        op.error(
            message,
            errors=[failure.reason or message] if failure else None,
            warnings=report.warnings,
            rc=int(report.exit_code),
            context=context,
        )
    elif report.outcome is ProvisionOutcome.WARNINGS:
        op.warning(
            "Provisioning completed with warnings.",
            warnings=report.warnings,
            changed=changed,
            context=context,
        )
    else:
        op.success("Provisioning complete.", changed=changed, context=context)


@app.command()
def provision(
    ctx: typer.Context,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Run every provisioning stage in order, halting on the first fatal failure."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    runner = runtime.runner(dry_run=dry_run)
    primitives = build_primitives(config, runner, runtime.templates)
    session = ProvisionSession()
    plan = build_plan(config, primitives, session)

    with runtime.logger.operation(
        "provision",
        args={"dry_run": dry_run, "json": json_output},
        target={"kind": "host", "caldera_home": config.paths.caldera_home},
    ) as op:
        executor = StageExecutor(op, dry_run=dry_run)
        orchestrator = Orchestrator(
            executor,
            on_result=None if json_output else _print_stage_result,
        )
        report = orchestrator.run(plan)
        _record_report(op, report)

    if json_output:
        console.print_json(data=report.to_dict())
    else:
        _print_summary(config, report, dry_run=dry_run)

    if report.exit_code is not ExitCode.OK:
        raise typer.Exit(code=int(report.exit_code))


@app.command("plan")
def show_plan(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List the stages provision would run and whether each is already satisfied."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    primitives = build_primitives(config, runtime.runner(dry_run=True), runtime.templates)
    plan = build_plan(config, primitives, ProvisionSession())

    entries: list[dict[str, object]] = []
    with runtime.logger.operation(
        "plan",
        args={"json": json_output},
        target={"kind": "plan"},
    ) as op:
        for stage in plan:
            if stage.precondition is None:
                state = "always runs"
            else:
                try:
                    state = "satisfied" if stage.precondition() else "pending"
                except OSError as exc:
                    state = f"unknown ({exc})"
            entries.append(
                {
                    "stage": stage.name,
                    "phase": stage.phase.value,
                    "policy": stage.policy.value,
                    "state": state,
                    "description": stage.description,
                }
            )
        op.success(f"Listed {len(entries)} stage(s).", changed=0)

    if json_output:
        console.print_json(data={"stages": entries})
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="bold")
    table.add_column("Phase")
    table.add_column("Policy")
    table.add_column("State")
    table.add_column("Description")
    for entry in entries:
        table.add_row(
            str(entry["stage"]),
            str(entry["phase"]),
            str(entry["policy"]),
            str(entry["state"]),
            str(entry["description"]),
        )
    console.print(table)


@app.command("sanitize")
def sanitize_sources(ctx: typer.Context, dry_run: bool = DRY_RUN_OPTION) -> None:
    """Comment out denylisted apt source entries, keeping a .bak of each file."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    runner = runtime.runner(dry_run=dry_run)

    with runtime.logger.operation(
        "sanitize",
        args={"dry_run": dry_run},
        target={"kind": "apt-sources", "roots": list(config.sanitizer.roots)},
    ) as op:
        repairs = sanitize(
            config.sanitizer.roots,
            patterns=config.sanitizer.patterns,
            runner=runner,
        )
        for repair in repairs:
            op.add_step(REPAIR_STEP_ID, status="performed", detail=repair.description)
            console.print(repair.description)

        if not repairs:
            console.print("[green]No denylisted entries found.[/green]")
            op.success("No denylisted entries found.", changed=0)
            return
        if dry_run:
            console.print(f"[yellow]Dry run[/yellow]: {len(repairs)} file(s) would be repaired.")
            op.success("Dry run complete.", changed=0)
            return
        op.success(
            f"Repaired {len(repairs)} file(s).",
            changed=len(repairs),
            context={"backups": [repair.backup for repair in repairs if repair.backup_created]},
        )


@app.command("render-config")
def render_config(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the rendered configuration here instead of printing it.",
    ),
) -> None:
    """Render the application's local.yml from the resolved configuration."""
    runtime = _get_runtime(ctx)
    context = application_context(runtime.config)

    with runtime.logger.operation(
        "render-config",
        args={"output": output},
        target={"kind": "app-config"},
    ) as op:
        try:
            if output is None:
                content = runtime.templates.render_to_string(APP_CONFIG_TEMPLATE, context)
                console.print(content, end="", markup=False, highlight=False, soft_wrap=True)
                op.success("Rendered application configuration.", changed=0)
                return
            changed = runtime.templates.render_to_path(
                APP_CONFIG_TEMPLATE, output, context, mode=0o600
            )
        except (TemplateError, OSError) as exc:
            _command_error(op, f"Rendering failed: {exc}")
        message = f"Wrote {output}." if changed else f"{output} already up to date."
        console.print(message)
        op.success(message, changed=int(changed))


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Display the effective configuration after merges, as JSON."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("config show", target={"kind": "config"}) as op:
        console.print_json(data=runtime.config.to_dict())
        op.success("Rendered configuration as JSON.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
