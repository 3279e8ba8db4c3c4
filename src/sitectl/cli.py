"""Typer-powered command line for ``sitectl``.

Each subcommand performs one lifecycle action for a single domain. Actions are
mutually exclusive by construction: ``all`` is the only composite and runs
``conf``, ``copy``, ``enable``, and ``ssl`` in that order.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .bootstrap import BootstrapResult, CertState
from .config import AppConfig, ConfigError, load_config
from .domains import SiteOptions, normalize_domain_input
from .errors import IssuanceFailedError, SiteError
from .exit_codes import ExitCode
from .health import HealthReport, ProbeStatus
from .lifecycle import PrerequisiteReport, SiteController
from .logging import OperationScope, StructuredLogger
from .templates import TemplateEngine, TemplateRenderError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to sitectl's YAML config file.",
)

DOMAIN_OPTION = typer.Option(
    None,
    "--domain",
    "-d",
    help="Domain to operate on (prompted when omitted).",
)

WWW_OPTION = typer.Option(
    False,
    "--www",
    "-w",
    help="Redirect www.<domain> to <domain> in dedicated server blocks.",
)

CONFIRM_OPTION = typer.Option(
    None,
    "--confirm",
    help="Confirm removal non-interactively by passing the exact domain name.",
)

STRICT_OPTION = typer.Option(
    False,
    "--strict",
    help="Count a failing nginx config test even when HTTPS responds.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the report as JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Static-site nginx lifecycle manager.

        Generates per-domain nginx configs, publishes and enables them after an
        isolated `nginx -t`, bootstraps Let's Encrypt certificates via the
        webroot challenge, checks site health, and removes sites.
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
    templates: TemplateEngine
    controller: SiteController


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    config = load_config(config_file=config_file)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    controller = SiteController.from_config(config, templates)
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        controller=controller,
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
        help="Show the sitectl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    try:
        runtime = _ensure_runtime(ctx, config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"sitectl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    hint: str | None = None,
    quiet: bool = False,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    if not quiet:
        console.print(f"[red]{escape(message)}[/red]")
        if hint:
            console.print(f"[dim]{escape(hint)}[/dim]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


@contextmanager
def _site_errors(op: OperationScope) -> Iterator[None]:
    """Translate domain errors into exit codes."""
    try:
        yield
    except SiteError as exc:
        _command_error(op, str(exc), rc=exc.exit_code, hint=exc.hint)
    except TemplateRenderError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)


def _domain_argument(domain: str | None) -> str:
    if domain is not None:
        return domain
    return normalize_domain_input(typer.prompt("Domain name"))


def _target(domain: str) -> dict[str, object]:
    return {"kind": "site", "domain": domain}


def _report_prerequisites(report: PrerequisiteReport) -> None:
    if report.nginx_installed:
        console.print("[green]Nginx installed.[/green]")
    if report.enabled_on_boot:
        console.print("Enabled nginx to start on boot.")
    if report.firewall_missing:
        ports = "/".join(report.firewall_missing)
        console.print(f"[yellow]UFW firewall is active but ports {ports} may not be open.[/yellow]")
        console.print("[yellow]Run: sudo ufw allow 'Nginx Full'[/yellow]")


def _print_next_steps(runtime: RuntimeContext, domain: str) -> None:
    content_dir = runtime.config.content_dir(domain)
    console.print(f"   Webroot: {content_dir}/")
    console.print("   Upload files:")
    console.print(f"   sudo cp -r /path/to/your/website/* {content_dir}/")
    console.print(f"   sudo chown -R www-data:www-data {content_dir}/")


def _finish_bootstrap(op: OperationScope, result: BootstrapResult, summary: str) -> None:
    if result.state is CertState.FAILED:
        raise IssuanceFailedError(result.domain, result.reason or "")
    if result.certificate_reused:
        console.print(f"Certificate for {result.domain} already present; request skipped.")
    console.print(f"[green]SSL enabled for {result.domain}![/green]")
    console.print(f"Visit: https://{result.domain}")
    op.success(summary, changed=1, context=result.to_dict())


def _format_status(status: ProbeStatus) -> str:
    if status is ProbeStatus.PASS:
        return "[green]PASS[/green]"
    if status is ProbeStatus.WARN:
        return "[yellow]WARN[/yellow]"
    return "[red]FAIL[/red]"


def _render_health_report(report: HealthReport, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=report.to_dict())
        return

    console.print(f"[bold]Health check: {report.domain}[/bold]")
    table = Table("Probe", "Status", "Details")
    for result in report.results:
        table.add_row(result.id, _format_status(result.status), escape(result.message))
    console.print(table)
    for probe_id in report.overrides:
        console.print(
            f"[yellow]Override:[/yellow] '{probe_id}' failure demoted because HTTPS responds "
            "(use --strict to count it)."
        )
    if report.healthy:
        console.print(f"[green]{report.domain} is healthy! All checks passed.[/green]")
        return
    console.print("Common fixes:")
    for result in report.results:
        if result.status is ProbeStatus.FAIL and result.remediation:
            console.print(f"- {result.id}: {result.remediation}")


# ---------------------------------------------------------------------------
# Lifecycle commands
# ---------------------------------------------------------------------------


@app.command()
def conf(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    www: bool = WWW_OPTION,
) -> None:
    """Generate <domain>.conf in the staging directory."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation(
        "conf",
        args={"domain": name, "www": www},
        target=_target(name),
    ) as op:
        with _site_errors(op):
            options = SiteOptions.build(name, www_redirect=www)
            artifact = runtime.controller.generate(options, op=op)
        kind = "HTTPS" if artifact.https else "HTTP-only"
        console.print(f"Generated {kind} config {artifact.path}")
        op.success(
            f"Generated {kind} config.",
            changed=1 if artifact.changed else 0,
            context={"path": artifact.path, "https": artifact.https},
        )


@app.command("copy")
def copy_config(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
) -> None:
    """Create the webroot and copy the staged config into sites-available."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation("copy", args={"domain": name}, target=_target(name)) as op:
        with _site_errors(op):
            options = SiteOptions.build(name)
            _report_prerequisites(runtime.controller.ensure_prerequisites(op=op))
            changed = runtime.controller.publish(options.domain, op=op)
        console.print(f"Created webroot: {runtime.config.content_dir(options.domain)}")
        console.print("Copied config to nginx sites-available")
        op.success("Published site configuration.", changed=1 if changed else 0)


@app.command()
def enable(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
) -> None:
    """Enable the site after validating its config in isolation."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation("enable", args={"domain": name}, target=_target(name)) as op:
        with _site_errors(op):
            options = SiteOptions.build(name)
            _report_prerequisites(runtime.controller.ensure_prerequisites(op=op))
            result = runtime.controller.activate(options.domain, op=op)
        console.print(f"[green]{options.domain} enabled and configuration validated[/green]")
        _print_next_steps(runtime, options.domain)
        op.success(
            "Site enabled.",
            changed=0 if result.was_active else 1,
            context={"quarantined": list(result.quarantined)},
        )


@app.command()
def ssl(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    www: bool = WWW_OPTION,
) -> None:
    """Obtain a Let's Encrypt certificate and switch the site to HTTPS."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation(
        "ssl",
        args={"domain": name, "www": www},
        target=_target(name),
    ) as op:
        with _site_errors(op):
            options = SiteOptions.build(name, www_redirect=www)
            _report_prerequisites(runtime.controller.ensure_prerequisites(op=op))
            result = runtime.controller.bootstrap_ssl(options, op=op)
            _finish_bootstrap(op, result, "SSL setup complete.")


@app.command("all")
def all_steps(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    www: bool = WWW_OPTION,
) -> None:
    """Run conf, copy, enable, and ssl in order."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation(
        "all",
        args={"domain": name, "www": www},
        target=_target(name),
    ) as op:
        with _site_errors(op):
            options = SiteOptions.build(name, www_redirect=www)
            _report_prerequisites(runtime.controller.ensure_prerequisites(op=op))
            result = runtime.controller.full(options, op=op)
            _print_next_steps(runtime, options.domain)
            _finish_bootstrap(op, result, "Site provisioned with HTTPS.")


@app.command()
def check(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    strict: bool = STRICT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Run health probes for the site."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation(
        "check",
        args={"domain": name, "strict": strict, "json": json_output},
        target=_target(name),
    ) as op:
        with _site_errors(op):
            options = SiteOptions.build(name)
        report = runtime.controller.check(
            options.domain,
            https_overrides_config_check=False if strict else None,
        )
        _render_health_report(report, json_output=json_output)
        context = {"failing": report.failing, "overrides": list(report.overrides)}
        if not report.healthy:
            failures = [
                f"{result.id}: {result.message}"
                for result in report.results
                if result.status is ProbeStatus.FAIL
            ]
            _command_error(
                op,
                f"{options.domain} has {report.failing} issue(s) that need attention.",
                rc=ExitCode.UNHEALTHY,
                errors=failures,
                quiet=json_output,
            )
        warnings = [
            f"{result.id}: {result.message}"
            for result in report.results
            if result.status is ProbeStatus.WARN
        ]
        if warnings:
            op.warning("Site healthy with warnings.", warnings=warnings, context=context)
        else:
            op.success("Site healthy.", context=context)


@app.command()
def remove(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    confirm: str | None = CONFIRM_OPTION,
) -> None:
    """Permanently remove the site, its certificate, and its files."""
    runtime = _get_runtime(ctx)
    name = _domain_argument(domain)
    with runtime.logger.operation(
        "remove",
        args={"domain": name, "confirm": confirm is not None},
        target=_target(name),
    ) as op:
        with _site_errors(op):
            options = SiteOptions.build(name)
        removal = runtime.controller.removal
        console.print(f"[yellow]REMOVING SITE: {options.domain}[/yellow]")
        console.print("[yellow]This will permanently delete:[/yellow]")
        for label, path in removal.planned_paths(options.domain).items():
            console.print(f"- {label}: {path}")

        answer = confirm
        if answer is None:
            answer = typer.prompt(
                f"Type the domain name ({options.domain}) to confirm",
                default="",
                show_default=False,
            )
        result = runtime.controller.remove(options.domain, answer, op=op)
        if not result.confirmed:
            console.print("Removal cancelled")
            op.warning("Removal cancelled.", warnings=["confirmation did not match"])
            raise typer.Exit(code=int(ExitCode.CANCELLED))

        for step in result.steps:
            if step.status == "warning":
                console.print(f"[yellow]{escape(step.detail or step.name)}[/yellow]")
            elif step.status == "success":
                console.print(escape(step.detail or step.name))
        console.print(f"[green]Site {options.domain} completely removed![/green]")
        changed = sum(1 for step in result.steps if step.status == "success")
        if result.warnings:
            op.warning("Site removed with warnings.", warnings=result.warnings, changed=changed)
        else:
            op.success("Site removed.", changed=changed)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


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
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
