from __future__ import annotations

import logging
import os
import shlex
import sys
from typing import List, Optional

import typer

from taskcheck.core import (
    catalog as catalog_core,
    colors,
    config as config_core,
    envelope,
    logging_setup,
    runner,
    smoke as smoke_core,
)
from taskcheck.core.catalog import AmbiguousTaskError, CatalogError, TaskNotFoundError
from taskcheck.core.jsonio import dumps
from taskcheck.core.process import ProcessFailedError, ProcessTimeoutError, SpawnError
from taskcheck.core.smoke import ColorLeakError, ColorMissingError

VERSION = "0.1.0"

app = typer.Typer(add_completion=False, help="taskcheck - named command lines, a task runner and a CLI color smoke check")


def _emit(out: dict) -> None:
    typer.echo(dumps(out))
    if out.get("ok") is True:
        raise typer.Exit(code=0)
    raise typer.Exit(code=1)


def _fail(command: str, json_output: bool, *, error_type: str, message: str, details: dict | None = None) -> None:
    if json_output:
        _emit(envelope.err(command=command, error_type=error_type, message=message, details=details))
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _trim(text: str, limit: int = 2000) -> str:
    return text if len(text) <= limit else text[:limit]


def _color() -> bool:
    return colors.color_enabled(sys.stdout)


def _load_catalog(command: str, path: str | None, json_output: bool) -> catalog_core.Catalog:
    try:
        return catalog_core.load_catalog(path)
    except CatalogError as exc:
        _fail(command, json_output, error_type="INVALID_ARGUMENT", message=str(exc), details={"catalog": path})
        raise


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG|INFO|WARNING|ERROR (default: TASKCHECK_LOG_LEVEL or WARNING)"),
):
    try:
        logging_setup.setup_logging(log_level)
    except config_core.ConfigError as exc:
        # Commands report config errors themselves; logging falls back to the default.
        logging_setup.setup_logging(logging_setup.DEFAULT_LEVEL)
        logging.getLogger(__name__).warning("Ignoring configured log level: %s", exc)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


# ---- Global commands ----
@app.command()
def version(json_output: bool = typer.Option(False, "--json", help="Output JSON envelope")):
    if json_output:
        _emit(envelope.ok(command="version", data={"version": VERSION}))
    typer.echo(f"taskcheck {VERSION}")


@app.command("list")
def list_tasks(
    grep: Optional[str] = typer.Option(None, "--grep", help="Only tasks whose name or description contains this text"),
    catalog_path: Optional[str] = typer.Option(None, "--catalog", help="Catalog file (default: TASKCHECK_CATALOG or ./taskcheck.toml)"),
    show_all: bool = typer.Option(False, "--all", help="Include hidden tasks"),
    json_output: bool = typer.Option(False, "--json"),
):
    catalog = _load_catalog("list", catalog_path, json_output)
    if grep is not None:
        tasks = catalog.grep(grep, include_hidden=show_all)
    else:
        tasks = [catalog.tasks[name] for name in catalog.names(include_hidden=show_all)]

    if json_output:
        _emit(
            envelope.ok(
                command="list",
                data={"catalog": str(catalog.path), "grep": grep, "tasks": [task.to_dict() for task in tasks]},
            )
        )

    use_color = _color()
    for task in tasks:
        line = f"  {task.name}"
        if task.description:
            line += "  " + colors.muted(task.description)
        typer.echo(line, color=use_color)
    typer.echo(colors.muted(f"{len(tasks)} tasks"), color=use_color)


@app.command()
def run(
    names: Optional[List[str]] = typer.Argument(None, help="Task names; dotted prefixes such as t.u are accepted"),
    grep: Optional[str] = typer.Option(None, "--grep", help="Run every task whose name or description contains this text"),
    catalog_path: Optional[str] = typer.Option(None, "--catalog"),
    json_output: bool = typer.Option(False, "--json"),
):
    if names and grep is not None:
        _fail("run", json_output, error_type="INVALID_ARGUMENT", message="Use task names or --grep, not both")
    catalog = _load_catalog("run", catalog_path, json_output)
    try:
        if grep is not None:
            outcomes = runner.run_matching(catalog, grep)
        else:
            outcomes = runner.run_tasks(catalog, names or ["default"])
    except TaskNotFoundError as exc:
        _fail("run", json_output, error_type="NOT_FOUND", message=str(exc), details={"name": exc.name})
        raise
    except AmbiguousTaskError as exc:
        _fail(
            "run",
            json_output,
            error_type="INVALID_ARGUMENT",
            message=str(exc),
            details={"name": exc.name, "candidates": exc.candidates},
        )
        raise
    except CatalogError as exc:
        _fail("run", json_output, error_type="INVALID_ARGUMENT", message=str(exc))
        raise

    code = runner.exit_code(outcomes)
    passing = sum(1 for outcome in outcomes if outcome.ok)
    failing = len(outcomes) - passing
    total_ms = round(sum(outcome.duration_s for outcome in outcomes) * 1000)

    if json_output:
        data = {"grep": grep, "passing": passing, "failing": failing, "tasks": [o.to_dict() for o in outcomes]}
        if code == 0:
            _emit(envelope.ok(command="run", data=data))
        failed_task = next(outcome for outcome in outcomes if not outcome.ok)
        _emit(
            envelope.err(
                command="run",
                error_type="TASK_FAILED",
                message=f"Task {failed_task.name!r} exited with code {failed_task.returncode}",
                details={**data, "stderr": _trim(failed_task.stderr)},
            )
        )

    use_color = _color()
    for outcome in outcomes:
        if outcome.stdout:
            typer.echo(outcome.stdout, nl=False, color=use_color)
        if outcome.stderr:
            typer.echo(outcome.stderr, nl=False, err=True)
        mark = colors.passed("ok") if outcome.ok else colors.failed(outcome.error or f"exit {outcome.returncode}")
        typer.echo(f"  {mark} {outcome.name} " + colors.muted(f"({round(outcome.duration_s * 1000)}ms)"), color=use_color)
    typer.echo("", color=use_color)
    typer.echo("  " + colors.passed(f"{passing} passing") + " " + colors.muted(f"({total_ms}ms)"), color=use_color)
    if failing:
        typer.echo("  " + colors.failed(f"{failing} failing"), color=use_color)
    raise typer.Exit(code=code)


@app.command()
def smoke(
    tool: Optional[str] = typer.Option(None, "--tool", help="Command line of the tool under test (default: taskcheck run)"),
    grep_flag: str = typer.Option(smoke_core.DEFAULT_GREP_FLAG, "--grep-flag"),
    filter_value: Optional[str] = typer.Option(None, "--filter", help="Name filter that matches nothing"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.1, help="Seconds before the tool is killed"),
    force_color: bool = typer.Option(False, "--force-color", help=f"Negative control: set {colors.FORCE_COLOR_ENV} and expect color"),
    json_output: bool = typer.Option(False, "--json"),
):
    """Check that a tool writes no gray ANSI escape when its stdout is a pipe."""
    try:
        argv = shlex.split(tool) if tool else smoke_core.default_tool()
    except ValueError as exc:
        _fail("smoke", json_output, error_type="INVALID_ARGUMENT", message=f"--tool: {exc}", details={"tool": tool})
        raise
    if not argv:
        _fail("smoke", json_output, error_type="INVALID_ARGUMENT", message="--tool must not be empty")
    try:
        if filter_value is None:
            filter_value = config_core.smoke_filter() or smoke_core.DEFAULT_FILTER
        if timeout is None:
            timeout = config_core.smoke_timeout() or smoke_core.DEFAULT_TIMEOUT
    except config_core.ConfigError as exc:
        _fail("smoke", json_output, error_type="INVALID_ARGUMENT", message=str(exc), details={"config": config_core.config_path()})
        raise

    check = smoke_core.check_color_forced if force_color else smoke_core.check_no_color
    details = {"cmd": [*argv, grep_flag, filter_value], "forced": force_color, "timeout": timeout}
    try:
        report = check(argv, grep_flag=grep_flag, filter_value=filter_value, timeout=timeout)
    except SpawnError as exc:
        _fail("smoke", json_output, error_type="SPAWN_FAILED", message=str(exc), details={**details, "reason": exc.reason})
        raise
    except ProcessTimeoutError as exc:
        _fail("smoke", json_output, error_type="TIMEOUT", message=str(exc), details=details)
        raise
    except ProcessFailedError as exc:
        _fail(
            "smoke",
            json_output,
            error_type="PROCESS_FAILED",
            message=str(exc),
            details={**details, "returncode": exc.returncode, "stderr": _trim(exc.stderr)},
        )
        raise
    except ColorLeakError as exc:
        _fail("smoke", json_output, error_type="COLOR_LEAK", message=str(exc), details={**details, "stdout": _trim(exc.stdout)})
        raise
    except ColorMissingError as exc:
        _fail("smoke", json_output, error_type="COLOR_MISSING", message=str(exc), details={**details, "stdout": _trim(exc.stdout)})
        raise

    if json_output:
        _emit(envelope.ok(command="smoke", data=report.to_dict(), limits={"timeout": timeout}))
    verdict = "color present as forced" if report.forced else "no color in piped output"
    typer.echo(f"smoke ok: {verdict} ({round(report.result.duration_s * 1000)}ms)")


@app.command()
def doctor(json_output: bool = typer.Option(False, "--json")):
    checks: list[dict] = []

    config_path = config_core.config_path()
    config_details: dict = {
        "path": str(config_path),
        "exists": config_path.exists(),
        "override": os.environ.get(config_core.CONFIG_PATH_ENV),
    }
    try:
        catalog_file = config_core.catalog_file()
        config_details["settings"] = {
            "catalog.path": str(catalog_file) if catalog_file else None,
            "smoke.filter": config_core.smoke_filter(),
            "smoke.timeout": config_core.smoke_timeout(),
            "log.level": config_core.log_level(),
        }
    except config_core.ConfigError as exc:
        config_details["error"] = str(exc)
    checks.append({"name": "config.path", "ok": "error" not in config_details, "details": config_details})

    catalog_details: dict = {"override": os.environ.get("TASKCHECK_CATALOG")}
    try:
        path = catalog_core.catalog_path()
        catalog_details.update(path=str(path), exists=path.exists())
        loaded = catalog_core.load_catalog(path)
    except CatalogError as exc:
        catalog_details["error"] = str(exc)
        checks.append({"name": "catalog", "ok": False, "details": catalog_details})
    else:
        catalog_details["tasks"] = len(loaded.tasks)
        checks.append({"name": "catalog", "ok": True, "details": catalog_details})

    checks.append(
        {
            "name": "color",
            "ok": True,
            "details": {
                colors.FORCE_COLOR_ENV: os.environ.get(colors.FORCE_COLOR_ENV),
                colors.NO_COLOR_ENV: os.environ.get(colors.NO_COLOR_ENV),
                "stdout_isatty": sys.stdout.isatty(),
                "enabled": _color(),
            },
        }
    )

    if json_output:
        _emit(envelope.ok(command="doctor", data={"checks": checks}))
    for check in checks:
        status = "ok" if check["ok"] else "FAIL"
        typer.echo(f"{status:4} {check['name']}: {check['details']}")


if __name__ == "__main__":
    app()
