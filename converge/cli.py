"""
Converge CLI - Main entry point.

    converge plan webserver.yaml
    converge apply webserver.yaml --yes
    converge output webserver.yaml --json
    converge destroy webserver.yaml --yes
    converge state list

Exit codes: 0 success, 1 apply failed or was cancelled, 2 invalid
configuration, declarations or plan.
"""

from __future__ import annotations

import asyncio
import importlib
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import click
from loguru import logger

from converge import __version__
from converge.config import load_config
from converge.config.constants import MAX_CONCURRENCY_LIMIT, SENSITIVE_PLACEHOLDER
from converge.core.exceptions import (
    ConfigurationError,
    ConvergeError,
    GraphError,
    PlanError,
)
from converge.engine import Engine, PlanReport
from converge.model import load_declarations
from converge.providers import ProviderRegistry, build_registry
from converge.state import StateRepository, StateStore
from converge.ui import ConsoleUI
from converge.utils.logger import setup_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

ui = ConsoleUI()


def _exit_code_for(error: ConvergeError) -> int:
    if isinstance(error, (ConfigurationError, GraphError, PlanError)):
        return EXIT_INVALID
    return EXIT_FAILED


def load_provider_registry(spec: str | None, data_dir: Path) -> ProviderRegistry:
    """
    Build the provider registry.

    Args:
        spec: "module:callable" returning a ProviderRegistry, or None for
              the simulated cloud persisted in data_dir
        data_dir: Directory next to the state file
    """
    if not spec:
        return build_registry(data_dir=data_dir)

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Provider must be given as 'module:callable', got {spec!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load provider {spec!r}: {e}") from e

    registry = factory()
    if not isinstance(registry, ProviderRegistry):
        raise ConfigurationError(f"Provider factory {spec!r} did not return a ProviderRegistry")
    return registry


def _engine(ctx: click.Context) -> Engine:
    obj = ctx.obj
    config = obj["config"]
    state_path: Path = config.state_path
    registry = load_provider_registry(obj["provider"], state_path.parent)
    store = StateStore(StateRepository(state_path))
    return Engine(registry, store, config.engine)


def _run(coro: Any) -> Any:
    return asyncio.run(coro)


def _fail(error: ConvergeError) -> None:
    ui.error(f"Error: {error.message}")
    logger.error(f"Command failed: {error}")
    sys.exit(_exit_code_for(error))


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: ~/.converge/config.yaml)")
@click.option("--state", "state_path", type=click.Path(path_type=Path), default=None,
              help="SQLite state file")
@click.option("--provider", "provider", default=None,
              help="Provider registry factory as module:callable")
@click.option("--parallelism", type=click.IntRange(1, MAX_CONCURRENCY_LIMIT), default=None,
              help="Maximum provider calls in flight")
@click.option("--refresh/--no-refresh", default=None, help="Read remote state before planning")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config_path, state_path, provider, parallelism, refresh, verbose):
    """
    Converge - Declarative resource graph planning and reconciliation.
    """
    ctx.ensure_object(dict)

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:19]
    setup_logger(verbose=verbose, run_id=run_id)

    try:
        config = load_config(config_path)
    except ConvergeError as e:
        _fail(e)

    if state_path is not None:
        config.state.path = state_path
    if parallelism is not None:
        config.engine.max_concurrency = parallelism
    if refresh is not None:
        config.engine.refresh = refresh

    ctx.obj["config"] = config
    ctx.obj["provider"] = provider
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--destroy", is_flag=True, help="Plan the destruction of everything in state")
@click.option("--json", "as_json", is_flag=True, help="Print the structured plan")
@click.pass_context
def plan(ctx, file, destroy, as_json):
    """Show what apply would change."""
    try:
        declarations = load_declarations(file)
        engine = _engine(ctx)
        result = _run(engine.plan(declarations, destroy=destroy))
    except ConvergeError as e:
        _fail(e)

    if as_json:
        ui.json(PlanReport(result).as_dict())
    else:
        ui.render_plan(result)


def _apply(ctx: click.Context, file: Path, yes: bool, as_json: bool, destroy: bool) -> None:
    try:
        declarations = load_declarations(file)
        engine = _engine(ctx)

        async def run():
            planned = await engine.plan(declarations, destroy=destroy)
            if not as_json:
                ui.render_plan(planned)
            if not planned.has_changes and not planned.outputs:
                return planned, None
            if planned.has_changes and not yes:
                verb = "Destroy all resources" if destroy else "Apply these changes"
                if not click.confirm(f"{verb}?", default=False):
                    return planned, None
            return planned, await engine.apply(planned)

        planned, report = _run(run())
    except ConvergeError as e:
        _fail(e)

    if report is None:
        if planned.has_changes:
            ui.warning("Cancelled.")
        return

    if as_json:
        ui.json(report.as_dict())
    else:
        ui.newline()
        ui.render_apply(report)

    if not report.ok:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--json", "as_json", is_flag=True, help="Print the structured report")
@click.pass_context
def apply(ctx, file, yes, as_json):
    """Converge remote resources to the declarations."""
    _apply(ctx, file, yes, as_json, destroy=False)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--json", "as_json", is_flag=True, help="Print the structured report")
@click.pass_context
def destroy(ctx, file, yes, as_json):
    """Destroy every resource recorded in state."""
    _apply(ctx, file, yes, as_json, destroy=True)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("name", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print values, including sensitive ones")
@click.pass_context
def output(ctx, file, name, as_json):
    """Show output values from the current state."""
    try:
        declarations = load_declarations(file)
        outputs = _run(_engine(ctx).outputs(declarations))
    except ConvergeError as e:
        _fail(e)

    if name is not None:
        if name not in outputs:
            ui.error(f"Error: no output named '{name}'")
            sys.exit(EXIT_INVALID)
        out = outputs[name]
        if as_json:
            ui.json(out.value)
        else:
            click.echo(SENSITIVE_PLACEHOLDER if out.sensitive else out.display)
        return

    if as_json:
        ui.json({n: {"value": o.value, "sensitive": o.sensitive} for n, o in outputs.items()})
    else:
        ui.render_outputs(outputs)


@cli.group()
def state():
    """Inspect the state store."""


@state.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print full entries")
@click.pass_context
def state_list(ctx, as_json):
    """List resources recorded in state."""
    config = ctx.obj["config"]
    store = StateStore(StateRepository(config.state_path))
    try:
        _run(store.load())
    except ConvergeError as e:
        _fail(e)

    entries = [entry for _, entry in sorted(store.snapshot().items())]
    if as_json:
        ui.json([entry.to_dict() for entry in entries])
    else:
        ui.render_state(entries)


def main():
    """Entry point for the converge CLI."""
    cli()


if __name__ == "__main__":
    main()
