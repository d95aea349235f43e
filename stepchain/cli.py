"""Command line interface for running stepchain processes."""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from stepchain.config import load_config
from stepchain.contracts import STATUS_COMPLETED, Principal
from stepchain.definition import ProcessDefinition
from stepchain.errors import DeserializeError
from stepchain.manager import ProcessManager

app = typer.Typer(help="CLI for stepchain processes")


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", help="Path to a YAML config file"
    ),
) -> None:
    """Stepchain CLI entry point."""
    if config is not None:
        os.environ["STEPCHAIN_CONFIG"] = str(config)
    logging.basicConfig(
        level=load_config().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_params(raw: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{item}'")
        params[key.strip()] = value
    return params


def _load_definition(target: str) -> ProcessDefinition:
    """Resolve ``module:attr`` to a ProcessDefinition.

    ``attr`` may name a definition instance, a definition class, or a zero
    argument factory returning one.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not attr:
        raise typer.BadParameter(f"Expected MODULE:ATTR, got '{target}'")
    if str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    module = importlib.import_module(module_name)
    obj = getattr(module, attr, None)
    if obj is None:
        raise typer.BadParameter(f"'{attr}' not found in module '{module_name}'")
    if isinstance(obj, ProcessDefinition):
        return obj
    if callable(obj):
        definition = obj()
        if isinstance(definition, ProcessDefinition):
            return definition
    raise typer.BadParameter(f"'{target}' does not provide a ProcessDefinition")


@app.command("run")
def run_process(
    target: str,
    param: List[str] = typer.Option([], "--param", "-p", help="Input as key=value"),
    description: Optional[str] = typer.Option(None, help="Instance description"),
    user: str = typer.Option("admin", help="Requesting user id"),
) -> None:
    """
    Run a process definition to completion and print its final status.

    Example:
        stepchain run my_jobs:ReindexProcess -p root=/content --user alice
    """
    definition = _load_definition(target)
    params = _parse_params(param)
    manager = ProcessManager()
    try:
        instance = asyncio.run(
            manager.start_process(
                definition, Principal(user_id=user), params, description=description
            )
        )
    except DeserializeError as e:
        typer.echo(f"Invalid inputs: {e}", err=True)
        raise typer.Exit(code=2)

    info = instance.info
    typer.echo(f"{instance.id}  {instance.name}")
    typer.echo(f"  status:   {info.status}")
    typer.echo(f"  progress: {info.progress:.0%}")
    typer.echo(f"  errors:   {len(info.reported_errors)}")
    if info.status != STATUS_COMPLETED:
        raise typer.Exit(code=1)


@app.command("status")
def show_status(process_id: str) -> None:
    """Print the stored status record of a process."""
    manager = ProcessManager()
    info = asyncio.run(manager.read_status(process_id))
    if info is None:
        typer.echo(f"No process found with id {process_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{process_id}  {info.name}: {info.description}")
    typer.echo(f"  status:    {info.status}")
    typer.echo(f"  progress:  {info.progress:.0%}")
    typer.echo(f"  running:   {info.is_running}")
    typer.echo(f"  requester: {info.requester}")
    typer.echo(f"  runtime:   {info.runtime()} ms")


@app.command("failures")
def show_failures(process_id: str) -> None:
    """List the stored failures of a process."""
    manager = ProcessManager()
    failures = asyncio.run(manager.read_failures(process_id))
    if not failures:
        typer.echo("No failures recorded")
        return
    for failure in failures:
        location = failure.get("node_path") or "-"
        typer.echo(
            f"{failure['step']}: [{failure.get('error_type', 'Exception')}] "
            f"{failure.get('error', '')} ({location})"
        )


if __name__ == "__main__":  # pragma: no cover
    app()
