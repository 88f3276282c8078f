"""Command line interface for inspecting and maintaining correlations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import typer
from pydantic import ValidationError

from correlator.config import CorrelatorConfig, load_config
from correlator.contracts import Correlation, ProcessInstance, ProcessInstanceState, QueryOptions
from correlator.errors import Failure, capture
from correlator.security import Identity
from correlator.service import CorrelationService

app = typer.Typer(help="CLI for correlation tracking")

# Command groups
correlation_app = typer.Typer(help="Commands for inspecting correlations")
instance_app = typer.Typer(help="Commands for managing process instances")

app.add_typer(correlation_app, name="correlation")
app.add_typer(instance_app, name="instance")

Operation = Callable[[CorrelationService, Identity], Awaitable[Any]]


@app.callback()
def main() -> None:
    """Correlator CLI entry point."""
    pass


def _cli_identity(config: CorrelatorConfig) -> Identity:
    conf = config.cli_identity
    return Identity(token=conf.token, user_id=conf.user_id, claims=conf.claims)


def _execute(operation: Operation) -> Any:
    """Run ``operation`` against the configured service and unwrap its result."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    service = CorrelationService.from_config(config)
    identity = _cli_identity(config)

    async def _run() -> Any:
        try:
            return await capture(operation(service, identity))
        finally:
            await service.close()

    try:
        result = asyncio.run(_run())
    except ValidationError as exc:
        typer.secho(f"invalid input: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    if isinstance(result, Failure):
        typer.secho(f"{result.kind.value}: {result.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return result.value


def _echo_correlation(correlation: Correlation) -> None:
    typer.echo(
        f"{correlation.correlation_id}\t{correlation.state.value}\t"
        f"{len(correlation.process_instances)} instance(s)"
    )


def _echo_instance(instance: ProcessInstance) -> None:
    line = (
        f"{instance.process_instance_id}\t{instance.state.value}\t"
        f"{instance.correlation_id}\t{instance.process_model_id}@{instance.process_model_hash}"
    )
    if instance.is_subprocess:
        line += f"\tparent={instance.parent_process_instance_id}"
    typer.echo(line)


@correlation_app.command("list")
def correlation_list(
    active: bool = typer.Option(False, help="Only correlations with running instances"),
    model: Optional[str] = typer.Option(None, help="Only correlations using this process model"),
    offset: int = typer.Option(0, min=0),
    limit: int = typer.Option(0, min=0, help="0 uses the configured default"),
) -> None:
    """
    List correlations with their derived state.

    Example:
        correlator correlation list --active
        # Output: order-42    running    2 instance(s)
    """
    if active and model is not None:
        typer.secho("--active and --model cannot be combined", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    options = QueryOptions(offset=offset, limit=limit)

    async def _op(service: CorrelationService, identity: Identity) -> list[Correlation]:
        if model is not None:
            return await service.get_by_process_model_id(identity, model, options)
        if active:
            return await service.get_active(identity, options)
        return await service.get_all(identity, options)

    correlations = _execute(_op)
    if not correlations:
        typer.echo("No correlations found")
        return
    for correlation in correlations:
        _echo_correlation(correlation)


@correlation_app.command("show")
def correlation_show(correlation_id: str) -> None:
    """Show a correlation and its process instances."""
    correlation = _execute(
        lambda service, identity: service.get_by_correlation_id(identity, correlation_id)
    )
    _echo_correlation(correlation)
    for instance in correlation.process_instances:
        typer.echo("  ", nl=False)
        _echo_instance(instance)


@instance_app.command("create")
def instance_create(
    correlation_id: str,
    process_instance_id: str,
    process_model_id: str,
    process_model_hash: str,
    parent: Optional[str] = typer.Option(None, help="Parent process instance id"),
) -> None:
    """Record a new running process instance."""
    instance = _execute(
        lambda service, identity: service.create_entry(
            identity,
            correlation_id,
            process_instance_id,
            process_model_id,
            process_model_hash,
            parent_process_instance_id=parent,
        )
    )
    _echo_instance(instance)


@instance_app.command("show")
def instance_show(process_instance_id: str) -> None:
    """Show a single process instance."""
    instance = _execute(
        lambda service, identity: service.get_by_process_instance_id(
            identity, process_instance_id
        )
    )
    _echo_instance(instance)
    if instance.error is not None:
        typer.echo(f"Error: {instance.error}")


@instance_app.command("list")
def instance_list(
    correlation: Optional[str] = typer.Option(None, help="Correlation id"),
    model: Optional[str] = typer.Option(None, help="Process model id"),
    state: Optional[ProcessInstanceState] = typer.Option(None, help="Instance state"),
    parent: Optional[str] = typer.Option(None, help="List direct subprocesses of this instance"),
    offset: int = typer.Option(0, min=0),
    limit: int = typer.Option(0, min=0, help="0 uses the configured default"),
) -> None:
    """List process instances matching exactly one filter."""
    chosen = [f for f in (correlation, model, state, parent) if f is not None]
    if len(chosen) != 1:
        typer.secho(
            "Specify exactly one of --correlation, --model, --state or --parent",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=2)
    options = QueryOptions(offset=offset, limit=limit)

    async def _op(service: CorrelationService, identity: Identity) -> list[ProcessInstance]:
        if correlation is not None:
            return await service.get_process_instances_for_correlation(
                identity, correlation, options
            )
        if model is not None:
            return await service.get_process_instances_for_process_model(
                identity, model, options
            )
        if state is not None:
            return await service.get_process_instances_by_state(identity, state, options)
        return await service.get_subprocesses_for_process_instance(identity, parent, options)

    instances = _execute(_op)
    if not instances:
        typer.echo("No process instances found")
        return
    for instance in instances:
        _echo_instance(instance)


@instance_app.command("finish")
def instance_finish(correlation_id: str, process_instance_id: str) -> None:
    """Mark a running process instance as finished."""
    instance = _execute(
        lambda service, identity: service.finish_process_instance(
            identity, correlation_id, process_instance_id
        )
    )
    _echo_instance(instance)


@instance_app.command("fail")
def instance_fail(
    correlation_id: str,
    process_instance_id: str,
    message: str = typer.Option(..., help="Error message to record"),
) -> None:
    """Mark a running process instance as finished with an error."""
    instance = _execute(
        lambda service, identity: service.finish_process_instance_with_error(
            identity, correlation_id, process_instance_id, {"message": message}
        )
    )
    _echo_instance(instance)


@app.command("purge")
def purge(
    process_model_id: str,
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
) -> None:
    """
    Delete every correlation made up solely of instances of a process model.

    The purge is all-or-nothing and cannot be undone.
    """
    if not yes:
        typer.confirm(
            f"Delete all correlations of process model {process_model_id}?", abort=True
        )
    removed = _execute(
        lambda service, identity: service.delete_correlation_by_process_model_id(
            identity, process_model_id
        )
    )
    typer.echo(f"Removed {len(removed)} correlation(s)")
    for correlation_id in removed:
        typer.echo(f"- {correlation_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
