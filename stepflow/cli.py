"""Command line interface for running stepflow state machines."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from stepflow import ExecutionDispatcher, load_config, load_state_machines_file
from stepflow.errors import StateMachineDoesNotExist
from stepflow.transports import get_transport

app = typer.Typer(help="CLI for stepflow state machines")

# Command groups
machines_app = typer.Typer(help="Commands for inspecting state machines")
execution_app = typer.Typer(help="Commands for running state machines")
queue_app = typer.Typer(help="Commands for queues fed by service integrations")

app.add_typer(machines_app, name="machines")
app.add_typer(execution_app, name="execution")
app.add_typer(queue_app, name="queue")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level for stepflow output"),
) -> None:
    """stepflow CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_machines(definition: Path):
    if not definition.exists():
        typer.secho(f"Definition file not found: {definition}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return load_state_machines_file(definition)


@machines_app.command("list")
def machines_list(definition: Path) -> None:
    """
    List the state machines defined in a definition file.

    Args:
        definition: JSON or YAML file holding the state machines

    Example:
        stepflow machines list ./state-machines.yml
        # Output: orderFlow    StartAt=ValidateOrder    (4 states)
    """
    machines = _load_machines(definition)
    if not machines:
        typer.echo("No state machines found")
        return
    for key, machine in machines.items():
        typer.echo(
            f"{key}\tStartAt={machine.definition.start_at}\t"
            f"({len(machine.definition.states)} states)"
        )


@execution_app.command("start")
def execution_start(
    definition: Path,
    machine: str,
    input: str = typer.Option("{}", "--input", help="JSON input for the first state"),
    start_state: Optional[str] = typer.Option(None, help="State to start at instead of StartAt"),
    config: Optional[Path] = typer.Option(None, help="Path to stepflow.yaml"),
    handlers_dir: Path = typer.Option(
        Path("."), help="Directory the configured handler modules are imported from"
    ),
) -> None:
    """
    Run a state machine to completion.

    Prints the start response, then the final status and output. Exits with
    code 1 when the run does not succeed.

    Example:
        stepflow execution start ./state-machines.yml orderFlow --input '{"id": 7}'
        # Output: {"startDate":1700000000000,"executionArn":"orderFlow-ValidateOrder-1700000000000"}
        #         SUCCEEDED
        #         {"id": 7, "valid": true}
    """
    try:
        payload = json.loads(input)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON input: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    machines = _load_machines(definition)
    settings = load_config(str(config) if config else None)

    handlers_path = str(handlers_dir.expanduser().resolve())
    if handlers_path not in sys.path:
        sys.path.insert(0, handlers_path)

    async def _run():
        dispatcher = ExecutionDispatcher.from_config(machines, settings)
        response = await dispatcher.start_execution(machine, payload, start_state)
        typer.echo(response.to_json())
        return await dispatcher.wait(response.execution_arn)

    try:
        result = asyncio.run(_run())
    except StateMachineDoesNotExist as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if result.succeeded:
        typer.secho(result.status.value, fg=typer.colors.GREEN)
        typer.echo(json.dumps(result.output))
        return

    typer.secho(result.status.value, fg=typer.colors.RED)
    if result.error:
        typer.echo(f"{result.error.get('Error')}: {_error_message(result.error)}")
    raise typer.Exit(code=1)


def _error_message(error: dict) -> str:
    cause = error.get("Cause")
    if isinstance(cause, dict):
        return cause.get("errorMessage", "")
    return cause or ""


@queue_app.command("receive")
def queue_receive(
    queue_url: str,
    lifespan: float = typer.Option(5.0, help="Seconds to wait for messages"),
    max_messages: int = typer.Option(10, help="Stop after this many messages"),
    config: Optional[Path] = typer.Option(None, help="Path to stepflow.yaml"),
) -> None:
    """
    Print messages sent to a queue by ``sqs:sendMessage`` tasks.

    Only meaningful with a shared transport backend (redis or sqs).

    Example:
        STEPFLOW_TRANSPORT=redis stepflow queue receive orders --lifespan 10
    """
    settings = load_config(str(config) if config else None)
    transport = get_transport(config=settings)

    async def _receive():
        await transport.connect()
        try:
            return await transport.receive(
                queue_url, max_messages=max_messages, wait_seconds=lifespan
            )
        finally:
            await transport.disconnect()

    received = asyncio.run(_receive())
    for message in received:
        typer.echo(f"{message.message_id}\t{message.body}")
    if not received:
        typer.echo("No messages received")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
