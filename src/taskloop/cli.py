"""CLI entry point for taskloop."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from taskloop.config import TaskloopConfig

if TYPE_CHECKING:
    from taskloop.agent.agent import Agent
    from taskloop.agent.loop import LoopResult
    from taskloop.session.wire import Wire

app = typer.Typer(
    name="taskloop",
    help="Run agents through a bounded think / act / observe loop.",
    no_args_is_help=True,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def run(
    agent_file: str = typer.Argument(help="Markdown file defining the agent."),
    task: str = typer.Option(..., "--task", "-t", help="What the agent should do."),
    expected_output: str = typer.Option(
        "", "--expected-output", "-e", help="Description of the expected final answer."
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="LLM model to use (default: from env/config)."
    ),
    max_iterations: int | None = typer.Option(
        None, "--max-iterations", "-n", min=1, help="Override the agent's iteration budget."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run one task with one agent and print the result."""
    from taskloop.agent.agent import Agent
    from taskloop.agent.task import Task
    from taskloop.llm.provider import create_provider

    setup_logging(verbose)

    if not os.path.isfile(agent_file):
        typer.echo(f"Error: Agent file not found: {agent_file}", err=True)
        raise typer.Exit(1)

    config = TaskloopConfig.load(config_file)
    if model:
        config.llm.model = model

    try:
        agent = Agent.from_markdown(
            agent_file, default_max_iterations=config.loop.max_iterations
        )
    except (TypeError, ValueError) as e:
        typer.echo(f"Error: Invalid agent definition: {e}", err=True)
        raise typer.Exit(1)

    if max_iterations is not None:
        agent.config.max_iterations = max_iterations
    agent.provider = create_provider(
        model=agent.config.model or config.llm.model,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens,
        reasoning_effort=config.llm.reasoning_effort,
        json_mode=config.llm.json_mode,
    )

    console.print(f"[bold]Agent:[/bold] {escape(agent.name)}")
    console.print(f"[bold]Model:[/bold] {escape(agent.config.model or config.llm.model)}")
    console.print(f"[bold]Tools:[/bold] {', '.join(agent.tools.names()) or 'none'}")
    console.print(f"[bold]Max iterations:[/bold] {agent.max_iterations}")
    console.rule()

    result = asyncio.run(
        _run_task(agent, Task(description=task, expected_output=expected_output), config)
    )
    _print_result(result)
    if result.error:
        raise typer.Exit(1)


async def _run_task(agent: Agent, task, config: TaskloopConfig) -> LoopResult:
    """Run the loop with a wire consumer printing progress."""
    from taskloop.agent.loop import LoopSupervisor
    from taskloop.session.wire import Wire

    wire = Wire()
    supervisor = LoopSupervisor.from_config(config, wire=wire)
    unsubscribe = wire.attach(supervisor.registry)
    consumer_task = asyncio.create_task(_consume_wire(wire))
    try:
        return await supervisor.run(agent, task)
    finally:
        unsubscribe()
        wire.close()
        await consumer_task


async def _consume_wire(wire: Wire) -> None:
    from taskloop.session.wire import EventType

    queue = wire.subscribe()
    while True:
        event = await queue.get()
        if event is None:
            break
        d = event.data
        if event.type == EventType.ITERATION_BEGIN:
            console.print(f"[cyan]-- iteration {d['iteration'] + 1}[/cyan]")
        elif event.type == EventType.TOOL_CALL:
            args = escape(json.dumps(d.get("input", {}), ensure_ascii=False)[:200])
            console.print(f"  [yellow]> {escape(d['tool'])}[/yellow] {args}")
        elif event.type == EventType.TOOL_RESULT:
            if d.get("error"):
                console.print(f"  [red]! {escape(str(d['error']))}[/red]")
            else:
                console.print(f"  [dim]{escape(str(d.get('output', ''))[:200])}[/dim]")
        elif event.type == EventType.FEEDBACK:
            console.print(f"  [dim]feedback: {escape(d['text'][:200])}[/dim]")
        elif event.type == EventType.STATUS and d["entity"] == "task":
            console.print(f"[magenta]task {d['from_status']} -> {d['to_status']}[/magenta]")


def _print_result(result: LoopResult) -> None:
    meta = result.metadata
    footer = f"{meta.iterations}/{meta.max_agent_iterations} iterations"
    if result.usage.total_tokens:
        footer += f", {result.usage.total_tokens} tokens"
    if result.result is not None:
        body = result.result
        if not isinstance(body, str):
            body = json.dumps(body, indent=2, ensure_ascii=False)
        console.print(Panel(escape(body), title="Final answer", subtitle=footer))
    if result.error:
        console.print(
            Panel(escape(result.error), title="Error", subtitle=footer, border_style="red")
        )


@app.command()
def rules(
    entity: str | None = typer.Argument(
        None, help="Entity kind to show (agent, task, workflow)."
    ),
) -> None:
    """Show the status transition rule table."""
    from taskloop.status.rules import default_rule_table
    from taskloop.status.statuses import StatusEntity

    table_data = default_rule_table().describe()
    if entity is not None:
        try:
            kind = StatusEntity(entity.lower())
        except ValueError:
            typer.echo(f"Error: Unknown entity kind: {entity}", err=True)
            raise typer.Exit(1)
        table_data = {kind.value: table_data.get(kind.value, [])}

    for kind, entries in table_data.items():
        table = Table(title=f"{kind} transitions")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Note", style="dim")
        for entry in entries:
            table.add_row(
                ", ".join(entry["from"]), ", ".join(entry["to"]), entry["description"]
            )
        console.print(table)


@app.command()
def agents(
    directory: str | None = typer.Argument(
        None, help="Directory with agent markdown files (default: from config)."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """List agent definitions found in a directory."""
    from taskloop.agent.registry import AgentRegistry

    config = TaskloopConfig.load(config_file)
    search_dir = directory or config.agents_dir
    registry = AgentRegistry()
    registry.discover([search_dir], default_max_iterations=config.loop.max_iterations)
    if not len(registry):
        typer.echo(f"No agents found in {search_dir}")
        return

    table = Table(title=f"Agents in {search_dir}")
    table.add_column("Name", style="bold")
    table.add_column("Role")
    table.add_column("Tools")
    table.add_column("Max iterations", justify="right")
    for agent in registry:
        table.add_row(
            agent.name,
            agent.config.role or agent.config.description,
            ", ".join(agent.tools.names()),
            str(agent.max_iterations),
        )
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
