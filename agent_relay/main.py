"""Command-line entry point for Agent Relay."""

import asyncio
import dataclasses
import sys
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from agent_relay.config import Config, set_config
from agent_relay.exceptions import ConfigurationError, RelayError
from agent_relay.logging import configure_logging, log
from agent_relay.models import CloseEvent, ExecutionConfig, SessionMode, Transport
from agent_relay.session import SessionController

app = typer.Typer(help="Agent Relay - run a CLI coding agent with streaming output")
console = Console(stderr=True)

ConfigOption = typer.Option("", "-c", "--config", help="Path to config file")
VerboseOption = typer.Option(False, "-v", "--verbose", help="Debug logging")


def load_config(config_path: str = "", verbose: bool = False) -> Config:
    """Load configuration, install it globally and configure logging."""
    try:
        cfg = Config.from_yaml(Path(config_path)) if config_path else Config.load()
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(f"Failed to load config: {e}") from e
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    return cfg


def _write_chunk(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _report_close(exit_code: int | None, error: RelayError | None) -> None:
    if error is not None:
        console.print(f"[red]Agent error:[/red] {error}")
    elif exit_code:
        console.print(f"[yellow]Agent exited with code {exit_code}[/yellow]")


async def run_ask(prompt: str, exec_config: ExecutionConfig) -> CloseEvent:
    """Run one prompt to completion, streaming output to stdout."""
    controller = SessionController("cli")
    try:
        invocation = await controller.submit(prompt, exec_config, on_chunk=_write_chunk)
        return await invocation.wait()
    finally:
        await controller.close()


async def run_chat(exec_config: ExecutionConfig) -> None:
    """Line-oriented loop; lines go to a persistent session when one is configured."""
    controller = SessionController("cli")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> " if not controller.is_active else "")
            except EOFError:
                break
            command = line.strip()
            if command in ("/exit", "/quit"):
                break
            if command == "/cancel":
                if not controller.cancel():
                    console.print("[dim]Nothing to cancel[/dim]")
                continue
            if not command and not controller.is_active:
                continue
            invocation = await controller.submit(
                line,
                exec_config,
                on_chunk=_write_chunk,
                on_close=_report_close,
            )
            if not exec_config.keeps_process:
                await invocation.wait()
    finally:
        await controller.close()


def _config_table(exec_config: ExecutionConfig) -> Table:
    table = Table(title="Execution config")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in dataclasses.asdict(exec_config).items():
        if isinstance(value, (Transport, SessionMode)):
            value = value.value
        table.add_row(key, str(value))
    return table


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Prompt sent to the agent"),
    config: str = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Send one prompt and stream the agent's reply."""
    try:
        cfg = load_config(config, verbose)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    exec_config = cfg.execution_config(Path.cwd())
    if exec_config.transport == Transport.TERMINAL:
        console.print("[red]Terminal mode is interactive; use 'chat' instead[/red]")
        raise typer.Exit(2)
    exec_config = dataclasses.replace(exec_config, interactive=False, session_mode=SessionMode.ONE_SHOT)

    event = asyncio.run(run_ask(prompt, exec_config))
    _report_close(event.exit_code, event.error)
    raise typer.Exit(event.exit_code or 0)


@app.command()
def chat(
    config: str = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Interactive loop: /cancel interrupts the agent, /exit quits."""
    try:
        cfg = load_config(config, verbose)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    try:
        asyncio.run(run_chat(cfg.execution_config(Path.cwd())))
    except KeyboardInterrupt:
        log.info("Shutting down...")


@app.command("show-config")
def show_config(config: str = ConfigOption) -> None:
    """Print the resolved execution config."""
    try:
        cfg = load_config(config)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    Console().print(_config_table(cfg.execution_config(Path.cwd())))


@app.command()
def version() -> None:
    """Show version information."""
    from agent_relay import __version__

    print(f"Agent Relay v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
