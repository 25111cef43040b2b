#!/usr/bin/env python3
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console

from . import client
from .config import get_socket_path, load_config
from .daemon import Daemon
from .listener import DaemonAlreadyRunning
from .models import Command, Phase, StateSnapshot
from .notifier import Notifier
from .protocol import DecodeError

console = Console()
err_console = Console(stderr=True)

PHASE_LABELS = {
    Phase.WORK: "Focus",
    Phase.SHORT_BREAK: "Short break",
    Phase.LONG_BREAK: "Long break",
}


def format_remaining(seconds: int) -> str:
    """Seconds as MM:SS (or H:MM:SS past an hour)."""
    minutes, seconds = divmod(max(seconds, 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def print_snapshot(snapshot: StateSnapshot, as_json: bool):
    if as_json:
        click.echo(snapshot.model_dump_json())
        return

    color = "green" if snapshot.phase is Phase.WORK else "cyan"
    status = "[yellow]paused[/yellow]" if snapshot.paused else "running"
    if snapshot.postponed:
        status += f", postponed #{snapshot.postpone_count}"
    console.print(
        f"[{color}]{PHASE_LABELS[snapshot.phase]}[/{color}] "
        f"{format_remaining(snapshot.remaining)} ({status}) "
        f"· {snapshot.completed_sessions} session(s) completed"
    )


def run_client(coro):
    """Run a client coroutine, mapping failures to exit codes."""
    try:
        return asyncio.run(coro)
    except client.DaemonNotRunning as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except client.ProtocolError as e:
        err_console.print(f"[red]Daemon rejected command:[/red] {e}")
        sys.exit(2)
    except DecodeError as e:
        err_console.print(f"[red]Unexpected reply from daemon:[/red] {e}")
        sys.exit(2)
    except (asyncio.TimeoutError, OSError) as e:
        err_console.print(f"[red]Error:[/red] could not talk to daemon: {e}")
        sys.exit(1)


@click.group()
@click.option('--socket', 'socket_path', type=click.Path(path_type=Path),
              envvar='FOCUSD_SOCKET', help='Daemon socket path')
@click.pass_context
def cli(ctx, socket_path: Optional[Path]):
    """Pomodoro timer daemon and client"""
    ctx.ensure_object(dict)
    ctx.obj["socket_path"] = socket_path or get_socket_path()


@cli.command()
@click.option('--work', type=int, help='Work duration in seconds')
@click.option('--short-break', type=int, help='Short break duration in seconds')
@click.option('--long-break', type=int, help='Long break duration in seconds')
@click.option('--sessions', type=int, help='Work sessions before a long break')
@click.option('--postpone-limit', type=int, help='Times a break may be postponed (0 disables)')
@click.option('--postpone-timer', type=int, help='Length of one postpone in seconds')
@click.option('--autostart-work/--no-autostart-work', default=None, help='Start work phases running')
@click.option('--autostart-break/--no-autostart-break', default=None, help='Start breaks running')
@click.option('--notify/--no-notify', default=None, help='Send desktop notifications')
@click.option('--log-level', default=lambda: os.getenv("FOCUSD_LOG_LEVEL", "INFO"),
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.pass_context
def daemon(ctx, work, short_break, long_break, sessions, postpone_limit, postpone_timer,
           autostart_work, autostart_break, notify, log_level):
    """Run the timer daemon in the foreground"""
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, log_level.upper())
    )

    try:
        config = load_config(
            work=work,
            short_break=short_break,
            long_break=long_break,
            sessions_before_long_break=sessions,
            postpone_limit=postpone_limit,
            postpone_timer=postpone_timer,
            autostart_work=autostart_work,
            autostart_break=autostart_break,
            notifications=notify,
        )
    except ValidationError as e:
        err_console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)

    notifier = Notifier(break_suggestions=config.break_suggestions) if config.notifications else None
    server = Daemon(config, ctx.obj["socket_path"], notifier=notifier)

    try:
        asyncio.run(server.serve_forever())
    except DaemonAlreadyRunning as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except OSError as e:
        err_console.print(f"[red]Could not start daemon:[/red] {e}")
        sys.exit(1)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def status(ctx, as_json: bool):
    """Show the current timer state"""
    snapshot = run_client(client.query_once(ctx.obj["socket_path"]))
    print_snapshot(snapshot, as_json)


def _control_command(command: Command, help_text: str):
    @click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
    @click.pass_context
    def control(ctx, as_json: bool):
        snapshot = run_client(client.send_command(command, ctx.obj["socket_path"]))
        print_snapshot(snapshot, as_json)

    control.__doc__ = help_text
    return cli.command(name=command.value)(control)


pause = _control_command(Command.PAUSE, "Pause the timer")
resume = _control_command(Command.RESUME, "Resume the timer")
toggle = _control_command(Command.TOGGLE, "Pause or resume the timer")
skip = _control_command(Command.SKIP, "Skip to the next phase")
reset = _control_command(Command.RESET, "Reset to the first work session")
postpone = _control_command(Command.POSTPONE, "Postpone the current break")


@cli.command()
@click.pass_context
def stop(ctx):
    """Shut the daemon down"""
    run_client(client.shutdown(ctx.obj["socket_path"]))
    console.print("[green]✓[/green] Daemon stopped")


@cli.command()
@click.pass_context
def listen(ctx):
    """Stream state changes as JSON lines"""
    async def stream():
        async for snapshot in client.listen(ctx.obj["socket_path"]):
            click.echo(snapshot.model_dump_json())

    try:
        run_client(stream())
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    cli()
