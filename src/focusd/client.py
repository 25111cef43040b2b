# focusd/client.py
"""Async helpers for talking to a running daemon."""
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from .config import get_socket_path
from .models import Command, ErrorMessage, ShutdownMessage, StateSnapshot
from .protocol import decode_server_message, encode_command

DEFAULT_TIMEOUT = 5.0

MUTATING_COMMANDS = (
    Command.PAUSE, Command.RESUME, Command.TOGGLE, Command.SKIP, Command.RESET,
    Command.POSTPONE,
)


class DaemonNotRunning(Exception):
    """Raised when no daemon accepts connections on the socket."""
    pass


class ProtocolError(Exception):
    """Raised when the daemon rejects a frame."""
    pass


@asynccontextmanager
async def connect(socket_path: Optional[Path] = None):
    """Open a connection to the daemon, yielding (reader, writer)."""
    path = socket_path or get_socket_path()
    try:
        reader, writer = await asyncio.open_unix_connection(str(path))
    except (FileNotFoundError, ConnectionRefusedError) as e:
        raise DaemonNotRunning(f"No daemon listening on {path}") from e

    try:
        yield reader, writer
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


async def _send(writer: asyncio.StreamWriter, command: Command):
    writer.write(encode_command(command))
    await writer.drain()


async def _read_message(reader: asyncio.StreamReader, timeout: Optional[float]):
    line = await asyncio.wait_for(reader.readline(), timeout)
    if not line:
        raise DaemonNotRunning("Daemon closed the connection")
    return decode_server_message(line)


async def _read_snapshot(reader: asyncio.StreamReader, timeout: Optional[float]) -> StateSnapshot:
    message = await _read_message(reader, timeout)
    if isinstance(message, ErrorMessage):
        raise ProtocolError(message.message)
    if isinstance(message, ShutdownMessage):
        raise DaemonNotRunning("Daemon is shutting down")
    return message.to_snapshot()


async def query_once(socket_path: Optional[Path] = None, timeout: float = DEFAULT_TIMEOUT) -> StateSnapshot:
    """Fetch a single snapshot without subscribing."""
    async with connect(socket_path) as (reader, writer):
        await _send(writer, Command.ONCE)
        return await _read_snapshot(reader, timeout)


async def send_command(
    command: Command,
    socket_path: Optional[Path] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> StateSnapshot:
    """Apply a state-changing command and return the resulting snapshot."""
    if command not in MUTATING_COMMANDS:
        raise ValueError(f"{command.value} does not change the timer state")

    async with connect(socket_path) as (reader, writer):
        # Ticks may be broadcast around the command's result; the snapshot
        # answering the trailing once is the last frame before the daemon
        # closes, and reflects the command.
        writer.write(encode_command(command) + encode_command(Command.ONCE))
        await writer.drain()

        snapshot = None
        rejection = None
        while True:
            line = await asyncio.wait_for(reader.readline(), timeout)
            if not line:
                break
            message = decode_server_message(line)
            if isinstance(message, ErrorMessage):
                rejection = message.message
            elif isinstance(message, ShutdownMessage):
                raise DaemonNotRunning("Daemon is shutting down")
            else:
                snapshot = message.to_snapshot()

        if rejection is not None:
            raise ProtocolError(rejection)
        if snapshot is None:
            raise DaemonNotRunning("Daemon closed the connection")
        return snapshot


async def shutdown(socket_path: Optional[Path] = None, timeout: float = DEFAULT_TIMEOUT):
    """Ask the daemon to exit and wait until it says so."""
    async with connect(socket_path) as (reader, writer):
        await _send(writer, Command.SHUTDOWN)
        while True:
            line = await asyncio.wait_for(reader.readline(), timeout)
            if not line:
                return
            message = decode_server_message(line)
            if isinstance(message, ShutdownMessage):
                return
            if isinstance(message, ErrorMessage):
                raise ProtocolError(message.message)


async def listen(socket_path: Optional[Path] = None) -> AsyncIterator[StateSnapshot]:
    """Yield snapshots until the daemon shuts down or the connection drops."""
    async with connect(socket_path) as (reader, writer):
        await _send(writer, Command.LISTEN)
        while True:
            line = await reader.readline()
            if not line:
                return
            message = decode_server_message(line)
            if isinstance(message, ShutdownMessage):
                return
            if isinstance(message, ErrorMessage):
                raise ProtocolError(message.message)
            yield message.to_snapshot()
