# focusd/protocol.py
"""Wire framing between clients and the daemon.

Clients send one newline-terminated command token per frame. The daemon
answers with newline-delimited JSON objects discriminated by ``type``.
"""
import asyncio

from pydantic import TypeAdapter, ValidationError

from .models import (
    Command, ErrorMessage, ServerMessage, ShutdownMessage,
    SnapshotMessage, StateSnapshot,
)

MAX_FRAME_BYTES = 1024

_server_message = TypeAdapter(ServerMessage)


class DecodeError(Exception):
    """Raised when a frame is not a known command."""
    pass


class FrameTooLong(DecodeError):
    """Raised when a frame runs past MAX_FRAME_BYTES without a newline."""
    pass


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one newline-terminated frame; b"" at EOF.

    An overlong frame raises FrameTooLong and stays in the reader. The caller
    must then call discard_frame before reading again.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        raise FrameTooLong(f"frame exceeds {MAX_FRAME_BYTES} bytes") from e


async def discard_frame(reader: asyncio.StreamReader):
    """Drop the rest of the current frame, up to and including its newline."""
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as e:
            await reader.read(e.consumed)
        except asyncio.IncompleteReadError:
            return


def route(raw: bytes) -> Command:
    """Decode one client frame into a Command."""
    if len(raw) > MAX_FRAME_BYTES:
        raise DecodeError(f"frame exceeds {MAX_FRAME_BYTES} bytes")

    try:
        token = raw.decode("ascii").strip().lower()
    except UnicodeDecodeError:
        raise DecodeError("frame is not ASCII")

    if not token:
        raise DecodeError("empty command")

    try:
        return Command(token)
    except ValueError:
        raise DecodeError(f"unknown command: {token[:32]}")


def encode_command(command: Command) -> bytes:
    return f"{command.value}\n".encode("ascii")


def encode_snapshot(snapshot: StateSnapshot) -> bytes:
    message = SnapshotMessage(**snapshot.model_dump())
    return (message.model_dump_json() + "\n").encode()


def encode_error(message: str) -> bytes:
    return (ErrorMessage(message=message).model_dump_json() + "\n").encode()


def encode_shutdown() -> bytes:
    return (ShutdownMessage().model_dump_json() + "\n").encode()


def decode_server_message(line: bytes):
    """Parse one daemon frame. Raises DecodeError on garbage."""
    try:
        return _server_message.validate_json(line)
    except ValidationError as e:
        raise DecodeError(f"invalid server message: {e.error_count()} error(s)")
