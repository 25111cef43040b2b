import asyncio
import shutil
import tempfile
from pathlib import Path

import pytest

from focusd.daemon import Daemon
from focusd.models import TimerConfig
from focusd.protocol import decode_server_message
from focusd.registry import ClientConnection


class FakeConnection(ClientConnection):
    """In-memory connection recording every frame sent to it."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.frames = []
        self.fail = fail
        self.closed = False

    def send(self, frame: bytes) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.frames.append(frame)

    def close(self) -> None:
        super().close()
        self.closed = True

    def messages(self):
        return [decode_server_message(frame) for frame in self.frames]


class RawClient:
    """Line-oriented socket client for driving a daemon in tests."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    @classmethod
    async def open(cls, socket_path: Path) -> "RawClient":
        reader, writer = await asyncio.open_unix_connection(str(socket_path))
        return cls(reader, writer)

    async def send(self, text: str):
        self.writer.write(f"{text}\n".encode())
        await self.writer.drain()

    async def receive(self, timeout: float = 2.0):
        line = await asyncio.wait_for(self.reader.readline(), timeout)
        assert line, "connection closed"
        return decode_server_message(line)

    async def at_eof(self, timeout: float = 2.0) -> bool:
        line = await asyncio.wait_for(self.reader.readline(), timeout)
        return line == b""

    async def nothing_pending(self, wait: float = 0.1) -> bool:
        try:
            await asyncio.wait_for(self.reader.readline(), wait)
        except asyncio.TimeoutError:
            return True
        return False

    def abort(self):
        self.writer.transport.abort()

    async def close(self):
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


@pytest.fixture
def config():
    """Standard durations; the clock never fires on its own during a test."""
    return TimerConfig(
        work=1500,
        short_break=300,
        long_break=900,
        sessions_before_long_break=4,
        autostart_work=True,
        autostart_break=True,
        tick_interval=3600,
    )


@pytest.fixture
def socket_path():
    """Short socket path (AF_UNIX paths are limited to ~108 bytes)."""
    directory = tempfile.mkdtemp(prefix="focusd-")
    yield Path(directory) / "focusd.sock"
    shutil.rmtree(directory, ignore_errors=True)


async def start_daemon(config: TimerConfig, socket_path: Path, **kwargs):
    """Run a daemon in a background task; returns (daemon, task)."""
    server = Daemon(config, socket_path, **kwargs)
    task = asyncio.create_task(server.serve_forever(install_signal_handlers=False))
    for _ in range(200):
        if server.clock.running or task.done():
            break
        await asyncio.sleep(0.01)
    if task.done():
        task.result()
    return server, task


@pytest.fixture
async def daemon(config, socket_path):
    server, task = await start_daemon(config, socket_path)
    yield server
    server.request_shutdown()
    await asyncio.wait_for(task, 5)


@pytest.fixture
async def connect(daemon):
    """Factory opening raw clients against the running daemon."""
    clients = []

    async def _connect() -> RawClient:
        raw = await RawClient.open(daemon.socket_path)
        clients.append(raw)
        return raw

    yield _connect

    for raw in clients:
        await raw.close()
