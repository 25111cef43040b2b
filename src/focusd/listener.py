# focusd/listener.py
"""Unix socket listener with stale-socket reclaim."""
import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Awaitable, Callable

from .models import Command
from .protocol import MAX_FRAME_BYTES, encode_command

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]

# Time allowed for open connections to finish after the listener closes
CLOSE_TIMEOUT = 2.0


class DaemonAlreadyRunning(Exception):
    """Raised when the socket path is held by a live daemon."""
    pass


async def reclaim_socket(path: Path):
    """Remove a stale socket file, or fail if a daemon is listening on it."""
    try:
        mode = path.lstat().st_mode
    except FileNotFoundError:
        return

    if not stat.S_ISSOCK(mode):
        raise FileExistsError(f"{path} exists and is not a socket")

    try:
        _, writer = await asyncio.open_unix_connection(str(path))
    except (ConnectionRefusedError, FileNotFoundError):
        logger.info(f"Removing stale socket {path}")
        path.unlink(missing_ok=True)
        return

    writer.write(encode_command(Command.DETACH))
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    raise DaemonAlreadyRunning(f"A daemon is already listening on {path}")


class Listener:
    """Accepts connections on a filesystem socket for the server's lifetime."""

    def __init__(self, socket_path: Path, on_connection: ConnectionHandler):
        self.socket_path = Path(socket_path)
        self.on_connection = on_connection
        self.server = None

    async def start(self):
        """Bind the socket. Raises DaemonAlreadyRunning or OSError."""
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        await reclaim_socket(self.socket_path)

        self.server = await asyncio.start_unix_server(
            self.on_connection,
            path=str(self.socket_path),
            limit=MAX_FRAME_BYTES,
        )
        os.chmod(self.socket_path, 0o600)
        logger.info(f"Listening on {self.socket_path}")

    def stop_accepting(self):
        if self.server is not None:
            self.server.close()

    async def close(self):
        """Stop accepting, wait briefly for open connections, remove the socket."""
        if self.server is None:
            return

        self.stop_accepting()
        try:
            await asyncio.wait_for(self.server.wait_closed(), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for client connections to close")

        self.server = None
        self.socket_path.unlink(missing_ok=True)
        logger.info(f"Removed socket {self.socket_path}")
