# focusd/registry.py
"""Attached clients and best-effort fan-out of snapshots."""
import asyncio
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .models import StateSnapshot
from .protocol import encode_shutdown, encode_snapshot

logger = logging.getLogger(__name__)

# Bytes queued for a single client before it counts as too slow to keep.
WRITE_BUFFER_LIMIT = 64 * 1024


class ClientConnection(ABC):
    """One attached peer.

    Subclasses implement ``send`` and extend ``close``; ``send`` raises
    ConnectionError (or any OSError) when the peer can no longer be written.
    """

    def __init__(self):
        self.client_id: Optional[int] = None
        self.alive = True

    @abstractmethod
    def send(self, frame: bytes) -> None:
        ...

    def close(self) -> None:
        self.alive = False


class StreamConnection(ClientConnection):
    """Client connection backed by an asyncio StreamWriter.

    Writes are buffered by the transport and never awaited, so a slow peer
    cannot hold up the caller.
    """

    def __init__(self, writer: asyncio.StreamWriter, buffer_limit: int = WRITE_BUFFER_LIMIT):
        super().__init__()
        self.writer = writer
        self.buffer_limit = buffer_limit

    def send(self, frame: bytes) -> None:
        if not self.alive or self.writer.is_closing():
            raise ConnectionError("peer closed")

        transport = self.writer.transport
        if transport.get_write_buffer_size() > self.buffer_limit:
            raise ConnectionError("write buffer full")

        self.writer.write(frame)

    def close(self) -> None:
        super().close()
        if self.writer.is_closing():
            return

        transport = self.writer.transport
        if transport.get_write_buffer_size() > self.buffer_limit:
            # Peer is not reading; a graceful close would wait on it forever.
            transport.abort()
        else:
            self.writer.close()


class ClientRegistry:
    """Set of currently attached clients keyed by id."""

    def __init__(self):
        self._clients: dict[int, ClientConnection] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, connection: ClientConnection) -> int:
        """Add a live connection and return its fresh id."""
        if not connection.alive:
            raise ConnectionError("cannot register a closed connection")

        with self._lock:
            client_id = next(self._ids)
            connection.client_id = client_id
            self._clients[client_id] = connection

        logger.debug(f"Client {client_id} registered ({len(self)} attached)")
        return client_id

    def unregister(self, client_id: Optional[int]) -> Optional[ClientConnection]:
        """Remove a client. Unknown ids are ignored."""
        if client_id is None:
            return None

        with self._lock:
            connection = self._clients.pop(client_id, None)

        if connection is not None:
            logger.debug(f"Client {client_id} unregistered ({len(self)} attached)")
        return connection

    def clients(self) -> list[ClientConnection]:
        """Copy of the registered connections."""
        with self._lock:
            return list(self._clients.values())

    def __contains__(self, client_id) -> bool:
        with self._lock:
            return client_id in self._clients

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


class BroadcastHub:
    """Pushes frames to every registered client, dropping the ones that fail."""

    def __init__(self, registry: ClientRegistry):
        self.registry = registry

    def broadcast(self, snapshot: StateSnapshot) -> int:
        """Send a snapshot to all clients. Returns the number delivered."""
        return self._fan_out(encode_snapshot(snapshot))

    def deliver(self, connection: ClientConnection, frame: bytes) -> bool:
        """Send to one client; on failure drop it from the registry."""
        try:
            connection.send(frame)
            return True
        except (ConnectionError, OSError) as e:
            logger.warning(f"Dropping client {connection.client_id}: {e}")
            self.drop(connection)
            return False

    def drop(self, connection: ClientConnection):
        self.registry.unregister(connection.client_id)
        try:
            connection.close()
        except OSError as e:
            logger.debug(f"Error closing client {connection.client_id}: {e}")

    def notify_shutdown(self):
        """Tell every client the daemon is going away and close them."""
        frame = encode_shutdown()
        for connection in self.registry.clients():
            self.deliver(connection, frame)
            self.drop(connection)

    def _fan_out(self, frame: bytes) -> int:
        delivered = 0
        for connection in self.registry.clients():
            if self.deliver(connection, frame):
                delivered += 1
        return delivered
