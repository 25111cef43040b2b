# focusd/daemon.py
"""Daemon composition root.

One consumer task owns the TimerStateMachine and drains a single queue that
merges clock ticks and client commands, so state mutations never interleave.
Per-client read loops only decode frames and enqueue them.
"""
import asyncio
import logging
import signal
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .listener import Listener
from .models import Command, TimerConfig
from .notifier import Notifier
from .protocol import (
    DecodeError, FrameTooLong, discard_frame, encode_error, encode_snapshot, read_frame, route,
)
from .registry import BroadcastHub, ClientConnection, ClientRegistry, StreamConnection
from .scheduler import Clock
from .timer import CommandRefused, TimerStateMachine

logger = logging.getLogger(__name__)

# A connection that sends nothing within this window is subscribed
HANDSHAKE_TIMEOUT = 0.25


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class CommandEvent:
    connection: ClientConnection
    command: Command
    attach: bool = False


TICK = Tick()


class Daemon:
    """Owns the timer, the client registry and the socket listener.

    A new connection is pending until its first frame arrives or
    ``handshake_timeout`` passes. A connection that stays silent is
    subscribed when the timeout expires, so its initial snapshot arrives
    that much after connecting rather than immediately.
    """

    def __init__(
        self,
        config: TimerConfig,
        socket_path: Path,
        notifier: Optional[Notifier] = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        self.config = config
        self.notifier = notifier
        self.handshake_timeout = handshake_timeout

        self.timer = TimerStateMachine(
            config,
            on_phase_end=notifier.phase_ended if notifier is not None else None,
            on_postpone_end=notifier.postpone_ended if notifier is not None else None,
        )
        self.registry = ClientRegistry()
        self.hub = BroadcastHub(self.registry)
        self.clock = Clock(config.tick_interval, self._enqueue_tick)
        self.listener = Listener(socket_path, self._handle_connection)

        self._mutations = {
            Command.PAUSE: self.timer.pause,
            Command.RESUME: self.timer.resume,
            Command.TOGGLE: self.timer.toggle,
            Command.SKIP: self.timer.skip,
            Command.RESET: self.timer.reset,
            Command.POSTPONE: self.timer.postpone,
        }
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._shutdown_requested: Optional[asyncio.Event] = None
        self._connections: set[StreamConnection] = set()
        self._stopping = False

    @property
    def socket_path(self) -> Path:
        return self.listener.socket_path

    async def start(self):
        """Bind the socket and start the clock and the consumer.

        Raises DaemonAlreadyRunning or OSError if the socket cannot be bound.
        """
        self._queue = asyncio.Queue()
        self._shutdown_requested = asyncio.Event()

        await self.listener.start()
        self._consumer = asyncio.create_task(self._process_events())
        self.clock.start()

        state = self.timer.snapshot()
        logger.info(
            f"Daemon started: {state.phase.value} {state.remaining}s "
            f"({'paused' if state.paused else 'running'})"
        )

    async def serve_forever(self, install_signal_handlers: bool = True):
        """Run until a shutdown command or SIGINT/SIGTERM, then stop."""
        await self.start()

        loop = asyncio.get_running_loop()
        signals = (signal.SIGINT, signal.SIGTERM) if install_signal_handlers else ()
        for sig in signals:
            loop.add_signal_handler(sig, self.request_shutdown)

        try:
            await self._shutdown_requested.wait()
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
            await self.stop()

    def request_shutdown(self):
        if self._shutdown_requested is not None:
            self._shutdown_requested.set()

    async def stop(self):
        """Stop accepting, notify and close clients, remove the socket."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("Shutting down")

        self.listener.stop_accepting()
        self.clock.stop()

        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer

        self.hub.notify_shutdown()
        for connection in list(self._connections):
            connection.close()

        await self.listener.close()
        if self.notifier is not None:
            await self.notifier.aclose()
        logger.info("Daemon stopped")

    # Clock -> queue

    async def _enqueue_tick(self):
        self._queue.put_nowait(TICK)

    # Client read loop -> queue

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        connection = StreamConnection(writer)
        self._connections.add(connection)
        attached = False

        try:
            while connection.alive:
                try:
                    if attached:
                        line = await read_frame(reader)
                    else:
                        line = await asyncio.wait_for(read_frame(reader), self.handshake_timeout)
                except asyncio.TimeoutError:
                    attached = True
                    self._queue.put_nowait(CommandEvent(connection, Command.LISTEN, attach=True))
                    continue
                except FrameTooLong as e:
                    self._reject(connection, str(e))
                    # Outside the handshake timeout so the tail is never parsed
                    await discard_frame(reader)
                    continue

                if not line:
                    break

                try:
                    command = route(line)
                except DecodeError as e:
                    self._reject(connection, str(e))
                    continue

                if command in (Command.ONCE, Command.DETACH):
                    self._queue.put_nowait(CommandEvent(connection, command))
                    # The consumer closes the connection; read until it does.
                    while await reader.read(1024):
                        pass
                    break

                self._queue.put_nowait(CommandEvent(connection, command, attach=not attached))
                attached = True
        except (ConnectionError, OSError) as e:
            logger.debug(f"Client {connection.client_id} read failed: {e}")
        finally:
            self._connections.discard(connection)
            self.registry.unregister(connection.client_id)
            connection.close()

    def _reject(self, connection: ClientConnection, reason: str):
        logger.debug(f"Rejected frame from client {connection.client_id}: {reason}")
        try:
            connection.send(encode_error(reason))
        except (ConnectionError, OSError):
            pass

    # Consumer: the only code that touches the timer

    async def _process_events(self):
        while True:
            event = await self._queue.get()
            try:
                if isinstance(event, Tick):
                    changed = self.timer.tick()
                else:
                    changed = self._apply(event)

                if changed:
                    self.hub.broadcast(self.timer.snapshot())
            except Exception as e:
                logger.exception(f"Error processing {type(event).__name__}: {e}")

    def _apply(self, event: CommandEvent) -> bool:
        connection, command = event.connection, event.command

        if command is Command.ONCE:
            self.registry.unregister(connection.client_id)
            self.hub.deliver(connection, encode_snapshot(self.timer.snapshot()))
            connection.close()
            return False

        if command is Command.DETACH:
            self.hub.drop(connection)
            return False

        if event.attach:
            self._attach(connection)

        if command is Command.LISTEN:
            return False

        if command is Command.SHUTDOWN:
            logger.info(f"Shutdown requested by client {connection.client_id}")
            self.request_shutdown()
            return False

        logger.debug(f"Client {connection.client_id}: {command.value}")
        try:
            return self._mutations[command]()
        except CommandRefused as e:
            self._reject(connection, str(e))
            return False

    def _attach(self, connection: ClientConnection):
        """Register a connection and send it the current state."""
        try:
            self.registry.register(connection)
        except ConnectionError:
            return
        self.hub.deliver(connection, encode_snapshot(self.timer.snapshot()))
