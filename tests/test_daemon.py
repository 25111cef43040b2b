# tests/test_daemon.py
import asyncio
import socket

import pytest

from conftest import RawClient, start_daemon
from focusd.daemon import Daemon
from focusd.listener import DaemonAlreadyRunning
from focusd.models import ErrorMessage, Phase, ShutdownMessage, SnapshotMessage, TimerConfig


async def test_silent_client_gets_initial_snapshot(daemon, connect):
    """A connection that sends nothing is subscribed after the handshake."""
    client = await connect()

    message = await client.receive()

    assert isinstance(message, SnapshotMessage)
    assert message.phase is Phase.WORK
    assert message.remaining == 1500
    assert message.completed_sessions == 0
    assert len(daemon.registry) == 1


async def test_once_returns_one_snapshot_and_closes(daemon, connect):
    before = daemon.timer.snapshot()
    client = await connect()

    await client.send("once")
    message = await client.receive()

    assert isinstance(message, SnapshotMessage)
    assert message.to_snapshot() == before
    assert await client.at_eof()
    assert daemon.timer.snapshot() == before
    assert len(daemon.registry) == 0


async def test_once_from_subscriber_closes_only_that_client(daemon, connect):
    subscriber = await connect()
    other = await connect()
    await subscriber.send("listen")
    await other.send("listen")
    await subscriber.receive()
    await other.receive()

    await subscriber.send("once")

    assert isinstance(await subscriber.receive(), SnapshotMessage)
    assert await subscriber.at_eof()
    assert await other.nothing_pending()
    assert len(daemon.registry) == 1


async def test_pause_is_broadcast_to_every_client(daemon, connect):
    """Client A pauses; both A and B see the paused state and time stops."""
    a = await connect()
    b = await connect()
    await b.send("listen")
    await b.receive()

    await a.send("pause")
    initial = await a.receive()
    result_a = await a.receive()
    result_b = await b.receive()

    assert initial.paused is False
    assert result_a.paused is True
    assert result_b.paused is True

    await daemon._enqueue_tick()
    await daemon._enqueue_tick()
    assert await b.nothing_pending()
    assert daemon.timer.remaining == 1500

    await a.send("resume")
    assert (await b.receive()).paused is False
    await daemon._enqueue_tick()
    assert (await b.receive()).remaining == 1499


async def test_command_result_follows_initial_snapshot(daemon, connect):
    client = await connect()

    await client.send("skip")
    initial = await client.receive()
    result = await client.receive()

    assert initial.phase is Phase.WORK
    assert result.phase is Phase.SHORT_BREAK
    assert result.completed_sessions == 1


async def test_malformed_frame_reported_to_sender_only(daemon, connect):
    sender = await connect()
    bystander = await connect()
    await sender.send("listen")
    await bystander.send("listen")
    await sender.receive()
    await bystander.receive()
    before = daemon.timer.snapshot()

    await sender.send("explode")

    error = await sender.receive()
    assert isinstance(error, ErrorMessage)
    assert "unknown command" in error.message
    assert await bystander.nothing_pending()
    assert daemon.timer.snapshot() == before

    # connection stays usable
    await sender.send("toggle")
    assert (await sender.receive()).paused is True
    assert (await bystander.receive()).paused is True


async def test_oversized_frame_rejected(daemon, connect):
    client = await connect()
    await client.send("listen")
    await client.receive()

    await client.send("x" * 5000)
    await client.send("pause")

    error = await client.receive()
    assert isinstance(error, ErrorMessage)
    assert "exceeds" in error.message
    assert (await client.receive()).paused is True


async def test_oversized_frame_tail_is_never_executed(daemon, connect):
    """A long frame delivered in two writes is dropped as a whole."""
    client = await connect()
    await client.send("listen")
    await client.receive()

    client.writer.write(b" " * 3000)
    await client.writer.drain()
    await asyncio.sleep(0.1)
    client.writer.write(b"pause\n")
    await client.writer.drain()

    assert isinstance(await client.receive(), ErrorMessage)
    assert await client.nothing_pending()
    assert daemon.timer.paused is False

    await client.send("skip")
    assert (await client.receive()).phase is Phase.SHORT_BREAK


async def test_abrupt_disconnect_does_not_block_broadcast(daemon, connect):
    """A peer dropped mid-stream is removed; the others still get the update."""
    a = await connect()
    b = await connect()
    gone = await connect()
    for client in (a, b, gone):
        await client.send("listen")
        await client.receive()

    gone.abort()
    await a.send("skip")

    assert (await a.receive()).phase is Phase.SHORT_BREAK
    assert (await b.receive()).phase is Phase.SHORT_BREAK
    for _ in range(50):
        if len(daemon.registry) == 2:
            break
        await asyncio.sleep(0.01)
    assert len(daemon.registry) == 2


async def test_detach_closes_without_snapshot(daemon, connect):
    client = await connect()
    await client.send("listen")
    await client.receive()

    await client.send("detach")

    assert await client.at_eof()
    assert len(daemon.registry) == 0


async def test_reconnect_gets_fresh_client_id(daemon, connect):
    first = await connect()
    await first.send("listen")
    await first.receive()
    (connection,) = daemon.registry.clients()
    first_id = connection.client_id
    await first.send("detach")
    assert await first.at_eof()

    second = await connect()
    await second.send("listen")
    await second.receive()
    (connection,) = daemon.registry.clients()

    assert connection.client_id != first_id


async def test_reset_command(daemon, connect):
    client = await connect()
    await client.send("skip")
    await client.receive()
    await client.receive()

    await client.send("reset")

    result = await client.receive()
    assert result.phase is Phase.WORK
    assert result.remaining == 1500
    assert result.completed_sessions == 0


async def test_shutdown_notifies_clients_and_removes_socket(config, socket_path):
    server, task = await start_daemon(config, socket_path)
    listener = await RawClient.open(socket_path)
    await listener.send("listen")
    await listener.receive()
    controller = await RawClient.open(socket_path)

    await controller.send("shutdown")

    await asyncio.wait_for(task, 5)
    assert isinstance(await listener.receive(), ShutdownMessage)
    assert await listener.at_eof()
    assert not socket_path.exists()

    with pytest.raises((FileNotFoundError, ConnectionRefusedError)):
        await RawClient.open(socket_path)

    await listener.close()
    await controller.close()


async def test_second_daemon_refused(daemon, config):
    with pytest.raises(DaemonAlreadyRunning):
        await Daemon(config, daemon.socket_path).start()

    assert daemon.socket_path.exists()


async def test_stale_socket_reclaimed(config, socket_path):
    stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    stale.bind(str(socket_path))
    stale.close()
    assert socket_path.exists()

    server, task = await start_daemon(config, socket_path)
    client = await RawClient.open(socket_path)
    await client.send("once")

    assert isinstance(await client.receive(), SnapshotMessage)

    await client.close()
    server.request_shutdown()
    await asyncio.wait_for(task, 5)


async def test_non_socket_path_refused(config, socket_path):
    socket_path.write_text("not a socket")

    with pytest.raises(FileExistsError):
        await start_daemon(config, socket_path)

    assert socket_path.read_text() == "not a socket"


async def test_clock_drives_broadcasts(socket_path):
    config = TimerConfig(work=1500, autostart_work=True, tick_interval=0.05)
    server, task = await start_daemon(config, socket_path)
    client = await RawClient.open(socket_path)
    await client.send("listen")

    first = await client.receive()
    second = await client.receive()
    third = await client.receive()

    assert first.remaining > second.remaining > third.remaining
    assert second.remaining - third.remaining == 1

    await client.close()
    server.request_shutdown()
    await asyncio.wait_for(task, 5)


async def test_phase_end_reaches_notifier(socket_path):
    calls = []

    class RecordingNotifier:
        def phase_ended(self, finished, next_phase):
            calls.append((finished, next_phase))

        def postpone_ended(self, phase):
            calls.append((phase, phase))

        async def aclose(self):
            pass

    config = TimerConfig(work=2, autostart_work=True, tick_interval=0.05)
    server, task = await start_daemon(config, socket_path, notifier=RecordingNotifier())

    for _ in range(100):
        if calls:
            break
        await asyncio.sleep(0.02)

    server.request_shutdown()
    await asyncio.wait_for(task, 5)
    assert calls[0] == (Phase.WORK, Phase.SHORT_BREAK)


async def test_postpone_is_broadcast_and_refusal_goes_to_sender(config, socket_path):
    server, task = await start_daemon(config.model_copy(update={"postpone_limit": 1}), socket_path)
    sender = await RawClient.open(socket_path)
    watcher = await RawClient.open(socket_path)
    for client in (sender, watcher):
        await client.send("listen")
        await client.receive()

    await sender.send("postpone")
    error = await sender.receive()
    assert isinstance(error, ErrorMessage)
    assert "break" in error.message
    assert await watcher.nothing_pending()

    await sender.send("skip")
    await sender.receive()
    await watcher.receive()
    await sender.send("postpone")

    for client in (sender, watcher):
        message = await client.receive()
        assert message.phase is Phase.SHORT_BREAK
        assert message.postponed is True
        assert message.postpone_count == 1

    await sender.close()
    await watcher.close()
    server.request_shutdown()
    await asyncio.wait_for(task, 5)
