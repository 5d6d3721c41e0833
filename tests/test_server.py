"""Tests for the TCP connection manager."""

import asyncio
import socket

import pytest

from adsb_relay.server import ConnectionManager


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
async def manager():
    m = ConnectionManager("127.0.0.1", 0)
    assert await m.ensure_listening()
    yield m
    await m.close()


class TestListening:
    @pytest.mark.anyio
    async def test_binds_ephemeral_port(self, manager):
        assert manager.listening
        assert manager.bound_port > 0

    @pytest.mark.anyio
    async def test_ensure_listening_idempotent(self, manager):
        port = manager.bound_port
        assert await manager.ensure_listening()
        assert manager.bound_port == port

    @pytest.mark.anyio
    async def test_busy_port_retried(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]

        m = ConnectionManager("127.0.0.1", port)
        assert not await m.ensure_listening()
        assert not m.listening
        assert m.bound_port is None

        blocker.close()
        assert await m.ensure_listening()
        assert m.bound_port == port
        await m.close()


class TestClients:
    @pytest.mark.anyio
    async def test_broadcast_to_all(self, manager):
        readers = []
        writers = []
        for _ in range(3):
            r, w = await asyncio.open_connection("127.0.0.1", manager.bound_port)
            readers.append(r)
            writers.append(w)
        await _wait_for(lambda: len(manager.clients) == 3)

        assert manager.broadcast(b"batch-1") == 3
        for r in readers:
            assert await asyncio.wait_for(r.readexactly(7), 2.0) == b"batch-1"

        for w in writers:
            w.close()
            await w.wait_closed()

    @pytest.mark.anyio
    async def test_disconnect_removes_client(self, manager):
        _, w = await asyncio.open_connection("127.0.0.1", manager.bound_port)
        await _wait_for(lambda: len(manager.clients) == 1)
        w.close()
        await w.wait_closed()
        await _wait_for(lambda: len(manager.clients) == 0)
        assert manager.accepted == 1
        assert manager.dropped == 1

    @pytest.mark.anyio
    async def test_inbound_data_ignored(self, manager):
        r, w = await asyncio.open_connection("127.0.0.1", manager.bound_port)
        await _wait_for(lambda: len(manager.clients) == 1)
        w.write(b"hello server")
        await w.drain()
        manager.broadcast(b"ok")
        assert await asyncio.wait_for(r.readexactly(2), 2.0) == b"ok"
        w.close()
        await w.wait_closed()

    @pytest.mark.anyio
    async def test_dead_client_does_not_affect_others(self, manager):
        r1, w1 = await asyncio.open_connection("127.0.0.1", manager.bound_port)
        _, w2 = await asyncio.open_connection("127.0.0.1", manager.bound_port)
        await _wait_for(lambda: len(manager.clients) == 2)

        # Server side of the second client goes away before the broadcast
        server_side = [c for c in manager.clients if c.get_extra_info("peername") == w2.get_extra_info("sockname")]
        server_side[0].close()

        assert manager.broadcast(b"still-here") == 1
        assert await asyncio.wait_for(r1.readexactly(10), 2.0) == b"still-here"
        assert len(manager.clients) == 1

        for w in (w1, w2):
            w.close()

    @pytest.mark.anyio
    async def test_slow_client_dropped(self):
        m = ConnectionManager("127.0.0.1", 0, max_buffer=0)
        await m.ensure_listening()
        _, w = await asyncio.open_connection("127.0.0.1", m.bound_port)
        await _wait_for(lambda: len(m.clients) == 1)

        # Large enough that the kernel cannot take it all at once
        m.broadcast(b"x" * (16 << 20))
        assert len(m.clients) == 0
        w.close()
        await m.close()

    @pytest.mark.anyio
    async def test_close_drops_everyone(self):
        m = ConnectionManager("127.0.0.1", 0)
        await m.ensure_listening()
        r, _ = await asyncio.open_connection("127.0.0.1", m.bound_port)
        await _wait_for(lambda: len(m.clients) == 1)
        await m.close()
        assert m.clients == ()
        assert not m.listening
        assert await asyncio.wait_for(r.read(), 2.0) == b""
