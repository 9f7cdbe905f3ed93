import asyncio

import pytest

from pp1.command_queue import CommandQueue
from pp1.errors import DisconnectedError, ErrorKind, LinkError, NotConnectedError
from pp1.protocol import PP1Command
from pp1.transport import MockTransport


def test_enqueue_without_transport_rejects_immediately():
    async def run():
        q = CommandQueue(settle_delay=0)
        fut = q.enqueue(lambda t: asyncio.sleep(0), name="MACHINE_STATE")
        assert fut.done()
        with pytest.raises(NotConnectedError):
            await fut

    asyncio.run(run())


def test_enqueue_when_link_down_rejects():
    async def run():
        t = MockTransport()
        t.set_connected(False)
        q = CommandQueue(t, settle_delay=0)
        with pytest.raises(NotConnectedError) as exc:
            await q.exchange(PP1Command.MACHINE_STATE)
        assert exc.value.kind is ErrorKind.NOT_CONNECTED
        assert t.writes == []

    asyncio.run(run())


def test_exchange_writes_frame_and_returns_response():
    async def run():
        t = MockTransport()
        t.queue_response(b"\x00\x01\x10\x00\x00")
        q = CommandQueue(t, settle_delay=0)
        response = await q.exchange(PP1Command.MACHINE_STATE)
        assert response == b"\x00\x01\x10\x00\x00"
        assert t.writes == [b"\x00\x01"]

    asyncio.run(run())


def test_operations_never_interleave():
    async def run():
        # reads take time, so a second write would land mid-exchange if the
        # queue let two operations run at once
        t = MockTransport(auto_respond=True, read_delay=0.01)
        q = CommandQueue(t, settle_delay=0)
        first = q.exchange(PP1Command.MACHINE_STATE)
        second = q.exchange(PP1Command.MACHINE_INFO)
        r1, r2 = await asyncio.gather(first, second)
        assert r1[:2] == b"\x00\x01"
        assert r2[:2] == b"\x00\x00"
        assert t.events == [("write", 1), ("read", 1), ("write", 0), ("read", 0)]

    asyncio.run(run())


def test_fifo_order_across_many_callers():
    async def run():
        t = MockTransport(auto_respond=True)
        q = CommandQueue(t, settle_delay=0)
        ids = [0x0001, 0x0702, 0x0000, 0x0707, 0x0001]
        await asyncio.gather(*(q.exchange(i) for i in ids))
        assert [int.from_bytes(w[:2], "big") for w in t.writes] == ids

    asyncio.run(run())


def test_failed_operation_does_not_stall_queue():
    async def run():
        t = MockTransport(auto_respond=True)
        q = CommandQueue(t, settle_delay=0)

        async def boom(transport):
            raise DisconnectedError("simulated")

        bad = q.enqueue(boom, name="BOOM")
        good = q.exchange(PP1Command.MACHINE_STATE)
        results = await asyncio.gather(bad, good, return_exceptions=True)
        assert isinstance(results[0], DisconnectedError)
        assert results[1][:2] == b"\x00\x01"

    asyncio.run(run())


def test_transport_exception_becomes_link_failure():
    async def run():
        t = MockTransport(auto_respond=True)
        t.fail_next_read = RuntimeError("gatt read failed")
        q = CommandQueue(t, settle_delay=0)
        with pytest.raises(LinkError) as exc:
            await q.exchange(PP1Command.MACHINE_STATE)
        assert exc.value.kind is ErrorKind.LINK_FAILURE
        assert isinstance(exc.value.__cause__, RuntimeError)
        # next exchange still works
        assert (await q.exchange(PP1Command.MACHINE_STATE))[:2] == b"\x00\x01"

    asyncio.run(run())


def test_disconnect_fails_pending_but_active_finishes():
    async def run():
        t = MockTransport()
        q = CommandQueue(t, settle_delay=0)
        gate = asyncio.Event()
        started = asyncio.Event()

        async def slow(transport):
            started.set()
            await gate.wait()
            return b"done"

        active = q.enqueue(slow, name="SLOW")
        queued = [
            asyncio.ensure_future(q.exchange(PP1Command.MACHINE_STATE))
            for _ in range(3)
        ]
        await started.wait()
        assert q.active_name == "SLOW"
        assert q.pending_count == 3

        t.set_connected(False)
        assert q.pending_count == 0
        for fut in queued:
            with pytest.raises(DisconnectedError) as exc:
                await fut
            assert exc.value.kind is ErrorKind.DISCONNECTED

        gate.set()
        assert await active == b"done"
        assert t.writes == []

    asyncio.run(run())


def test_detach_clears_queue():
    async def run():
        t = MockTransport()
        q = CommandQueue(t, settle_delay=0)
        gate = asyncio.Event()

        async def hold(transport):
            await gate.wait()

        q.enqueue(hold, name="HOLD")
        pending = asyncio.ensure_future(q.exchange(PP1Command.MACHINE_STATE))
        await asyncio.sleep(0)
        q.detach()
        assert not q.is_connected
        with pytest.raises(DisconnectedError):
            await pending
        gate.set()
        await asyncio.sleep(0)

    asyncio.run(run())


def test_settle_delay_between_write_and_read():
    async def run():
        t = MockTransport(auto_respond=True)
        q = CommandQueue(t, settle_delay=0.02)
        loop = asyncio.get_running_loop()
        start = loop.time()
        await q.exchange(PP1Command.MACHINE_STATE)
        assert loop.time() - start >= 0.015

    asyncio.run(run())


def test_link_lost_during_read_reports_disconnected():
    async def run():
        t = MockTransport(auto_respond=True, read_delay=0.05)
        q = CommandQueue(t, settle_delay=0)
        fut = asyncio.ensure_future(q.exchange(PP1Command.MACHINE_STATE))
        await asyncio.sleep(0.01)
        assert q.active_name == "MACHINE_STATE"
        t.set_connected(False)
        with pytest.raises(DisconnectedError) as exc:
            await fut
        assert exc.value.kind is ErrorKind.DISCONNECTED
        assert isinstance(exc.value.__cause__, NotConnectedError)

    asyncio.run(run())


def test_each_cleared_entry_gets_its_own_error():
    async def run():
        t = MockTransport()
        q = CommandQueue(t, settle_delay=0)
        gate = asyncio.Event()

        async def hold(transport):
            await gate.wait()

        q.enqueue(hold, name="HOLD")
        queued = [
            asyncio.ensure_future(q.exchange(PP1Command.MACHINE_STATE))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        t.set_connected(False)
        errors = await asyncio.gather(*queued, return_exceptions=True)
        assert all(isinstance(e, DisconnectedError) for e in errors)
        assert len({id(e) for e in errors}) == 3
        gate.set()
        await asyncio.sleep(0)

    asyncio.run(run())
