#!/usr/bin/env python3
"""Tests for the push listener lifecycle, observer fan-out and registration"""

import asyncio
import json
import time

import pytest

from conftest import FakeRuntime, encode

from wiz_lights import (
    AsyncioRuntime,
    WizPushListener,
    WizListenerState,
    WizMessageHistory,
    WizMessageType,
    WizAlreadyRunningError,
    WizNotRunningError,
    WizResourceExhaustionError,
)

FIXTURE_ADDR = ("192.168.1.20", 38899)


def _sync_pilot(mac="a8bb50aabbcc", **params):
    params["mac"] = mac
    return (encode({ "method": "syncPilot", "env": "pro", "params": params }), FIXTURE_ADDR)


class Collector:
    """An observer that records events and signals when enough have arrived"""

    def __init__(self, expected=1, log=None, tag=None):
        self.events = []
        self.expected = expected
        self.log = log
        self.tag = tag
        self.done = asyncio.Event()

    def __call__(self, event):
        self.events.append(event)
        if self.log is not None:
            self.log.append(self.tag)
        if len(self.events) >= self.expected:
            self.done.set()

    async def wait(self, timeout=2.0):
        await asyncio.wait_for(self.done.wait(), timeout)


@pytest.mark.asyncio
async def test_start_stop_lifecycle():
    runtime = FakeRuntime(blocking_receive=True)
    listener = WizPushListener(runtime=runtime)
    assert listener.state == WizListenerState.STOPPED
    await listener.start()
    assert listener.is_running
    sock = runtime.sockets[0]
    assert sock.local_addr == ("0.0.0.0", 38900)
    assert sock.reuse_address

    with pytest.raises(WizAlreadyRunningError):
        await listener.start()
    assert len(runtime.sockets) == 1

    await listener.stop()
    assert listener.state == WizListenerState.STOPPED
    assert sock.closed
    assert listener.local_addr is None

    # stopping again is a no-op
    await listener.stop()
    assert listener.state == WizListenerState.STOPPED

    # and the listener can be restarted
    await listener.start()
    assert listener.is_running
    await listener.stop()


@pytest.mark.asyncio
async def test_failed_start_returns_to_stopped():
    runtime = FakeRuntime(blocking_receive=True)
    runtime.fail_open = True
    listener = WizPushListener(runtime=runtime)
    with pytest.raises(WizResourceExhaustionError):
        await listener.start()
    assert listener.state == WizListenerState.STOPPED


@pytest.mark.asyncio
async def test_observers_called_in_order():
    runtime = FakeRuntime(blocking_receive=True)
    log = []
    observers = [ Collector(log=log, tag=i) for i in range(3) ]
    async with WizPushListener(runtime=runtime) as listener:
        handles = [ listener.register(o) for o in observers ]
        assert listener.observer_count == 3
        runtime.sockets[0].inject(_sync_pilot(state=True))
        await observers[2].wait()
        assert log == [0, 1, 2]
        assert observers[0].events[0].params["state"] is True

        listener.unregister(handles[1])
        assert listener.observer_count == 2
        log.clear()
        last = Collector()
        listener.register(last)
        runtime.sockets[0].inject(_sync_pilot(state=False))
        await last.wait()
        assert log == [0, 2]
        assert len(observers[1].events) == 1


@pytest.mark.asyncio
async def test_unregister_unknown_handle():
    listener = WizPushListener(runtime=FakeRuntime(blocking_receive=True))
    with pytest.raises(KeyError):
        listener.unregister(42)


@pytest.mark.asyncio
async def test_failing_observer_does_not_block_others():
    runtime = FakeRuntime(blocking_receive=True)

    def broken(event):
        raise RuntimeError("observer failure")

    async with WizPushListener(runtime=runtime) as listener:
        listener.register(broken)
        good = Collector(expected=2)
        listener.register(good)
        runtime.sockets[0].inject(_sync_pilot(dimming=10))
        runtime.sockets[0].inject(_sync_pilot(dimming=20))
        await good.wait()
        assert [ e.params["dimming"] for e in good.events ] == [10, 20]
        assert listener.is_running


@pytest.mark.asyncio
async def test_async_observer_awaited():
    runtime = FakeRuntime(blocking_receive=True)
    seen = []
    done = asyncio.Event()

    async def observer(event):
        await asyncio.sleep(0)
        seen.append(event.method)
        done.set()

    async with WizPushListener(runtime=runtime) as listener:
        listener.register(observer)
        runtime.sockets[0].inject(_sync_pilot())
        await asyncio.wait_for(done.wait(), 2.0)
    assert seen == ["syncPilot"]


@pytest.mark.asyncio
async def test_mac_filter():
    runtime = FakeRuntime(blocking_receive=True)
    async with WizPushListener(runtime=runtime) as listener:
        mine = Collector()
        everyone = Collector(expected=2)
        listener.register(mine, mac="A8:BB:50:00:00:02")
        listener.register(everyone)
        runtime.sockets[0].inject(_sync_pilot(mac="a8bb50000001"))
        runtime.sockets[0].inject(_sync_pilot(mac="a8bb50000002"))
        await everyone.wait()
        assert [ e.mac for e in mine.events ] == ["A8BB50000002"]


@pytest.mark.asyncio
async def test_malformed_push_dropped():
    runtime = FakeRuntime(blocking_receive=True)
    history = WizMessageHistory()
    async with WizPushListener(runtime=runtime, history=history) as listener:
        good = Collector()
        listener.register(good)
        runtime.sockets[0].inject((b"{{{ not json", FIXTURE_ADDR))
        runtime.sockets[0].inject(_sync_pilot(temp=2700))
        await good.wait()
        assert len(good.events) == 1
        assert history.last_message(WizMessageType.PUSH, "syncPilot")["params"]["temp"] == 2700
        assert listener.diagnostics()["time_since_last_push"] is not None


@pytest.mark.asyncio
async def test_register_device_requires_running():
    listener = WizPushListener(runtime=FakeRuntime(blocking_receive=True))
    with pytest.raises(WizNotRunningError):
        await listener.register_device("192.168.1.20", phone_ip="192.168.1.5")


@pytest.mark.asyncio
async def test_register_device_sends_from_push_socket():
    runtime = FakeRuntime(blocking_receive=True)
    async with WizPushListener(runtime=runtime, phone_mac="02:00:00:00:00:01") as listener:
        await listener.register_device("192.168.1.20", phone_ip="192.168.1.5")
        sock = runtime.sockets[0]
        data, addr = sock.sent[0]
        assert addr == ("192.168.1.20", 38899)
        assert json.loads(data) == {
            "method": "registration",
            "params": { "phoneIp": "192.168.1.5", "register": True, "phoneMac": "020000000001" },
        }


@pytest.mark.asyncio
async def test_diagnostics_when_stopped():
    listener = WizPushListener(runtime=FakeRuntime(blocking_receive=True))
    diag = listener.diagnostics()
    assert diag["running"] is False
    assert diag["state"] == "stopped"
    assert diag["time_since_last_push"] is None


@pytest.mark.asyncio
async def test_loopback_listener():
    """A real socket: a datagram sent to the push port is delivered, and stop() is prompt even with
       a long poll interval"""
    runtime = AsyncioRuntime()
    listener = WizPushListener(port=0, bind_address="127.0.0.1", runtime=runtime, poll_interval=30.0)
    collector = Collector()
    listener.register(collector)
    await listener.start()
    try:
        port = listener.local_addr[1]
        async with await runtime.open_datagram_socket(("127.0.0.1", 0)) as fixture_sock:
            await fixture_sock.sendto(_sync_pilot(state=True)[0], ("127.0.0.1", port))
            await collector.wait()
        assert collector.events[0].src_addr[0] == "127.0.0.1"
    finally:
        start = time.monotonic()
        await listener.stop()
        assert time.monotonic() - start < 1.0
    assert listener.state == WizListenerState.STOPPED


@pytest.mark.asyncio
async def test_undecodable_nesting_does_not_stop_listener():
    """A datagram nested too deeply for the JSON decoder is dropped, and later events still arrive"""
    runtime = FakeRuntime(blocking_receive=True)
    async with WizPushListener(runtime=runtime) as listener:
        good = Collector()
        listener.register(good)
        runtime.sockets[0].inject((b"[" * 30000 + b"]" * 30000, FIXTURE_ADDR))
        runtime.sockets[0].inject((b"9" * 5000, FIXTURE_ADDR))
        runtime.sockets[0].inject(_sync_pilot(dimming=60))
        await good.wait()
        assert good.events[0].params["dimming"] == 60
        assert listener.is_running


@pytest.mark.asyncio
async def test_concurrent_stop_waits_for_release():
    """A stop() that arrives while another is in progress returns only once the port is released,
       so the listener can be started again at once"""
    runtime = FakeRuntime(blocking_receive=True)
    listener = WizPushListener(runtime=runtime)
    await listener.start()
    sock = runtime.sockets[0]

    first = asyncio.ensure_future(listener.stop())
    await asyncio.sleep(0)
    assert listener.state == WizListenerState.STOPPING

    await listener.stop()
    assert listener.state == WizListenerState.STOPPED
    assert sock.closed
    await listener.start()
    assert listener.is_running
    await first
    assert listener.is_running
    await listener.stop()



@pytest.mark.asyncio
async def test_stop_then_start_from_second_caller():
    runtime = FakeRuntime(blocking_receive=True)
    listener = WizPushListener(runtime=runtime)
    await listener.start()

    async def stop_then_start():
        await listener.stop()
        assert listener.state == WizListenerState.STOPPED
        await listener.start()

    await asyncio.gather(listener.stop(), stop_then_start())
    assert listener.is_running
    assert len(runtime.sockets) == 2
    assert runtime.sockets[0].closed
    await listener.stop()


@pytest.mark.asyncio
async def test_observer_changes_registry_during_dispatch():
    """Changes made from inside an observer do not affect the event being delivered, only later ones"""
    runtime = FakeRuntime(blocking_receive=True)
    log = []
    async with WizPushListener(runtime=runtime) as listener:
        late = Collector(log=log, tag="late")
        added = Collector(log=log, tag="added")
        handles = {}

        def rewire(event):
            log.append("rewire")
            if "late" in handles:
                listener.unregister(handles.pop("late"))
                listener.register(added)

        listener.register(rewire)
        handles["late"] = listener.register(late)

        runtime.sockets[0].inject(_sync_pilot(dimming=10))
        await late.wait()
        # the event in flight still reaches the observer removed during its delivery, not the new one
        assert log == ["rewire", "late"]
        assert added.events == []
        assert listener.observer_count == 2

        runtime.sockets[0].inject(_sync_pilot(dimming=20))
        await added.wait()
        assert log == ["rewire", "late", "rewire", "added"]
        assert len(late.events) == 1
        assert added.events[0].params["dimming"] == 20


@pytest.mark.asyncio
async def test_registry_changes_from_worker_thread_during_dispatch():
    """register/unregister from another thread while an async observer is mid-delivery"""
    runtime = FakeRuntime(blocking_receive=True)
    loop = asyncio.get_running_loop()
    async with WizPushListener(runtime=runtime) as listener:
        in_observer = asyncio.Event()
        release = asyncio.Event()
        seen = []

        async def slow(event):
            seen.append(event.params["dimming"])
            in_observer.set()
            await release.wait()

        listener.register(slow)
        tail = Collector()
        listener.register(tail)

        def churn():
            handles = [ listener.register(lambda event: None) for _ in range(100) ]
            for handle in handles[:50]:
                listener.unregister(handle)
            return handles[50:]

        runtime.sockets[0].inject(_sync_pilot(dimming=30))
        await asyncio.wait_for(in_observer.wait(), 2.0)
        kept = await asyncio.wait_for(loop.run_in_executor(None, churn), 2.0)
        release.set()
        await tail.wait()

        assert seen == [30]
        assert listener.observer_count == 2 + 50
        for handle in kept:
            listener.unregister(handle)
        assert listener.observer_count == 2
        assert listener.is_running
