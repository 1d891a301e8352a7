#!/usr/bin/env python3
"""Tests for broadcast discovery"""

import json

import pytest

from conftest import FakeRuntime, encode

from wiz_lights import WizDiscovery, WizDiscoveredDevice, WizLight, discover_devices


def _reply(mac, ip):
    return (encode({ "method": "registration", "env": "pro", "result": { "mac": mac, "success": True } }), (ip, 38899))


@pytest.mark.asyncio
async def test_zero_window_sends_nothing():
    runtime = FakeRuntime()
    devices = await WizDiscovery(runtime=runtime).discover(0.0)
    assert devices == []
    assert runtime.sockets == []
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_discovery_broadcast():
    runtime = FakeRuntime(responder=lambda data, addr: [
        _reply("a8bb50000001", "192.168.1.20"),
        _reply("a8bb50000002", "192.168.1.21"),
    ])
    devices = await WizDiscovery(runtime=runtime, window=2.0).discover()

    assert [ d.ip for d in devices ] == [ "192.168.1.20", "192.168.1.21" ]
    assert [ d.mac for d in devices ] == [ "A8BB50000001", "A8BB50000002" ]

    assert len(runtime.sent) == 1
    data, addr = runtime.sent[0]
    assert addr == ("255.255.255.255", 38899)
    msg = json.loads(data)
    assert msg["method"] == "registration"
    assert msg["params"]["register"] is False
    assert msg["params"]["phoneMac"] == "AAAAAAAAAAAA"

    sock = runtime.sockets[0]
    assert sock.allow_broadcast
    assert sock.closed
    # the whole window was waited out
    assert runtime.clock == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_duplicate_replies_collapse():
    """The same fixture answering twice (e.g. via two interfaces) is reported once"""
    runtime = FakeRuntime(responder=lambda data, addr: [
        _reply("a8bb50000001", "192.168.1.20"),
        _reply("A8:BB:50:00:00:01".replace(":", "").lower(), "192.168.1.20"),
        _reply("a8bb50000001", "10.0.0.20"),
    ])
    devices = await WizDiscovery(runtime=runtime).discover(1.0)
    assert len(devices) == 1
    assert devices[0].ip == "192.168.1.20"


@pytest.mark.asyncio
async def test_malformed_replies_dropped():
    runtime = FakeRuntime(responder=lambda data, addr: [
        (b"\x00\x01 junk", ("192.168.1.30", 38899)),
        (encode({ "method": "registration", "result": { "success": True } }), ("192.168.1.31", 38899)),
        (encode({ "method": "registration", "error": { "code": -1, "message": "nope" } }), ("192.168.1.32", 38899)),
        _reply("a8bb50000003", "192.168.1.33"),
    ])
    devices = await WizDiscovery(runtime=runtime).discover(1.0)
    assert [ d.ip for d in devices ] == [ "192.168.1.33" ]


@pytest.mark.asyncio
async def test_early_exit_from_search():
    runtime = FakeRuntime(responder=lambda data, addr: [
        _reply("a8bb50000001", "192.168.1.20"),
        _reply("a8bb50000002", "192.168.1.21"),
    ])
    discovery = WizDiscovery(runtime=runtime)
    async with discovery.search(5.0) as request:
        async for device in request:
            found = device
            break
    assert found.mac == "A8BB50000001"
    assert runtime.sockets[0].closed
    assert runtime.clock == 0.0


@pytest.mark.asyncio
async def test_discover_devices_convenience():
    runtime = FakeRuntime(responder=lambda data, addr: [ _reply("a8bb50000001", "192.168.1.20") ])
    devices = await discover_devices(1.0, runtime=runtime)
    assert devices == [ WizDiscoveredDevice("192.168.1.20", "A8BB50000001") ]


@pytest.mark.asyncio
async def test_discovered_device_to_light():
    device = WizDiscoveredDevice("192.168.1.20", "a8bb50000001", { "mac": "a8bb50000001" })
    light = device.to_light(name="porch", runtime=FakeRuntime())
    assert isinstance(light, WizLight)
    assert light.ip == "192.168.1.20"
    assert light.name == "porch"
    assert device.endpoint.port == 38899


@pytest.mark.asyncio
async def test_undecodable_replies_dropped():
    runtime = FakeRuntime(responder=lambda data, addr: [
        (b"[" * 30000 + b"]" * 30000, ("192.168.1.40", 38899)),
        (b"9" * 5000, ("192.168.1.41", 38899)),
        _reply("a8bb50000004", "192.168.1.42"),
    ])
    devices = await WizDiscovery(runtime=runtime).discover(1.0)
    assert [ d.ip for d in devices ] == [ "192.168.1.42" ]
