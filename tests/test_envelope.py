#!/usr/bin/env python3
"""Tests for request/response/push envelopes and their codec"""

import json

import pytest

from wiz_lights import (
    WizEnvelopeCodec,
    WizRequest,
    WizResponse,
    WizMethod,
    WizEndpoint,
    WizDecodeError,
    WizMethodError,
)


@pytest.fixture
def codec():
    yield WizEnvelopeCodec()


def test_encode_request_without_params(codec):
    """Requests without params omit the params field entirely"""
    data = codec.encode_request(WizRequest(WizMethod.GET_PILOT))
    assert json.loads(data) == { "method": "getPilot" }


def test_encode_request_with_params(codec):
    data = codec.encode_request(WizRequest("setPilot", { "state": True, "dimming": 40 }))
    assert json.loads(data) == { "method": "setPilot", "params": { "state": True, "dimming": 40 } }
    assert b" " not in data


def test_get_pilot_round_trip(codec):
    decoded = codec.decode_request(codec.encode_request(WizRequest(WizMethod.GET_PILOT)))
    assert decoded.method == "getPilot"
    assert decoded.params == {}


def test_request_round_trip(codec):
    request = WizRequest(WizMethod.SET_PILOT, { "r": 255, "g": 0, "b": 10 })
    assert codec.decode_request(codec.encode_request(request)) == request


def test_unknown_method_rejected():
    with pytest.raises(ValueError):
        WizRequest("setColour")


def test_decode_request_unknown_method(codec):
    with pytest.raises(WizDecodeError):
        codec.decode_request(b'{"method": "launchMissiles"}')


def test_decode_success_response(codec):
    response = codec.decode_response(
        b'{"method":"getPilot","env":"pro","result":{"mac":"a8bb50aabbcc","state":true,"dimming":75}}')
    assert response.method == "getPilot"
    assert not response.is_error
    assert response.result == { "mac": "a8bb50aabbcc", "state": True, "dimming": 75 }
    assert response.message["env"] == "pro"
    response.raise_for_error()


def test_decode_response_without_result(codec):
    """Acknowledgements such as reboot may carry no result at all"""
    response = codec.decode_response(b'{"method":"reboot"}')
    assert response.result == {}
    assert not response.is_error


def test_decode_error_response(codec):
    response = codec.decode_response(b'{"method":"setPilot","error":{"code":-32600,"message":"Invalid Request"}}')
    assert response.is_error
    assert response.result is None
    assert response.error.code == -32600
    assert response.error.message == "Invalid Request"
    with pytest.raises(WizMethodError) as exc_info:
        response.raise_for_error()
    assert exc_info.value.code == -32600
    assert exc_info.value.method == "setPilot"


@pytest.mark.parametrize("data", [
    b"",
    b"not json",
    b"\xff\xfe\x00",
    b"[1, 2, 3]",
    b'{"result": {}}',
    b'{"method": 7}',
    b'{"method": "getPilot", "result": [1]}',
    b'{"method": "getPilot", "error": "bad"}',
    b'{"method": "getPilot", "error": {"code": "x", "message": "bad"}}',
    b"9" * 5000,
    b"[" * 30000 + b"]" * 30000,
])
def test_decode_response_malformed(codec, data):
    with pytest.raises(WizDecodeError):
        codec.decode_response(data)


def test_decode_push(codec):
    event = codec.decode_push(
        b'{"method":"syncPilot","env":"pro","params":{"mac":"a8bb50aabbcc","rssi":-60,"state":false}}',
        ("192.168.1.20", 38899))
    assert event.method == "syncPilot"
    assert event.mac == "A8BB50AABBCC"
    assert event.params["state"] is False
    assert event.src_addr == ("192.168.1.20", 38899)


def test_decode_push_registration_ack(codec):
    """Registration acknowledgements carry their state in result"""
    event = codec.decode_push(b'{"method":"registration","result":{"mac":"a8bb50aabbcc","success":true}}',
                              ("192.168.1.20", 38899))
    assert event.method == "registration"
    assert event.params["success"] is True


def test_decode_push_without_state(codec):
    with pytest.raises(WizDecodeError):
        codec.decode_push(b'{"method":"syncPilot"}', ("192.168.1.20", 38899))


def test_response_message_built_when_missing():
    response = WizResponse("getPower", result={ "power": 5300 })
    assert response.message == { "method": "getPower", "result": { "power": 5300 } }


def test_endpoint_defaults():
    endpoint = WizEndpoint("192.168.1.20")
    assert endpoint.addr == ("192.168.1.20", 38899)
    assert str(endpoint) == "192.168.1.20:38899"
    assert str(WizEndpoint("192.168.1.20", name="porch")) == "porch@192.168.1.20:38899"
