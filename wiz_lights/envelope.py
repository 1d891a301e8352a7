#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Envelopes exchanged with WiZ fixtures, and the JSON codec that converts them to and from datagrams.

A request is {"method": <str>, "params": <object, optional>}.
A response is {"method": <str>, "result": <object>} or {"method": <str>, "error": {"code": <int>, "message": <str>}}.
A push event is {"method": <str>, "params": <object>} arriving unsolicited on the push port.

The params/result bodies are opaque JSON objects as far as this module is concerned.
"""

from __future__ import annotations

import json
import time
import datetime
from enum import Enum

from .internal_types import *
from .constants import WIZ_COMMAND_PORT
from .exceptions import WizDecodeError, WizMethodError

class WizMethod(str, Enum):
    """The closed set of protocol verbs."""
    GET_PILOT = "getPilot"
    SET_PILOT = "setPilot"
    SET_STATE = "setState"
    GET_SYSTEM_CONFIG = "getSystemConfig"
    GET_USER_CONFIG = "getUserConfig"
    GET_MODEL_CONFIG = "getModelConfig"
    GET_POWER = "getPower"
    RESET = "reset"
    REBOOT = "reboot"
    REGISTRATION = "registration"
    SYNC_PILOT = "syncPilot"
    FIRST_BEAT = "firstBeat"

    def __str__(self) -> str:
        return self.value

_method_names: Set[str] = { m.value for m in WizMethod }

class WizEndpoint(NamedTuple):
    """Where requests for one fixture are sent. Immutable."""

    host: str
    """IP address of the fixture"""

    port: int = WIZ_COMMAND_PORT
    """UDP command port of the fixture"""

    name: Optional[str] = None
    """Optional human-readable label"""

    @property
    def addr(self) -> HostAndPort:
        return (self.host, self.port)

    def __str__(self) -> str:
        if self.name is None:
            return f"{self.host}:{self.port}"
        return f"{self.name}@{self.host}:{self.port}"

class WizRequest:
    """A method name plus an optional parameter object."""

    method: str
    params: JsonableDict

    def __init__(self, method: Union[WizMethod, str], params: Optional[Mapping[str, Jsonable]]=None):
        method_name = method.value if isinstance(method, WizMethod) else method
        if not method_name in _method_names:
            raise ValueError(f"Unknown WiZ method: {method_name!r}")
        self.method = method_name
        self.params = {} if params is None else dict(params)

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = { "method": self.method }
        if len(self.params) > 0:
            result["params"] = self.params
        return result

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, WizRequest):
            return False
        return self.method == other.method and self.params == other.params

    def __str__(self) -> str:
        return f"WizRequest({self.method}, params={self.params})"

    def __repr__(self) -> str:
        return str(self)

class WizResponseErrorInfo(NamedTuple):
    code: int
    message: str

class WizResponse:
    """A decoded reply to a WizRequest. Exactly one of result or error is set."""

    method: str
    """The method name echoed back by the fixture"""

    result: Optional[JsonableDict]
    """The result object, if the request succeeded"""

    error: Optional[WizResponseErrorInfo]
    """The error code and message, if the fixture rejected the request"""

    message: JsonableDict
    """The complete decoded reply"""

    def __init__(
            self,
            method: str,
            result: Optional[JsonableDict]=None,
            error: Optional[WizResponseErrorInfo]=None,
            message: Optional[JsonableDict]=None
          ):
        self.method = method
        self.error = error
        self.result = None if not error is None else ({} if result is None else result)
        if message is None:
            message = { "method": method }
            if error is None:
                message["result"] = self.result
            else:
                message["error"] = { "code": error.code, "message": error.message }
        self.message = message

    @property
    def is_error(self) -> bool:
        return not self.error is None

    def raise_for_error(self) -> None:
        if not self.error is None:
            raise WizMethodError(self.method, self.error.code, self.error.message)

    def __str__(self) -> str:
        if self.error is None:
            return f"WizResponse({self.method}, result={self.result})"
        return f"WizResponse({self.method}, error={self.error.code}: {self.error.message})"

    def __repr__(self) -> str:
        return str(self)

class WizPushEvent:
    """An unsolicited update received on the push port. Not correlated with any request."""

    method: str
    """The method name, normally "syncPilot" (or "firstBeat" when a fixture powers up)"""

    params: JsonableDict
    """The state snapshot carried by the event"""

    src_addr: HostAndPort
    """The address the event was received from"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the event was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the event was received."""

    def __init__(self, method: str, params: JsonableDict, src_addr: HostAndPort):
        self.method = method
        self.params = params
        self.src_addr = src_addr
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @property
    def mac(self) -> Optional[str]:
        """The upper-cased MAC address of the fixture that sent the event, if present."""
        mac = self.params.get("mac")
        if not isinstance(mac, str):
            return None
        return mac.upper()

    def __str__(self) -> str:
        return f"WizPushEvent({self.method} from {self.src_addr[0]}:{self.src_addr[1]}, params={self.params})"

    def __repr__(self) -> str:
        return str(self)

class WizEnvelopeCodec:
    """Converts envelopes to and from raw datagram bytes."""

    def encode_request(self, request: WizRequest) -> bytes:
        return json.dumps(request.to_jsonable(), separators=(',', ':')).encode('utf-8')

    def decode_request(self, data: bytes) -> WizRequest:
        msg = self._decode_object(data)
        method = self._get_method(msg)
        params = self._get_optional_object(msg, "params")
        try:
            return WizRequest(method, params)
        except ValueError as e:
            raise WizDecodeError(str(e)) from e

    def decode_response(self, data: bytes) -> WizResponse:
        msg = self._decode_object(data)
        method = self._get_method(msg)
        error_obj = msg.get("error")
        if not error_obj is None:
            if not isinstance(error_obj, dict):
                raise WizDecodeError(f"Malformed error in {method} response: {error_obj!r}")
            code = error_obj.get("code")
            if not isinstance(code, int) or isinstance(code, bool):
                raise WizDecodeError(f"Malformed error code in {method} response: {code!r}")
            message = error_obj.get("message", "")
            return WizResponse(method, error=WizResponseErrorInfo(code, str(message)), message=msg)
        result = self._get_optional_object(msg, "result")
        return WizResponse(method, result=result, message=msg)

    def decode_push(self, data: bytes, src_addr: HostAndPort) -> WizPushEvent:
        msg = self._decode_object(data)
        method = self._get_method(msg)
        params = self._get_optional_object(msg, "params")
        if params is None:
            # registration acknowledgements arrive on the push port with a result instead of params
            params = self._get_optional_object(msg, "result")
        if params is None:
            raise WizDecodeError(f"Push event {method} from {src_addr} carries no state")
        return WizPushEvent(method, params, src_addr)

    def _decode_object(self, data: bytes) -> JsonableDict:
        try:
            msg = json.loads(data.decode('utf-8'))
        except UnicodeDecodeError as e:
            raise WizDecodeError(f"Datagram is not valid UTF-8: {data!r}") from e
        except json.JSONDecodeError as e:
            raise WizDecodeError(f"Datagram is not valid JSON: {data!r}") from e
        except (ValueError, RecursionError) as e:
            # oversized integer literals and deeply nested arrays
            raise WizDecodeError(f"Datagram of {len(data)} bytes cannot be decoded: {e}") from e
        if not isinstance(msg, dict):
            raise WizDecodeError(f"Datagram is not a JSON object: {data!r}")
        return msg

    def _get_method(self, msg: JsonableDict) -> str:
        method = msg.get("method")
        if not isinstance(method, str):
            raise WizDecodeError(f"Envelope has no method: {msg!r}")
        return method

    def _get_optional_object(self, msg: JsonableDict, key: str) -> Optional[JsonableDict]:
        value = msg.get(key)
        if value is None:
            return None
        if not isinstance(value, dict):
            raise WizDecodeError(f"Envelope field {key!r} is not an object: {value!r}")
        return value
