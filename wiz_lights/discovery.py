#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizDiscovery -- finds WiZ fixtures on the local network:

  1. Broadcast a "registration" request to the command port (typically 255.255.255.255:38899)
  2. Receive and decode the replies of every fixture that hears it
  3. Collect the distinct fixtures (by MAC address) that answer within a time window

Replies that are not valid envelopes, or that do not identify a fixture, are dropped; other
devices on the same segment may broadcast unrelated traffic to the same port.
"""

from __future__ import annotations

import time
import datetime

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    WIZ_BROADCAST_ADDRESS,
    WIZ_COMMAND_PORT,
    DEFAULT_DISCOVERY_WINDOW,
    DISCOVERY_PHONE_MAC,
    DISCOVERY_PHONE_IP,
  )
from .exceptions import WizDecodeError, WizTimeoutError, WizTransportError
from .envelope import WizEndpoint, WizMethod, WizRequest, WizEnvelopeCodec
from .runtime import WizRuntime, WizDatagramSocket, get_default_runtime

if TYPE_CHECKING:
    from .light import WizLight

class WizDiscoveredDevice:
    """A fixture that answered a discovery broadcast. Two instances are equal if they have
       the same MAC address."""

    ip: str
    """The IP address the reply came from"""

    mac: str
    """The upper-cased MAC address reported by the fixture"""

    response: JsonableDict
    """The "result" object of the reply"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the reply was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the reply was received."""

    def __init__(self, ip: str, mac: str, response: Optional[JsonableDict]=None):
        self.ip = ip
        self.mac = mac.upper()
        self.response = {} if response is None else response
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @property
    def endpoint(self) -> WizEndpoint:
        return WizEndpoint(self.ip)

    def to_light(self, name: Optional[str]=None, **kwargs: Any) -> WizLight:
        """Creates a WizLight that controls this fixture."""
        from .light import WizLight
        return WizLight(self.ip, name=name, **kwargs)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, WizDiscoveredDevice):
            return False
        return self.mac == other.mac

    def __hash__(self) -> int:
        return hash(self.mac)

    def __str__(self) -> str:
        return f"WizDiscoveredDevice(ip={self.ip}, mac={self.mac})"

    def __repr__(self) -> str:
        return str(self)

class WizDiscoveryRequest(
        AsyncContextManager['WizDiscoveryRequest'],
        AsyncIterable[WizDiscoveredDevice]
      ):
    """A single discovery broadcast and the replies to it, within an
       AsyncContextManager/AsyncIterable interface.

    Usage:
        async with WizDiscoveryRequest(discovery, window=3.0) as request:
            async for device in request:
                print(device.ip, device.mac)
                # It is possible to break out of the loop early, e.g. once the wanted fixture answered
    """

    discovery: WizDiscovery
    window: float
    end_time: float = 0.0
    sock: Optional[WizDatagramSocket] = None
    seen: Dict[str, WizDiscoveredDevice]
    """Devices seen so far, by MAC address, in first-seen order"""

    def __init__(self, discovery: WizDiscovery, window: Optional[float]=None):
        self.discovery = discovery
        self.window = discovery.window if window is None else window
        self.seen = {}

    async def __aenter__(self) -> WizDiscoveryRequest:
        if self.window <= 0.0:
            return self
        runtime = self.discovery.runtime
        self.sock = await runtime.open_datagram_socket((self.discovery.bind_address, 0), allow_broadcast=True)
        try:
            request = WizRequest(
                WizMethod.REGISTRATION,
                {
                    "phoneMac": DISCOVERY_PHONE_MAC,
                    "register": False,
                    "phoneIp": DISCOVERY_PHONE_IP,
                    "id": "1",
                }
              )
            await self.sock.sendto(
                self.discovery.codec.encode_request(request),
                (self.discovery.broadcast_address, self.discovery.port)
              )
            self.end_time = runtime.monotonic() + self.window
        except BaseException:
            # __aexit__ is not called when __aenter__ raises
            self.sock.close()
            self.sock = None
            raise
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if not self.sock is None:
            self.sock.close()
            self.sock = None
        return False

    async def iter_responses(self) -> AsyncIterator[WizDiscoveredDevice]:
        sock = self.sock
        if sock is None:
            return
        runtime = self.discovery.runtime
        while True:
            remaining_time = self.end_time - runtime.monotonic()
            if remaining_time <= 0.0:
                break
            try:
                data, addr = await sock.recvfrom(remaining_time)
            except WizTimeoutError:
                break
            except WizTransportError as e:
                if sock.closed:
                    break
                logger.debug(f"Ignoring socket error during discovery: {e}")
                continue
            device = self._parse_reply(data, addr)
            if device is None:
                continue
            if device.mac in self.seen:
                logger.debug(f"Ignoring repeated discovery reply from {device}")
                continue
            logger.debug(f"Discovered {device}")
            self.seen[device.mac] = device
            yield device

    def __aiter__(self) -> AsyncIterator[WizDiscoveredDevice]:
        return self.iter_responses()

    def _parse_reply(self, data: bytes, addr: HostAndPort) -> Optional[WizDiscoveredDevice]:
        try:
            response = self.discovery.codec.decode_response(data)
        except WizDecodeError as e:
            logger.debug(f"Dropping malformed discovery reply from {addr}: {e}")
            return None
        if response.result is None:
            logger.debug(f"Dropping discovery error reply from {addr}: {response}")
            return None
        mac = response.result.get("mac")
        if not isinstance(mac, str) or mac == "":
            logger.debug(f"Dropping discovery reply without a MAC from {addr}: {response}")
            return None
        return WizDiscoveredDevice(addr[0], mac, response.result)

class WizDiscovery:
    """Broadcasts discovery requests and collects the fixtures that answer."""

    window: float
    """The default amount of time (in seconds) to wait for replies."""

    broadcast_address: str
    """The address that discovery requests are broadcast to."""

    port: int
    """The command port that discovery requests are sent to."""

    bind_address: str
    """The local IP address to bind to."""

    runtime: WizRuntime
    codec: WizEnvelopeCodec

    def __init__(
            self,
            window: float=DEFAULT_DISCOVERY_WINDOW,
            broadcast_address: str=WIZ_BROADCAST_ADDRESS,
            port: int=WIZ_COMMAND_PORT,
            bind_address: str="0.0.0.0",
            runtime: Optional[WizRuntime]=None,
            codec: Optional[WizEnvelopeCodec]=None,
          ):
        self.window = window
        self.broadcast_address = broadcast_address
        self.port = port
        self.bind_address = bind_address
        self.runtime = get_default_runtime() if runtime is None else runtime
        self.codec = WizEnvelopeCodec() if codec is None else codec

    def search(self, window: Optional[float]=None) -> WizDiscoveryRequest:
        """Creates an async context manager/iterable that broadcasts a discovery request and
           yields each distinct fixture as its first reply arrives."""
        return WizDiscoveryRequest(self, window=window)

    async def iter_discover(self, window: Optional[float]=None) -> AsyncIterator[WizDiscoveredDevice]:
        async with self.search(window) as request:
            async for device in request:
                yield device

    async def discover(self, window: Optional[float]=None) -> List[WizDiscoveredDevice]:
        """Waits for the whole window and returns the distinct fixtures that answered, in the order
           they were first seen. An empty list is a valid result."""
        results: List[WizDiscoveredDevice] = []
        async for device in self.iter_discover(window):
            results.append(device)
        return results

async def discover_devices(window: float=DEFAULT_DISCOVERY_WINDOW, **kwargs: Any) -> List[WizDiscoveredDevice]:
    """Convenience wrapper: WizDiscovery(**kwargs).discover(window)"""
    return await WizDiscovery(window=window, **kwargs).discover()
