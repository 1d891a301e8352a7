#!/usr/bin/env python3
"""Shared fixtures: a scripted runtime that stands in for the network and the clock"""
# pylint: disable=redefined-outer-name

import asyncio
import json

import pytest

from wiz_lights.internal_types import *
from wiz_lights.exceptions import WizTimeoutError, WizTransportError, WizResourceExhaustionError
from wiz_lights.runtime import WizRuntime, WizDatagramSocket, WizTaskHandle, AsyncioTaskHandle

_ReceivedItem = Union[Tuple[bytes, HostAndPort], BaseException]

Responder = Callable[[bytes, HostAndPort], Optional[Iterable[_ReceivedItem]]]
"""Called for every sent datagram with (data, dest_addr); returns the datagrams (or exceptions)
   that the sending socket will receive."""


def encode(msg: JsonableDict) -> bytes:
    """Encodes a message the way a fixture would"""
    return json.dumps(msg).encode('utf-8')


class FakeDatagramSocket(WizDatagramSocket):
    """A socket whose traffic is scripted by FakeRuntime.responder"""

    def __init__(self, runtime: 'FakeRuntime', local_addr: HostAndPort, allow_broadcast: bool, reuse_address: bool):
        self.runtime = runtime
        self._local_addr = local_addr
        self.allow_broadcast = allow_broadcast
        self.reuse_address = reuse_address
        self.sent: List[Tuple[bytes, HostAndPort]] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def local_addr(self) -> HostAndPort:
        return self._local_addr

    @property
    def closed(self) -> bool:
        return self._closed

    def inject(self, item: _ReceivedItem) -> None:
        self.queue.put_nowait(item)

    async def sendto(self, data: bytes, addr: HostAndPort) -> None:
        if self._closed:
            raise WizTransportError("socket closed")
        self.sent.append((data, addr))
        self.runtime.sent.append((data, addr))
        if self.runtime.responder is not None:
            replies = self.runtime.responder(data, addr)
            if replies is not None:
                for item in replies:
                    self.inject(item)

    async def recvfrom(self, timeout: Optional[float]) -> Tuple[bytes, HostAndPort]:
        if self._closed and self.queue.empty():
            raise WizTransportError("socket closed")
        if self.queue.empty() and not self.runtime.blocking_receive:
            # nothing scripted; the whole wait elapses at once
            if timeout is not None:
                self.runtime.clock += timeout
            await asyncio.sleep(0)
            raise WizTimeoutError(f"no datagram within {timeout} seconds")
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            raise WizTimeoutError(f"no datagram within {timeout} seconds") from None
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.queue.put_nowait(WizTransportError("socket closed"))


class FakeRuntime(WizRuntime):
    """A WizRuntime with a virtual clock and scripted sockets. sleep() and receive timeouts advance
       the clock without waiting, unless blocking_receive is set."""

    def __init__(self, responder: Optional[Responder]=None, blocking_receive: bool=False):
        self.responder = responder
        self.blocking_receive = blocking_receive
        self.clock = 0.0
        self.sleeps: List[float] = []
        self.sent: List[Tuple[bytes, HostAndPort]] = []
        self.sockets: List[FakeDatagramSocket] = []
        self.fail_open = False
        self._next_port = 50000

    async def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self.clock += duration
        await asyncio.sleep(0)

    def spawn(self, coro: Coroutine[Any, Any, None], name: Optional[str]=None) -> WizTaskHandle:
        return AsyncioTaskHandle(asyncio.get_running_loop().create_task(coro, name=name))

    async def open_datagram_socket(
            self,
            local_addr: HostAndPort=("0.0.0.0", 0),
            allow_broadcast: bool=False,
            reuse_address: bool=False,
          ) -> WizDatagramSocket:
        if self.fail_open:
            raise WizResourceExhaustionError("no sockets left")
        host, port = local_addr
        if port == 0:
            port = self._next_port
            self._next_port += 1
        sock = FakeDatagramSocket(self, (host, port), allow_broadcast, reuse_address)
        self.sockets.append(sock)
        return sock

    def create_lock(self) -> AsyncContextManager[Any]:
        return asyncio.Lock()

    def monotonic(self) -> float:
        return self.clock


class ScriptedFixtures:
    """A responder that answers requests sent to known fixture IPs, and can be told to stay
       silent for the first few requests to a fixture."""

    def __init__(self):
        self.results: Dict[Tuple[str, str], JsonableDict] = {}
        self.errors: Dict[Tuple[str, str], JsonableDict] = {}
        self.drop_first: Dict[str, int] = {}
        self.requests: List[Tuple[str, JsonableDict]] = []

    def set_result(self, ip: str, method: str, result: JsonableDict) -> None:
        self.results[(ip, method)] = result

    def set_error(self, ip: str, method: str, code: int, message: str) -> None:
        self.errors[(ip, method)] = { "code": code, "message": message }

    def __call__(self, data: bytes, addr: HostAndPort) -> Optional[List[_ReceivedItem]]:
        msg = json.loads(data.decode('utf-8'))
        ip, port = addr
        self.requests.append((ip, msg))
        remaining_drops = self.drop_first.get(ip, 0)
        if remaining_drops > 0:
            self.drop_first[ip] = remaining_drops - 1
            return None
        method = msg["method"]
        error = self.errors.get((ip, method))
        if error is not None:
            return [(encode({ "method": method, "error": error }), (ip, port))]
        result = self.results.get((ip, method))
        if result is None:
            return None
        return [(encode({ "method": method, "env": "pro", "result": result }), (ip, port))]


@pytest.fixture
def fixtures():
    yield ScriptedFixtures()


@pytest.fixture
def runtime(fixtures):
    yield FakeRuntime(responder=fixtures)
