#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizPushListener -- receives unsolicited state updates from fixtures:

  1. Bind the push port (typically 38900) and run a background receive loop
  2. Decode every inbound datagram as a WizPushEvent ("syncPilot", "firstBeat", ...)
  3. Deliver each event to the registered observers, in registration order
  4. Optionally, ask fixtures to start pushing updates to this host ("registration")

The listener runs independently of command requests; starting or stopping it never disturbs an
exchange in flight on the command port.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import WIZ_PUSH_PORT, WIZ_COMMAND_PORT, DEFAULT_PUSH_POLL_INTERVAL
from .exceptions import (
    WizDecodeError,
    WizTimeoutError,
    WizTransportError,
    WizAlreadyRunningError,
    WizNotRunningError,
  )
from .envelope import WizMethod, WizRequest, WizPushEvent, WizEnvelopeCodec
from .history import WizMessageHistory, WizMessageType
from .runtime import WizRuntime, WizDatagramSocket, WizTaskHandle, get_default_runtime
from .util import generate_phone_mac, get_preferred_local_ip_address, normalize_mac

WizPushObserver = Callable[[WizPushEvent], Optional[Awaitable[None]]]
"""A callback for received push events. It may return an awaitable, which is awaited before the
   next observer is called. Observers must return promptly; a blocked observer stalls delivery of
   all later events."""

class WizListenerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"

class _ObserverEntry(NamedTuple):
    handle: int
    mac: Optional[str]
    observer: WizPushObserver

class WizPushListener(AsyncContextManager['WizPushListener']):
    """
    Listens for push events from fixtures and fans them out to observers.

    Usage:
        async with WizPushListener() as listener:
            listener.register(lambda event: print(event))
            await listener.register_device("192.168.1.20")
            ...
    """

    port: int
    """The local port to listen on."""

    bind_address: str
    """The local IP address to bind to."""

    poll_interval: float
    """Upper bound (in seconds) on each receive wait in the background loop."""

    runtime: WizRuntime
    codec: WizEnvelopeCodec

    history: Optional[WizMessageHistory]
    """If not None, every received event is recorded here."""

    phone_mac: str
    """The client MAC address sent to fixtures in registration requests."""

    _state: WizListenerState = WizListenerState.STOPPED
    _socket: Optional[WizDatagramSocket] = None
    _task: Optional[WizTaskHandle] = None
    _stopped: Optional[asyncio.Event] = None
    """Set once the stop() in progress has released the socket and returned to STOPPED."""

    _observers: Tuple[_ObserverEntry, ...] = ()
    """Copy-on-write snapshot of the registered observers, in registration order."""

    _observers_lock: threading.Lock
    _i_next_observer: int = 0

    _last_push_time: Optional[float] = None
    _last_error: Optional[str] = None

    def __init__(
            self,
            port: int=WIZ_PUSH_PORT,
            bind_address: str="0.0.0.0",
            runtime: Optional[WizRuntime]=None,
            codec: Optional[WizEnvelopeCodec]=None,
            poll_interval: float=DEFAULT_PUSH_POLL_INTERVAL,
            history: Optional[WizMessageHistory]=None,
            phone_mac: Optional[str]=None,
          ) -> None:
        self.port = port
        self.bind_address = bind_address
        self.runtime = get_default_runtime() if runtime is None else runtime
        self.codec = WizEnvelopeCodec() if codec is None else codec
        self.poll_interval = poll_interval
        self.history = history
        self.phone_mac = generate_phone_mac() if phone_mac is None else normalize_mac(phone_mac)
        self._observers_lock = threading.Lock()

    @property
    def state(self) -> WizListenerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WizListenerState.RUNNING

    @property
    def local_addr(self) -> Optional[HostAndPort]:
        """The address the push socket is bound to, or None if not running."""
        return None if self._socket is None else self._socket.local_addr

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def register(self, observer: WizPushObserver, mac: Optional[str]=None) -> int:
        """Adds an observer to be called for every push event, or only for events from the fixture
           with MAC address mac. Returns a handle for unregister()."""
        norm_mac = None if mac is None else normalize_mac(mac)
        with self._observers_lock:
            handle = self._i_next_observer
            self._i_next_observer += 1
            self._observers = self._observers + (_ObserverEntry(handle, norm_mac, observer),)
        return handle

    def unregister(self, handle: int) -> None:
        """Removes a previously registered observer. Raises KeyError if handle is unknown."""
        with self._observers_lock:
            observers = tuple(entry for entry in self._observers if entry.handle != handle)
            if len(observers) == len(self._observers):
                raise KeyError(handle)
            self._observers = observers

    async def start(self) -> None:
        """Binds the push port and starts the background receive loop.

        Raises WizAlreadyRunningError unless the listener is stopped.
        """
        if self._state != WizListenerState.STOPPED:
            raise WizAlreadyRunningError(f"Push listener is {self._state.value}")
        self._state = WizListenerState.STARTING
        try:
            self._socket = await self.runtime.open_datagram_socket(
                (self.bind_address, self.port),
                allow_broadcast=True,
                reuse_address=True
              )
            self._task = self.runtime.spawn(self._run_receive_task(self._socket), name="wiz-push-listener")
        except BaseException:
            if not self._socket is None:
                self._socket.close()
                self._socket = None
            self._state = WizListenerState.STOPPED
            raise
        self._state = WizListenerState.RUNNING
        logger.debug(f"Push listener running on {self._socket.local_addr}")

    async def stop(self) -> None:
        """Stops the background receive loop and releases the push port. A no-op if already stopped.

        Raises WizNotRunningError if called while start() is still in progress.
        """
        if self._state == WizListenerState.STOPPED:
            return
        if self._state == WizListenerState.STOPPING:
            # another caller is already stopping; wait until it has fully released the socket
            assert not self._stopped is None
            await self._stopped.wait()
            return
        if self._state == WizListenerState.STARTING:
            raise WizNotRunningError("Push listener cannot be stopped while it is starting")
        self._state = WizListenerState.STOPPING
        stopped = asyncio.Event()
        self._stopped = stopped
        try:
            if not self._task is None:
                self._task.cancel()
                try:
                    await self._task.wait()
                except Exception as e:
                    logger.warning(f"Push listener task ended with exception: {e}")
        finally:
            self._task = None
            if not self._socket is None:
                self._socket.close()
                self._socket = None
            self._state = WizListenerState.STOPPED
            self._stopped = None
            stopped.set()
        logger.debug("Push listener stopped")

    async def register_device(self, ip: str, phone_ip: Optional[str]=None, port: int=WIZ_COMMAND_PORT) -> None:
        """Asks the fixture at ip to push state updates to this host. The request is sent from the push
           socket; the fixture's acknowledgement arrives as a "registration" push event.

        Raises WizNotRunningError if the listener is not running.
        """
        sock = self._socket
        if self._state != WizListenerState.RUNNING or sock is None:
            raise WizNotRunningError("Push listener must be running to register a device")
        if phone_ip is None:
            phone_ip = get_preferred_local_ip_address()
            if phone_ip is None:
                raise WizTransportError("No local IPv4 address to register for push updates")
        request = WizRequest(
            WizMethod.REGISTRATION,
            {
                "phoneIp": phone_ip,
                "register": True,
                "phoneMac": self.phone_mac,
            }
          )
        logger.debug(f"Registering for push updates from {ip}:{port} as {phone_ip}/{self.phone_mac}")
        await sock.sendto(self.codec.encode_request(request), (ip, port))

    async def dispatch(self, event: WizPushEvent) -> None:
        """Delivers event to every matching observer, in registration order. An exception raised by
           one observer is logged and does not prevent delivery to the others."""
        observers = self._observers
        event_mac = event.mac
        for entry in observers:
            if not entry.mac is None and entry.mac != event_mac:
                continue
            try:
                result = entry.observer(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Push observer {entry.handle} raised exception processing {event}: {e}")

    def diagnostics(self) -> JsonableDict:
        last_push = self._last_push_time
        return {
            "running": self.is_running,
            "state": self._state.value,
            "observer_count": len(self._observers),
            "time_since_last_push": None if last_push is None else self.runtime.monotonic() - last_push,
            "last_error": self._last_error,
          }

    async def _run_receive_task(self, sock: WizDatagramSocket) -> None:
        logger.debug("Push listener task starting")
        try:
            while True:
                try:
                    data, addr = await sock.recvfrom(self.poll_interval)
                except WizTimeoutError:
                    continue
                except WizTransportError as e:
                    if sock.closed:
                        logger.info(f"Push listener socket closed; exiting: {e}")
                        break
                    self._last_error = str(e)
                    logger.warning(f"Push listener socket error: {e}")
                    continue
                await self._handle_datagram(data, addr)
        except BaseException as e:
            logger.debug(f"Push listener task exiting with {e!r}")
            raise
        logger.debug("Push listener task exiting")

    async def _handle_datagram(self, data: bytes, addr: HostAndPort) -> None:
        self._last_push_time = self.runtime.monotonic()
        try:
            event = self.codec.decode_push(data, addr)
        except WizDecodeError as e:
            logger.warning(f"Dropping undecodable push datagram from {addr}: {e}")
            return
        logger.debug(f"Received {event}")
        if not self.history is None:
            self.history.record(WizMessageType.PUSH, { "method": event.method, "params": event.params })
        await self.dispatch(event)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop()
        return False
