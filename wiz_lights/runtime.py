#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizRuntime -- the minimal set of cooperative-scheduling capabilities needed by this package:

  1. Bind a UDP datagram socket, send datagrams, and receive datagrams with a timeout
  2. Suspend the calling task for a duration
  3. Spawn a background task and later cancel it, interrupting any pending receive
  4. Create a cooperative lock, and read a monotonic clock

  Nothing else in the package refers to a concrete scheduler; everything goes through a WizRuntime.
  AsyncioRuntime is the implementation for asyncio. Datagram sockets are attached to the event loop
  with loop.create_datagram_endpoint() through a DatagramProtocol adapter that queues received
  datagrams and errors for the timed receive.
"""

from __future__ import annotations


import asyncio
import socket
import time
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .constants import MAX_QUEUE_SIZE
from .exceptions import WizTimeoutError, WizTransportError, WizResourceExhaustionError

class WizDatagramSocket(AsyncContextManager['WizDatagramSocket'], ABC):
    """A bound UDP socket. Closing the socket releases the port and wakes any pending receive."""

    @property
    @abstractmethod
    def local_addr(self) -> HostAndPort:
        """The local address and port the socket is bound to."""
        raise NotImplementedError()

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError()

    @abstractmethod
    async def sendto(self, data: bytes, addr: HostAndPort) -> None:
        """Sends a single datagram without waiting for any reply.

        Raises WizTransportError if the datagram cannot be handed to the OS.
        """
        raise NotImplementedError()

    @abstractmethod
    async def recvfrom(self, timeout: Optional[float]) -> Tuple[bytes, HostAndPort]:
        """Waits for the next datagram.

        Returns a Tuple[data: bytes, src_addr: HostAndPort].
        Raises WizTimeoutError if nothing arrives within timeout seconds, and WizTransportError if
        the OS reported an error on the socket or the socket is closed.
        """
        raise NotImplementedError()

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.close()
        return False

class WizTaskHandle(ABC):
    """A handle to a task started with WizRuntime.spawn()."""

    @abstractmethod
    def cancel(self) -> None:
        """Requests cancellation. A task suspended in a receive or sleep is woken promptly."""
        raise NotImplementedError()

    @abstractmethod
    def done(self) -> bool:
        raise NotImplementedError()

    @abstractmethod
    async def wait(self) -> None:
        """Waits for the task to finish. A task that ended because it was cancelled is not
           an error; any other exception raised by the task is propagated."""
        raise NotImplementedError()

class WizRuntime(ABC):
    """The execution environment abstraction. One implementation exists per concrete scheduler."""

    @abstractmethod
    async def sleep(self, duration: float) -> None:
        raise NotImplementedError()

    @abstractmethod
    def spawn(self, coro: Coroutine[Any, Any, None], name: Optional[str]=None) -> WizTaskHandle:
        """Schedules coro as an independent task.

        Raises WizResourceExhaustionError if the task cannot be scheduled.
        """
        raise NotImplementedError()

    @abstractmethod
    async def open_datagram_socket(
            self,
            local_addr: HostAndPort=("0.0.0.0", 0),
            allow_broadcast: bool=False,
            reuse_address: bool=False,
          ) -> WizDatagramSocket:
        """Creates and binds a UDP socket.

        Raises WizResourceExhaustionError if the socket cannot be created or bound. This is never
        retried here; retry policy belongs to callers.
        """
        raise NotImplementedError()

    @abstractmethod
    def create_lock(self) -> AsyncContextManager[Any]:
        """Returns a new cooperative mutual-exclusion lock, used with "async with"."""
        raise NotImplementedError()

    def monotonic(self) -> float:
        """Seconds since an arbitrary point in the past, used for deadlines."""
        return time.monotonic()

_QueueItem = Union[Tuple[bytes, HostAndPort], BaseException]

class _AsyncioDatagramProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and AsyncioDatagramSocket."""
    owner: AsyncioDatagramSocket

    def __init__(self, owner: AsyncioDatagramSocket):
        self.owner = owner

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        # asyncio datagram transports do not inherit from asyncio.DatagramTransport
        self.owner.transport = transport # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        self.owner.on_item((data, (addr[0], addr[1])))

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        logger.debug(f"Error received on {self.owner}: {exc}")
        self.owner.on_item(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Connection lost on {self.owner}, exc={exc}")
        self.owner.on_connection_lost(exc)

class AsyncioDatagramSocket(WizDatagramSocket):
    """An asyncio datagram endpoint wrapped as a WizDatagramSocket."""

    sock: socket.socket
    """The low-level bound socket."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport, set by the protocol adapter when the endpoint is created."""

    queue: asyncio.Queue[_QueueItem]
    """Received datagrams and errors that have not been consumed yet."""

    _local_addr: HostAndPort
    _closed: bool = False

    def __init__(self, sock: socket.socket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.sock = sock
        bound_addr = sock.getsockname()
        self._local_addr = (bound_addr[0], bound_addr[1])
        self.queue = asyncio.Queue(max_queue_size)

    @property
    def local_addr(self) -> HostAndPort:
        return self._local_addr

    @property
    def closed(self) -> bool:
        return self._closed

    def on_item(self, item: _QueueItem) -> None:
        if self._closed:
            return
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(f"Queue full on {self}, dropping {item!r}")

    def on_connection_lost(self, exc: Optional[Exception]) -> None:
        self.transport = None
        if not self._closed:
            self._closed = True
            # wake up any waiting tasks
            try:
                self.queue.put_nowait(WizTransportError(f"Socket {self} closed: {exc}"))
            except asyncio.QueueFull:
                # queue is full so waiters will wake up soon
                pass

    async def sendto(self, data: bytes, addr: HostAndPort) -> None:
        if self._closed or self.transport is None:
            raise WizTransportError(f"Cannot send on closed socket {self}")
        logger.debug(f"Sending datagram via {self} to {addr}: {data!r}")
        try:
            self.transport.sendto(data, addr)
        except OSError as e:
            raise WizTransportError(f"Send to {addr} failed on {self}: {e}") from e

    async def recvfrom(self, timeout: Optional[float]) -> Tuple[bytes, HostAndPort]:
        if self._closed and self.queue.empty():
            raise WizTransportError(f"Cannot receive on closed socket {self}")
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            raise WizTimeoutError(f"No datagram received on {self} within {timeout} seconds") from None
        if isinstance(item, WizTransportError):
            raise item
        if isinstance(item, BaseException):
            raise WizTransportError(f"Receive failed on {self}: {item}") from item
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self.transport is None:
            try:
                self.transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")
            self.transport = None
        try:
            self.sock.close()
        except OSError as e:
            logger.error(f"Error closing socket on {self}: {e}")
        # wake up any waiting tasks
        try:
            self.queue.put_nowait(WizTransportError(f"Socket {self} closed"))
        except asyncio.QueueFull:
            pass

    def __str__(self) -> str:
        return f"AsyncioDatagramSocket({self._local_addr[0]}:{self._local_addr[1]})"

    def __repr__(self) -> str:
        return str(self)

class AsyncioTaskHandle(WizTaskHandle):
    task: asyncio.Task[None]

    def __init__(self, task: asyncio.Task[None]):
        self.task = task

    def cancel(self) -> None:
        self.task.cancel()

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> None:
        try:
            await self.task
        except asyncio.CancelledError:
            # Only swallow the task's own cancellation, not cancellation of the waiter
            if not self.task.cancelled():
                raise

    def __str__(self) -> str:
        return f"AsyncioTaskHandle({self.task.get_name()})"

class AsyncioRuntime(WizRuntime):
    """WizRuntime implemented on the running asyncio event loop."""

    max_queue_size: int

    def __init__(self, max_queue_size: int=MAX_QUEUE_SIZE):
        self.max_queue_size = max_queue_size

    async def sleep(self, duration: float) -> None:
        await asyncio.sleep(duration)

    def spawn(self, coro: Coroutine[Any, Any, None], name: Optional[str]=None) -> WizTaskHandle:
        try:
            loop = asyncio.get_running_loop()
            task = loop.create_task(coro, name=name)
        except RuntimeError as e:
            coro.close()
            raise WizResourceExhaustionError(f"Unable to spawn task {name}: {e}") from e
        return AsyncioTaskHandle(task)

    async def open_datagram_socket(
            self,
            local_addr: HostAndPort=("0.0.0.0", 0),
            allow_broadcast: bool=False,
            reuse_address: bool=False,
          ) -> WizDatagramSocket:
        loop = asyncio.get_running_loop()
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise WizResourceExhaustionError(f"Unable to create datagram socket: {e}") from e
        try:
            if reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if allow_broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind(local_addr)
        except OSError as e:
            sock.close()
            raise WizResourceExhaustionError(f"Unable to bind datagram socket to {local_addr}: {e}") from e
        wiz_socket = AsyncioDatagramSocket(sock, max_queue_size=self.max_queue_size)
        try:
            untyped_transport, protocol = await loop.create_datagram_endpoint(
                lambda: _AsyncioDatagramProtocol(wiz_socket),
                sock=sock
              )
        except BaseException as e:
            sock.close()
            if isinstance(e, OSError):
                raise WizResourceExhaustionError(f"Unable to attach datagram socket {wiz_socket}: {e}") from e
            raise
        # asyncio datagram transports do not inherit from asyncio.DatagramTransport
        wiz_socket.transport = untyped_transport # type: ignore[assignment]
        logger.debug(f"Created datagram endpoint {wiz_socket}, broadcast={allow_broadcast}, reuse={reuse_address}")
        return wiz_socket

    def create_lock(self) -> AsyncContextManager[Any]:
        return asyncio.Lock()

    def monotonic(self) -> float:
        return time.monotonic()

_default_runtime: Optional[WizRuntime] = None

def get_default_runtime() -> WizRuntime:
    """Returns the process-wide default runtime (an AsyncioRuntime)."""
    global _default_runtime
    if _default_runtime is None:
        _default_runtime = AsyncioRuntime()
    return _default_runtime
