#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizTransport -- a single send-then-await-one-reply exchange with a fixture's command port.

The protocol carries no correlation id, so a WizTransport allows only one exchange in flight at a
time, and each exchange uses a freshly bound ephemeral socket that is closed when the exchange
completes. A late reply to an earlier exchange can therefore never be mistaken for the reply
to a later one.
"""

from __future__ import annotations

import ipaddress

from .internal_types import *
from .pkg_logging import logger
from .exceptions import WizTimeoutError
from .envelope import WizEndpoint
from .runtime import WizRuntime, get_default_runtime

class WizTransport:
    runtime: WizRuntime
    """The execution environment used for sockets and timing"""

    bind_address: str
    """The local IP address that exchange sockets are bound to"""

    def __init__(self, runtime: Optional[WizRuntime]=None, bind_address: str="0.0.0.0"):
        self.runtime = get_default_runtime() if runtime is None else runtime
        self.bind_address = bind_address
        self._lock = self.runtime.create_lock()

    async def exchange(self, endpoint: WizEndpoint, request_bytes: bytes, timeout: float) -> bytes:
        """Sends request_bytes to endpoint and returns the first datagram that comes back from it.

        Raises:
            WizTimeoutError:             No reply arrived within timeout seconds
            WizTransportError:           The socket reported a send or receive failure
            WizResourceExhaustionError:  No socket could be allocated
        """
        async with self._lock:
            async with await self.runtime.open_datagram_socket((self.bind_address, 0)) as sock:
                deadline = self.runtime.monotonic() + timeout
                await sock.sendto(request_bytes, endpoint.addr)
                while True:
                    remaining = deadline - self.runtime.monotonic()
                    if remaining <= 0.0:
                        raise WizTimeoutError(f"No reply from {endpoint} within {timeout} seconds")
                    data, src_addr = await sock.recvfrom(remaining)
                    if self._is_from_endpoint(endpoint, src_addr):
                        logger.debug(f"Received reply from {endpoint}: {data!r}")
                        return data
                    logger.debug(f"Ignoring datagram from {src_addr[0]}:{src_addr[1]} while waiting for {endpoint}")

    @staticmethod
    def _is_from_endpoint(endpoint: WizEndpoint, src_addr: HostAndPort) -> bool:
        try:
            expected = ipaddress.ip_address(endpoint.host)
        except ValueError:
            # a hostname; nothing to compare the source address against
            return True
        try:
            return ipaddress.ip_address(src_addr[0]) == expected
        except ValueError:
            return False
