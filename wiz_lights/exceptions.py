#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from .internal_types import *

if TYPE_CHECKING:
    from .envelope import WizEndpoint

class WizError(Exception):
    """Base class for all error exceptions defined by this package."""
    pass

class WizTimeoutError(WizError):
    """No reply arrived within the per-attempt deadline."""
    pass

class WizTransportError(WizError):
    """A socket/OS level failure while sending or receiving a datagram."""
    pass

class WizDecodeError(WizError):
    """A datagram could not be decoded as a protocol envelope."""
    pass

class WizResourceExhaustionError(WizError):
    """The execution environment could not allocate a socket or schedule a task."""
    pass

class WizAlreadyRunningError(WizError):
    """start() was called on a push listener that is not stopped."""
    pass

class WizNotRunningError(WizError):
    """An operation that requires a running push listener was attempted while it is not running."""
    pass

class WizUnreachableError(WizError):
    """All request attempts to a fixture failed with a timeout or transport error."""

    endpoint: WizEndpoint
    """The endpoint that could not be reached"""

    attempts: int
    """The number of attempts that were made"""

    last_error: Optional[WizError]
    """The failure of the final attempt"""

    def __init__(self, endpoint: WizEndpoint, attempts: int, last_error: Optional[WizError]=None):
        super().__init__(f"{endpoint.host}:{endpoint.port} unreachable after {attempts} attempts: {last_error}")
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error

class WizMethodError(WizError):
    """A fixture answered a request with an error envelope."""

    method: str
    code: int
    message: str

    def __init__(self, method: str, code: int, message: str):
        super().__init__(f"{method} failed with error {code}: {message}")
        self.method = method
        self.code = code
        self.message = message
