#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizRequestEngine -- sends a WizRequest to a fixture and returns the decoded WizResponse, retrying
with an increasing backoff while the fixture does not answer.

Timeouts and socket faults on a best-effort UDP medium are transient, so they are retried until the
retry budget is exhausted, at which point WizUnreachableError is raised. A reply that cannot be
decoded will not decode any better on a later attempt, so WizDecodeError is raised at once.
Every attempt re-sends the same bytes; all commands are complete state sets, so a duplicate
delivery is harmless.
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_ATTEMPT_TIMEOUT, DEFAULT_RETRY_DELAYS
from .exceptions import WizError, WizDecodeError, WizTimeoutError, WizTransportError, WizUnreachableError
from .envelope import WizEndpoint, WizRequest, WizResponse, WizEnvelopeCodec
from .history import WizMessageHistory, WizMessageType
from .runtime import WizRuntime, get_default_runtime
from .transport import WizTransport

class WizRetryPolicy:
    """How long each attempt waits for a reply, and the delays inserted before each retry."""

    attempt_timeout: float
    """Seconds to wait for a reply on each attempt"""

    retry_delays: Tuple[float, ...]
    """Seconds to wait before retry 1, 2, ... ; its length is the number of retries"""

    def __init__(
            self,
            attempt_timeout: float=DEFAULT_ATTEMPT_TIMEOUT,
            retry_delays: Iterable[float]=DEFAULT_RETRY_DELAYS
          ):
        self.attempt_timeout = attempt_timeout
        self.retry_delays = tuple(retry_delays)

    @property
    def max_retries(self) -> int:
        return len(self.retry_delays)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_before(self, attempt: int) -> float:
        """The delay before 0-based attempt number attempt. Attempt 0 has no delay."""
        if attempt <= 0:
            return 0.0
        return self.retry_delays[attempt - 1]

    def __str__(self) -> str:
        return f"WizRetryPolicy(attempt_timeout={self.attempt_timeout}, retry_delays={self.retry_delays})"

class WizRequestEngine:
    """Sends requests with per-attempt timeouts, retries and backoff.

    All requests sent through one engine share its WizTransport, whose exchanges run one at a time
    even when they are addressed to different fixtures. Use one engine per fixture (as WizLight does)
    to talk to several fixtures concurrently.
    """

    transport: WizTransport
    runtime: WizRuntime
    retry_policy: WizRetryPolicy
    codec: WizEnvelopeCodec
    history: Optional[WizMessageHistory]

    def __init__(
            self,
            transport: Optional[WizTransport]=None,
            runtime: Optional[WizRuntime]=None,
            retry_policy: Optional[WizRetryPolicy]=None,
            codec: Optional[WizEnvelopeCodec]=None,
            history: Optional[WizMessageHistory]=None,
          ):
        if runtime is None:
            runtime = get_default_runtime() if transport is None else transport.runtime
        self.runtime = runtime
        self.transport = WizTransport(runtime=runtime) if transport is None else transport
        self.retry_policy = WizRetryPolicy() if retry_policy is None else retry_policy
        self.codec = WizEnvelopeCodec() if codec is None else codec
        self.history = history

    async def send(self, endpoint: WizEndpoint, request: WizRequest) -> WizResponse:
        """Sends request to endpoint and returns the decoded response.

        The returned response may be an error envelope; see WizResponse.raise_for_error().

        Raises:
            WizUnreachableError:         Every attempt timed out or failed at the socket level
            WizDecodeError:              The reply could not be decoded (never retried)
            WizResourceExhaustionError:  No socket could be allocated
        """
        request_bytes = self.codec.encode_request(request)
        if not self.history is None:
            self.history.record(WizMessageType.SEND, request.to_jsonable())
        policy = self.retry_policy
        last_error: Optional[WizError] = None
        for attempt in range(policy.max_attempts):
            if attempt > 0:
                delay = policy.delay_before(attempt)
                logger.debug(f"Retrying {request.method} to {endpoint} in {delay} seconds (retry {attempt} of {policy.max_retries})")
                await self.runtime.sleep(delay)
            try:
                data = await self.transport.exchange(endpoint, request_bytes, policy.attempt_timeout)
            except (WizTimeoutError, WizTransportError) as e:
                logger.debug(f"Attempt {attempt + 1} of {request.method} to {endpoint} failed: {e}")
                if not self.history is None:
                    self.history.record_error(e)
                last_error = e
                continue
            try:
                response = self.codec.decode_response(data)
            except WizDecodeError as e:
                logger.debug(f"Undecodable reply to {request.method} from {endpoint}: {e}")
                if not self.history is None:
                    self.history.record_error(e)
                raise
            if not self.history is None:
                self.history.record(WizMessageType.RECEIVE, response.message)
            return response
        logger.info(f"{request.method} to {endpoint} failed after {policy.max_attempts} attempts: {last_error}")
        raise WizUnreachableError(endpoint, policy.max_attempts, last_error) from last_error
