#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package wiz_lights discovers and controls WiZ lighting fixtures on the local network.

WiZ fixtures accept JSON requests ({"method": ..., "params": {...}}) as UDP datagrams on port
38899 and answer each one with a single JSON reply. Fixtures that have been asked to do so also
send unsolicited "syncPilot" state updates to UDP port 38900 of the registering host.

The package provides:

  - WizLight / WizRequestEngine: reliable request/response with timeout, retry and backoff
  - WizDiscovery: broadcast discovery of fixtures on the local segment
  - WizPushListener: a background listener that fans push events out to observers
  - WizRuntime: the execution abstraction all of the above are written against, with an
    asyncio implementation (AsyncioRuntime)
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    WizError,
    WizTimeoutError,
    WizTransportError,
    WizDecodeError,
    WizUnreachableError,
    WizAlreadyRunningError,
    WizNotRunningError,
    WizResourceExhaustionError,
    WizMethodError,
  )
from .constants import WIZ_COMMAND_PORT, WIZ_PUSH_PORT, WIZ_BROADCAST_ADDRESS, DEFAULT_DISCOVERY_WINDOW
from .runtime import (
    WizRuntime,
    WizDatagramSocket,
    WizTaskHandle,
    AsyncioRuntime,
    get_default_runtime,
  )
from .envelope import (
    WizMethod,
    WizEndpoint,
    WizRequest,
    WizResponse,
    WizResponseErrorInfo,
    WizPushEvent,
    WizEnvelopeCodec,
  )
from .history import WizMessageHistory, WizMessageType, WizHistoryEntry
from .transport import WizTransport
from .request import WizRequestEngine, WizRetryPolicy
from .discovery import WizDiscovery, WizDiscoveryRequest, WizDiscoveredDevice, discover_devices
from .push import WizPushListener, WizListenerState, WizPushObserver
from .status import WizLightStatus, WizStatusCache
from .bulb_type import WizBulbType, WizBulbClass, WizBulbFeatures, WizKelvinRange
from .light import WizLight, WizFanMode, WizFanDirection

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'WizError', 'WizTimeoutError', 'WizTransportError', 'WizDecodeError', 'WizUnreachableError',
    'WizAlreadyRunningError', 'WizNotRunningError', 'WizResourceExhaustionError', 'WizMethodError',
    'WIZ_COMMAND_PORT', 'WIZ_PUSH_PORT', 'WIZ_BROADCAST_ADDRESS', 'DEFAULT_DISCOVERY_WINDOW',
    'WizRuntime', 'WizDatagramSocket', 'WizTaskHandle', 'AsyncioRuntime', 'get_default_runtime',
    'WizMethod', 'WizEndpoint', 'WizRequest', 'WizResponse', 'WizResponseErrorInfo', 'WizPushEvent',
    'WizEnvelopeCodec',
    'WizMessageHistory', 'WizMessageType', 'WizHistoryEntry',
    'WizTransport',
    'WizRequestEngine', 'WizRetryPolicy',
    'WizDiscovery', 'WizDiscoveryRequest', 'WizDiscoveredDevice', 'discover_devices',
    'WizPushListener', 'WizListenerState', 'WizPushObserver',
    'WizLightStatus', 'WizStatusCache',
    'WizBulbType', 'WizBulbClass', 'WizBulbFeatures', 'WizKelvinRange',
    'WizLight',
    'WizFanMode',
    'WizFanDirection',
]
