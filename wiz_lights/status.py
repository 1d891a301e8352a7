#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Last-known state of fixtures.

Nothing in the package updates a WizStatusCache on its own; callers feed it the responses and
push events they receive.
"""

from __future__ import annotations

import time

from .internal_types import *
from .envelope import WizEndpoint, WizMethod, WizResponse, WizPushEvent

_status_methods = ( WizMethod.GET_PILOT.value, WizMethod.SYNC_PILOT.value )

class WizLightStatus:
    """The most recent pilot fields reported by one fixture. Later updates overwrite earlier
       values field by field."""

    params: JsonableDict
    updated_time: float
    """time.monotonic() at the most recent update"""

    def __init__(self, params: Optional[Mapping[str, Jsonable]]=None):
        self.params = {}
        self.updated_time = time.monotonic()
        if not params is None:
            self.update(params)

    def update(self, params: Mapping[str, Jsonable]) -> None:
        self.params.update(params)
        self.updated_time = time.monotonic()

    def _get_int(self, key: str) -> Optional[int]:
        value = self.params.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    @property
    def mac(self) -> Optional[str]:
        value = self.params.get("mac")
        return value.upper() if isinstance(value, str) else None

    @property
    def emitting(self) -> bool:
        return self.params.get("state") is True

    @property
    def brightness(self) -> Optional[int]:
        return self._get_int("dimming")

    @property
    def temperature(self) -> Optional[int]:
        return self._get_int("temp")

    @property
    def scene_id(self) -> Optional[int]:
        scene_id = self._get_int("sceneId")
        return None if scene_id == 0 else scene_id

    @property
    def fan_on(self) -> bool:
        return self._get_int("fanState") == 1

    @property
    def fan_speed(self) -> Optional[int]:
        return self._get_int("fanSpeed")

    @property
    def rgb(self) -> Optional[Tuple[int, int, int]]:
        r, g, b = self._get_int("r"), self._get_int("g"), self._get_int("b")
        if r is None or g is None or b is None:
            return None
        return (r, g, b)

    def to_jsonable(self) -> JsonableDict:
        return dict(self.params)

    def __str__(self) -> str:
        return f"WizLightStatus({self.params})"

    def __repr__(self) -> str:
        return str(self)

class WizStatusCache:
    """Explicitly updated map of last-known fixture state, keyed by MAC address when it is known
       and by IP address otherwise."""

    _statuses: Dict[str, WizLightStatus]
    _mac_by_ip: Dict[str, str]

    def __init__(self):
        self._statuses = {}
        self._mac_by_ip = {}

    def _update(self, ip: str, params: Mapping[str, Jsonable]) -> WizLightStatus:
        mac = params.get("mac")
        if isinstance(mac, str):
            key = mac.upper()
            self._mac_by_ip[ip] = key
            ip_status = self._statuses.pop(ip, None)
            status = self._statuses.get(key)
            if status is None:
                status = WizLightStatus() if ip_status is None else ip_status
                self._statuses[key] = status
        else:
            key = self._mac_by_ip.get(ip, ip)
            status = self._statuses.setdefault(key, WizLightStatus())
        status.update(params)
        return status

    def update_from_response(self, endpoint: WizEndpoint, response: WizResponse) -> Optional[WizLightStatus]:
        """Records the result of a successful getPilot response. Other responses are ignored and
           None is returned."""
        if response.is_error or response.result is None or not response.method in _status_methods:
            return None
        return self._update(endpoint.host, response.result)

    def update_from_push(self, event: WizPushEvent) -> Optional[WizLightStatus]:
        """Records the state carried by a syncPilot event. Other events are ignored and None is returned."""
        if not event.method in _status_methods:
            return None
        return self._update(event.src_addr[0], event.params)

    def get(self, key: str) -> Optional[WizLightStatus]:
        """Looks up a status by MAC address or IP address."""
        status = self._statuses.get(key.upper())
        if status is None:
            mac = self._mac_by_ip.get(key)
            status = self._statuses.get(key if mac is None else mac)
        return status

    def __len__(self) -> int:
        return len(self._statuses)

    def clear(self) -> None:
        self._statuses.clear()
        self._mac_by_ip.clear()
