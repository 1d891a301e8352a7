#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WizLight -- controls a single fixture through its own WizRequestEngine.

Each WizLight owns one transport, so commands issued to the same light are exchanged one at a
time, while commands to different lights proceed concurrently.
"""

from __future__ import annotations

from enum import IntEnum

from .internal_types import *
from .pkg_logging import logger
from .constants import WIZ_COMMAND_PORT
from .exceptions import WizError
from .envelope import WizEndpoint, WizMethod, WizRequest, WizResponse
from .history import WizMessageHistory
from .request import WizRequestEngine, WizRetryPolicy
from .runtime import WizRuntime
from .status import WizLightStatus
from .bulb_type import WizBulbType

DEFAULT_MAX_FAN_SPEED = 6
"""Highest fan speed accepted when the fixture's own range is not given"""

class WizFanMode(IntEnum):
    NORMAL = 1
    BREEZE = 2

class WizFanDirection(IntEnum):
    FORWARD = 0
    REVERSE = 1

def _get_float_list(config: Mapping[str, Jsonable], key: str) -> Optional[List[float]]:
    value = config.get(key)
    if not isinstance(value, list):
        return None
    return [ float(v) for v in value if isinstance(v, (int, float)) and not isinstance(v, bool) ]

class WizLight:
    endpoint: WizEndpoint
    engine: WizRequestEngine
    history: WizMessageHistory

    def __init__(
            self,
            host: str,
            name: Optional[str]=None,
            port: int=WIZ_COMMAND_PORT,
            runtime: Optional[WizRuntime]=None,
            retry_policy: Optional[WizRetryPolicy]=None,
            history: Optional[WizMessageHistory]=None,
            engine: Optional[WizRequestEngine]=None,
          ):
        self.endpoint = WizEndpoint(host, port, name)
        self.history = WizMessageHistory() if history is None else history
        if engine is None:
            engine = WizRequestEngine(runtime=runtime, retry_policy=retry_policy, history=self.history)
        self.engine = engine

    @property
    def ip(self) -> str:
        return self.endpoint.host

    @property
    def name(self) -> Optional[str]:
        return self.endpoint.name

    async def send(self, method: Union[WizMethod, str], params: Optional[Mapping[str, Jsonable]]=None) -> WizResponse:
        """Sends a request and returns the successful response.

        Raises WizMethodError if the fixture replied with an error, and the errors of
        WizRequestEngine.send() otherwise.
        """
        response = await self.engine.send(self.endpoint, WizRequest(method, params))
        response.raise_for_error()
        return response

    async def _get_result(self, method: WizMethod) -> JsonableDict:
        response = await self.send(method)
        assert not response.result is None
        return response.result

    async def get_status(self) -> WizLightStatus:
        return WizLightStatus(await self._get_result(WizMethod.GET_PILOT))

    async def set_pilot(self, params: Mapping[str, Jsonable]) -> WizResponse:
        """Sets any combination of pilot fields (state, dimming, temp, r/g/b, sceneId, speed, ...)."""
        if len(params) == 0:
            raise ValueError("setPilot requires at least one parameter")
        return await self.send(WizMethod.SET_PILOT, params)

    async def set_state(self, on: bool) -> WizResponse:
        return await self.send(WizMethod.SET_STATE, { "state": on })

    async def turn_on(self) -> WizResponse:
        return await self.set_state(True)

    async def turn_off(self) -> WizResponse:
        return await self.set_state(False)

    async def toggle(self) -> WizResponse:
        status = await self.get_status()
        return await self.set_state(not status.emitting)

    async def fan_set_state(
            self,
            state: Optional[bool]=None,
            mode: Optional[WizFanMode]=None,
            speed: Optional[int]=None,
            direction: Optional[WizFanDirection]=None,
            max_speed: Optional[int]=None,
          ) -> WizResponse:
        """Sets any combination of fan power, mode, speed and rotation direction in one setPilot.
           Fields left as None are not changed.

        Raises ValueError if no field is given, or if speed is outside 1..max_speed (default 6).
        """
        params: JsonableDict = {}
        if not state is None:
            params["fanState"] = 1 if state else 0
        if not mode is None:
            params["fanMode"] = int(mode)
        if not speed is None:
            limit = DEFAULT_MAX_FAN_SPEED if max_speed is None else max_speed
            if isinstance(speed, bool) or not 1 <= speed <= limit:
                raise ValueError(f"Fan speed must be between 1 and {limit}: {speed!r}")
            params["fanSpeed"] = speed
        if not direction is None:
            params["fanRevrs"] = int(direction)
        return await self.set_pilot(params)

    async def fan_turn_on(self, mode: Optional[WizFanMode]=None, speed: Optional[int]=None) -> WizResponse:
        return await self.fan_set_state(True, mode=mode, speed=speed)

    async def fan_turn_off(self) -> WizResponse:
        return await self.fan_set_state(False)

    async def fan_toggle(self) -> WizResponse:
        status = await self.get_status()
        if status.fan_on:
            return await self.fan_turn_off()
        return await self.fan_turn_on()

    async def set_fan_speed(self, speed: int, max_speed: Optional[int]=None) -> WizResponse:
        return await self.fan_set_state(speed=speed, max_speed=max_speed)

    async def set_fan_mode(self, mode: WizFanMode) -> WizResponse:
        return await self.fan_set_state(mode=mode)

    async def set_fan_direction(self, direction: WizFanDirection) -> WizResponse:
        return await self.fan_set_state(direction=direction)

    async def reset(self) -> None:
        await self.send(WizMethod.RESET)

    async def reboot(self) -> None:
        await self.send(WizMethod.REBOOT)

    async def get_power(self) -> Optional[float]:
        """Returns the current power draw in watts, or None if the fixture does not meter power."""
        result = await self._get_result(WizMethod.GET_POWER)
        power = result.get("power")
        if isinstance(power, bool) or not isinstance(power, (int, float)):
            return None
        return float(power)

    async def get_system_config(self) -> JsonableDict:
        return await self._get_result(WizMethod.GET_SYSTEM_CONFIG)

    async def get_user_config(self) -> JsonableDict:
        return await self._get_result(WizMethod.GET_USER_CONFIG)

    async def get_model_config(self) -> JsonableDict:
        return await self._get_result(WizMethod.GET_MODEL_CONFIG)

    async def get_bulb_type(self) -> WizBulbType:
        config = await self.get_system_config()
        module_name = config.get("moduleName")
        fw_version = config.get("fwVersion")
        return WizBulbType.from_module_name(
            module_name if isinstance(module_name, str) else "Unknown",
            fw_version if isinstance(fw_version, str) else None
          )

    async def get_white_range(self) -> Optional[List[float]]:
        return _get_float_list(await self.get_user_config(), "whiteRange")

    async def get_extended_white_range(self) -> Optional[List[float]]:
        # firmware >= 1.22 reports cctRange in the model config; older firmware in the user config
        model = await self.get_model_config()
        user = await self.get_user_config()
        for config, key in ((model, "cctRange"), (user, "extRange"), (user, "cctRange")):
            values = _get_float_list(config, key)
            if not values is None:
                return values
        return None

    async def get_fan_speed_range(self) -> Optional[int]:
        model = await self.get_model_config()
        speed = model.get("fanSpeed")
        if not isinstance(speed, int) or isinstance(speed, bool):
            user = await self.get_user_config()
            speed = user.get("fanSpeed")
        if not isinstance(speed, int) or isinstance(speed, bool):
            return None
        return speed

    async def diagnostics(self) -> JsonableDict:
        """Collects whatever configuration the fixture will report. Failures to fetch individual
           sections are recorded rather than raised."""
        diag: JsonableDict = {
            "ip": self.ip,
            "name": self.name,
          }
        try:
            diag["status"] = (await self.get_status()).to_jsonable()
            diag["system_config"] = await self.get_system_config()
            diag["bulb_type"] = (await self.get_bulb_type()).to_jsonable()
            diag["white_range"] = await self.get_white_range()
            diag["extended_white_range"] = await self.get_extended_white_range()
            diag["fan_speed_range"] = await self.get_fan_speed_range()
        except WizError as e:
            logger.debug(f"Diagnostics for {self.endpoint} incomplete: {e}")
            diag["error"] = str(e)
        diag["history"] = self.history.summary()
        return diag

    def __str__(self) -> str:
        return f"WizLight({self.endpoint})"

    def __repr__(self) -> str:
        return str(self)
