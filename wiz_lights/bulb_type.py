#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Fixture capabilities derived from the moduleName reported by getSystemConfig
   (e.g. "ESP01_SHRGB1C_31")."""

from __future__ import annotations

from enum import Enum

from .internal_types import *

class WizBulbClass(Enum):
    TW = "TW"
    """Tunable white"""
    DW = "DW"
    """Dimmable white"""
    RGB = "RGB"
    """Full color"""
    SOCKET = "SOCKET"
    """Smart socket"""
    FANDIM = "FANDIM"
    """Fan with dimmable light"""

class WizKelvinRange(NamedTuple):
    min: int
    max: int

class WizBulbFeatures:
    color: bool = False
    color_tmp: bool = False
    effect: bool = False
    brightness: bool = False
    dual_head: bool = False
    fan: bool = False
    fan_breeze_mode: bool = False
    fan_reverse: bool = False

    def to_jsonable(self) -> JsonableDict:
        return {
            "color": self.color,
            "color_tmp": self.color_tmp,
            "effect": self.effect,
            "brightness": self.brightness,
            "dual_head": self.dual_head,
            "fan": self.fan,
            "fan_breeze_mode": self.fan_breeze_mode,
            "fan_reverse": self.fan_reverse,
          }

class WizBulbType:
    name: str
    bulb_class: WizBulbClass
    features: WizBulbFeatures
    kelvin_range: WizKelvinRange
    fw_version: Optional[str]
    white_channels: int

    def __init__(
            self,
            name: str,
            bulb_class: WizBulbClass,
            features: WizBulbFeatures,
            kelvin_range: WizKelvinRange,
            fw_version: Optional[str]=None,
            white_channels: int=0
          ):
        self.name = name
        self.bulb_class = bulb_class
        self.features = features
        self.kelvin_range = kelvin_range
        self.fw_version = fw_version
        self.white_channels = white_channels

    @classmethod
    def from_module_name(cls, module_name: str, fw_version: Optional[str]=None) -> WizBulbType:
        # The second "_"-separated part identifies the fixture type; unknown types are treated
        # as dimmable white.
        parts = module_name.split('_')
        features = WizBulbFeatures()
        bulb_class = WizBulbClass.DW
        kelvin_range = WizKelvinRange(2700, 6500)
        white_channels = 0

        if len(parts) > 1:
            type_part = parts[1]
            features.dual_head = type_part.startswith("DH")
            if "RGB" in type_part:
                bulb_class = WizBulbClass.RGB
                features.color = True
                features.color_tmp = True
                features.effect = True
                features.brightness = True
                white_channels = 2
                kelvin_range = WizKelvinRange(2200, 6500)
            elif "TW" in type_part:
                bulb_class = WizBulbClass.TW
                features.color_tmp = True
                features.brightness = True
                features.effect = True
                white_channels = 2
            elif "DW" in type_part:
                features.brightness = True
                white_channels = 1
            elif "SOCKET" in type_part:
                bulb_class = WizBulbClass.SOCKET
            elif "FANDIM" in type_part:
                bulb_class = WizBulbClass.FANDIM
                features.brightness = True
                features.fan = True
                features.fan_breeze_mode = True
                features.fan_reverse = True
                white_channels = 1

        return cls(module_name, bulb_class, features, kelvin_range, fw_version=fw_version, white_channels=white_channels)

    def to_jsonable(self) -> JsonableDict:
        return {
            "name": self.name,
            "class": self.bulb_class.value,
            "features": self.features.to_jsonable(),
            "kelvin_range": { "min": self.kelvin_range.min, "max": self.kelvin_range.max },
            "fw_version": self.fw_version,
            "white_channels": self.white_channels,
          }

    def __str__(self) -> str:
        return f"WizBulbType({self.name}, class={self.bulb_class.value})"
