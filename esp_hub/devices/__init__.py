"""Device-class handlers."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Type

import aiohttp

from ..adapters.device import DeviceClient
from ..config import DeviceConfig
from .alarmclock import AlarmAction, AlarmClockHandler
from .base import (
    ActionKind,
    ActionSpec,
    CachedReading,
    DeviceClass,
    DeviceHandler,
    DeviceStatus,
    ReadingCache,
)
from .watermixer import WaterAction, WaterMixerHandler

HANDLER_TYPES: Dict[DeviceClass, Type[DeviceHandler]] = {
    DeviceClass.ALARMCLOCK: AlarmClockHandler,
    DeviceClass.WATERMIXER: WaterMixerHandler,
}


def build_handlers(
    devices: Mapping[str, DeviceConfig],
    *,
    session: Optional[aiohttp.ClientSession] = None,
) -> Dict[DeviceClass, DeviceHandler]:
    """Create one handler per configured device class.

    Sections naming an unknown device class raise ``ValueError``.
    """

    handlers: Dict[DeviceClass, DeviceHandler] = {}
    for name, device_config in devices.items():
        try:
            device_class = DeviceClass(name)
        except ValueError:
            raise ValueError(f"Unknown device class in configuration: {name}") from None
        handler_type = HANDLER_TYPES[device_class]
        handlers[device_class] = handler_type(
            DeviceClient(device_config, session=session)
        )
    return handlers


__all__ = [
    "ActionKind",
    "ActionSpec",
    "AlarmAction",
    "AlarmClockHandler",
    "CachedReading",
    "DeviceClass",
    "DeviceHandler",
    "DeviceStatus",
    "HANDLER_TYPES",
    "ReadingCache",
    "WaterAction",
    "WaterMixerHandler",
    "build_handlers",
]
