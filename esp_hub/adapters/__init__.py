"""Adapter modules for external integrations."""

from .device import DeviceClient, DeviceResponseError
from .mqtt import BusConnectionError, MQTTClient

__all__ = [
    "BusConnectionError",
    "DeviceClient",
    "DeviceResponseError",
    "MQTTClient",
]
