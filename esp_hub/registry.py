"""In-memory registry of devices currently connected to the bus.

The registry is fed exclusively by bus events: a `device-data` message
inserts or replaces the entry for its uid, a `device-disconnect` message
removes it. Nothing is persisted; the registry is a cache of what the bus
has told us since the process started.

Bus callbacks arrive on the paho network thread while readers run on the
asyncio loop, so every mutation and every snapshot happens under one lock.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

LOGGER = logging.getLogger(__name__)

RegistrySnapshot = Tuple["ActiveDevice", ...]


class DecodeError(ValueError):
    """Raised when a telemetry payload cannot be decoded into a device."""


@dataclass(frozen=True, slots=True)
class ActiveDevice:
    """Last known telemetry of one connected device."""

    uid: str
    device_type: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def from_payload(cls, raw: bytes | str) -> "ActiveDevice":
        """Decode a JSON bus message.

        Only ``uid`` is required. ``deviceType`` is lifted out and every other
        field is kept verbatim in ``payload``.
        """

        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError("Payload is not valid UTF-8") from exc

        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise DecodeError(f"Payload is not valid JSON: {exc}") from exc

        if not isinstance(document, dict):
            raise DecodeError("Payload must be a JSON object")

        uid = document.pop("uid", None)
        if not isinstance(uid, str) or not uid:
            raise DecodeError("Payload is missing a non-empty 'uid'")

        device_type = document.pop("deviceType", None)
        if device_type is not None and not isinstance(device_type, str):
            raise DecodeError("'deviceType' must be a string")

        return cls(
            uid=uid,
            device_type=device_type,
            payload=MappingProxyType(document),
        )

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.payload)
        data["uid"] = self.uid
        if self.device_type is not None:
            data["deviceType"] = self.device_type
        return data


class ActiveDeviceRegistry:
    """Deduplicated set of active devices keyed by uid.

    Usage:
        registry = ActiveDeviceRegistry()

        registry.on_device_data(b'{"uid": "dev-1", "deviceType": "alarmclock"}')
        registry.list()        # (ActiveDevice(uid="dev-1", ...),)

        registry.on_device_disconnect(b'{"uid": "dev-1"}')
        registry.list()        # ()
    """

    def __init__(self) -> None:
        # dict keeps insertion order, so the snapshot lists the most recently
        # updated device last
        self._devices: Dict[str, ActiveDevice] = {}
        self._lock = threading.Lock()

    def on_device_data(self, payload: bytes | str) -> ActiveDevice:
        """Insert or fully replace the entry for the payload's uid.

        Raises:
            DecodeError: If the payload is not a JSON object with a uid.
        """

        device = ActiveDevice.from_payload(payload)
        with self._lock:
            replaced = self._devices.pop(device.uid, None)
            self._devices[device.uid] = device

        if replaced is None:
            LOGGER.info(
                "Device %s (%s) became active", device.uid, device.device_type
            )
        else:
            LOGGER.debug("Device %s telemetry updated", device.uid)
        return device

    def on_device_disconnect(self, payload: bytes | str) -> Optional[ActiveDevice]:
        """Remove the entry for the payload's uid, if any.

        Disconnects for unknown uids are valid and leave the registry untouched.

        Raises:
            DecodeError: If the payload is not a JSON object with a uid.
        """

        device = ActiveDevice.from_payload(payload)
        with self._lock:
            removed = self._devices.pop(device.uid, None)

        if removed is None:
            LOGGER.debug("Disconnect for unknown device %s ignored", device.uid)
        else:
            LOGGER.info("Device %s disconnected", device.uid)
        return removed

    def list(self) -> RegistrySnapshot:
        with self._lock:
            return tuple(self._devices.values())

    def get(self, uid: str) -> Optional[ActiveDevice]:
        with self._lock:
            return self._devices.get(uid)

    def by_type(self, device_type: str) -> RegistrySnapshot:
        with self._lock:
            return tuple(
                device
                for device in self._devices.values()
                if device.device_type == device_type
            )

    def clear(self) -> None:
        with self._lock:
            self._devices.clear()
        LOGGER.debug("Active device registry cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, uid: object) -> bool:
        with self._lock:
            return uid in self._devices
