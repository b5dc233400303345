"""Shared building blocks for device-class handlers.

Every managed device class (alarm clock, water mixer, ...) is represented by
one handler instance that owns:

- the closed set of actions the class understands, split into reads served
  from the cache and writes forwarded to the device
- the cached reading kept fresh by the poller
- the HTTP paths used to talk to the physical device
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Type

from ..adapters.device import DeviceClient, DeviceResponseError

LOGGER = logging.getLogger(__name__)


class DeviceClass(str, Enum):
    """Managed hardware categories."""

    ALARMCLOCK = "alarmclock"
    WATERMIXER = "watermixer"


class DeviceStatus(str, Enum):
    """Freshness of a device-class cache."""

    UNKNOWN = "unknown"
    """No refresh has succeeded yet."""

    ACTIVE = "active"
    """The most recent refresh succeeded."""

    STALE = "stale"
    """The most recent refresh failed; the previous reading is still served."""


class ActionKind(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True, slots=True)
class ActionSpec:
    kind: ActionKind
    path: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CachedReading:
    """Immutable snapshot of a device-class cache."""

    data: Optional[Mapping[str, Any]] = field(default=None, hash=False)
    status: DeviceStatus = DeviceStatus.UNKNOWN
    updated_at: Optional[datetime] = None
    last_error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingCache:
    """Holds the latest reading of one device class.

    Writers replace the whole snapshot under a lock so a reader always sees
    either the previous reading or the new one, never a mix.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow
        self._reading = CachedReading()
        self._lock = threading.Lock()

    def get(self) -> CachedReading:
        with self._lock:
            return self._reading

    def store(self, data: Mapping[str, Any]) -> CachedReading:
        reading = CachedReading(
            data=MappingProxyType(copy.deepcopy(dict(data))),
            status=DeviceStatus.ACTIVE,
            updated_at=self._clock(),
        )
        with self._lock:
            self._reading = reading
        return reading

    def mark_stale(self, error: str) -> CachedReading:
        with self._lock:
            previous = self._reading
            # a class that never answered stays unknown; there is nothing stale to serve
            status = (
                DeviceStatus.UNKNOWN
                if previous.status is DeviceStatus.UNKNOWN
                else DeviceStatus.STALE
            )
            self._reading = CachedReading(
                data=previous.data,
                status=status,
                updated_at=previous.updated_at,
                last_error=error,
            )
            return self._reading


class DeviceHandler:
    """Base class for device-class handlers.

    Subclasses declare:
        device_class: the DeviceClass they manage
        action_type: the Enum listing every action of the class
        ACTIONS: ActionSpec per action member
        data_path: device path returning the current reading

    and override ``build_command`` when a write action takes a payload.
    """

    device_class: ClassVar[DeviceClass]
    action_type: ClassVar[Type[Enum]]
    ACTIONS: ClassVar[Mapping[Any, ActionSpec]]
    data_path: ClassVar[str] = "/data"

    def __init__(
        self,
        client: DeviceClient,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._client = client
        self._cache = ReadingCache(clock=clock)

    @property
    def client(self) -> DeviceClient:
        return self._client

    def parse_action(self, name: str | Enum) -> Enum:
        """Resolve an action name to the class's action enum.

        Raises:
            ValueError: If the name is not one of the class's actions.
        """

        if isinstance(name, self.action_type):
            action = name
        else:
            raw = name.value if isinstance(name, Enum) else str(name)
            try:
                action = self.action_type(raw)
            except ValueError:
                action = self.action_type.__members__.get(raw.upper())
                if action is None:
                    raise ValueError(
                        f"{raw!r} is not a {self.device_class.value} action"
                    ) from None
        if action not in self.ACTIONS:
            raise ValueError(f"{action.value!r} is not handled")
        return action

    def action_spec(self, action: Enum) -> ActionSpec:
        return self.ACTIONS[action]

    def cached(self) -> CachedReading:
        return self._cache.get()

    def mark_stale(self, error: str) -> CachedReading:
        reading = self._cache.mark_stale(error)
        LOGGER.debug(
            "%s cache marked %s: %s",
            self.device_class.value,
            reading.status.value,
            error,
        )
        return reading

    async def refresh(self, *, timeout: float = 5.0) -> CachedReading:
        """Pull a fresh reading from the device and cache it.

        Nothing is cached unless the whole round-trip succeeds, so a refresh
        cancelled mid-flight leaves the previous reading in place.
        """

        raw = await self._client.fetch(self.data_path, timeout=timeout)
        if not isinstance(raw, dict):
            raise DeviceResponseError(
                f"{self.device_class.value} returned a non-object reading"
            )
        return self._cache.store(self.normalize_reading(raw))

    async def send(
        self,
        action: Enum,
        command: Optional[Mapping[str, Any]] = None,
        *,
        timeout: float = 10.0,
    ) -> Any:
        """Forward a write action to the device and return its acknowledgement.

        ``command`` is the device body produced by ``build_command``.
        """

        spec = self.ACTIONS[action]
        if spec.kind is not ActionKind.WRITE or spec.path is None:
            raise ValueError(f"{action.value!r} is not a device command")

        LOGGER.info(
            "Sending %s to %s (%s)",
            action.value,
            self.device_class.value,
            self._client.base_url,
        )
        return await self._client.send(spec.path, command, timeout=timeout)

    def build_command(
        self, action: Enum, payload: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Translate a request payload into the body sent to the device.

        Raises:
            ValueError: If the payload is not valid for the action.
        """

        return None

    def normalize_reading(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return raw

    async def aclose(self) -> None:
        await self._client.aclose()
