"""Command dispatch from typed requests to device-class handlers."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import aiohttp

from .adapters.device import DeviceResponseError
from .devices import ActionKind, DeviceClass, DeviceHandler

LOGGER = logging.getLogger(__name__)

ACKNOWLEDGED = "acknowledged"


class CommandProcessingError(RuntimeError):
    """Raised when an individual command cannot be processed."""

    code = "command_failed"

    def __init__(
        self,
        message: str,
        *,
        device_class: Optional[str] = None,
        action: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.device_class = device_class
        self.action = action


class UnknownDeviceClass(CommandProcessingError):
    code = "unknown_device_class"


class UnsupportedAction(CommandProcessingError):
    code = "unsupported_action"


class InvalidCommandPayload(CommandProcessingError):
    code = "invalid_parameters"


class DeviceTimeout(CommandProcessingError):
    code = "device_timeout"


class DeviceRejected(CommandProcessingError):
    code = "device_rejected"

    def __init__(
        self,
        message: str,
        *,
        device_class: Optional[str] = None,
        action: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, device_class=device_class, action=action)
        self.status = status


@dataclass(slots=True)
class CommandRequest:
    device_class: str | DeviceClass
    action: str | Enum
    target_uid: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CommandResponse:
    device_class: DeviceClass
    action: str
    data: Any
    status: str
    updated_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "deviceClass": self.device_class.value,
            "action": self.action,
            "status": self.status,
            "data": self.data,
        }
        if self.updated_at is not None:
            body["updatedAt"] = self.updated_at.isoformat(timespec="seconds")
        return body


class CommandDispatcher:
    """Routes command requests to the handler of their device class.

    Reads are answered from the poller-maintained cache and never touch the
    device. Writes are validated, then forwarded and awaited for at most
    ``ack_timeout`` seconds. The dispatcher keeps no per-request state.
    """

    def __init__(
        self,
        handlers: Mapping[DeviceClass, DeviceHandler],
        *,
        ack_timeout: float = 10.0,
    ) -> None:
        self._handlers = dict(handlers)
        self._ack_timeout = ack_timeout

    def device_classes(self) -> tuple[DeviceClass, ...]:
        return tuple(self._handlers)

    def actions(self, device_class: str | DeviceClass) -> tuple[str, ...]:
        handler = self._resolve_handler(device_class)
        return tuple(action.value for action in handler.ACTIONS)

    async def dispatch(self, request: CommandRequest) -> CommandResponse:
        handler = self._resolve_handler(request.device_class)
        device_class = handler.device_class

        try:
            action = handler.parse_action(request.action)
        except ValueError as exc:
            raise UnsupportedAction(
                str(exc),
                device_class=device_class.value,
                action=_action_name(request.action),
            ) from exc

        spec = handler.action_spec(action)
        if spec.kind is ActionKind.READ:
            reading = handler.cached()
            return CommandResponse(
                device_class=device_class,
                action=action.value,
                data=copy.deepcopy(dict(reading.data))
                if reading.data is not None
                else None,
                status=reading.status.value,
                updated_at=reading.updated_at,
            )

        try:
            command = handler.build_command(action, request.payload or {})
        except ValueError as exc:
            raise InvalidCommandPayload(
                str(exc), device_class=device_class.value, action=action.value
            ) from exc

        try:
            ack = await asyncio.wait_for(
                handler.send(action, command, timeout=self._ack_timeout),
                timeout=self._ack_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise DeviceTimeout(
                f"{device_class.value} did not acknowledge {action.value} "
                f"within {self._ack_timeout:.1f}s",
                device_class=device_class.value,
                action=action.value,
            ) from exc
        except DeviceResponseError as exc:
            raise DeviceRejected(
                f"{device_class.value} rejected {action.value}: {exc}",
                device_class=device_class.value,
                action=action.value,
                status=exc.status,
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            # an unreachable device never acknowledges
            raise DeviceTimeout(
                f"{device_class.value} unreachable for {action.value}: {exc}",
                device_class=device_class.value,
                action=action.value,
            ) from exc

        LOGGER.info("%s acknowledged %s", device_class.value, action.value)
        return CommandResponse(
            device_class=device_class,
            action=action.value,
            data=ack,
            status=ACKNOWLEDGED,
        )

    def _resolve_handler(self, device_class: str | DeviceClass) -> DeviceHandler:
        try:
            resolved = DeviceClass(
                device_class.value
                if isinstance(device_class, DeviceClass)
                else str(device_class).lower()
            )
        except ValueError:
            raise UnknownDeviceClass(
                f"Unknown device class: {device_class}",
                device_class=str(device_class),
            ) from None

        handler = self._handlers.get(resolved)
        if handler is None:
            raise UnknownDeviceClass(
                f"Device class not managed: {resolved.value}",
                device_class=resolved.value,
            )
        return handler


def _action_name(action: str | Enum) -> str:
    return action.value if isinstance(action, Enum) else str(action)
