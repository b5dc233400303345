"""HTTP surface exposing commands, active devices and health."""

from __future__ import annotations

import contextlib
import logging
from enum import Enum
from typing import Any, Dict, Optional

from aiohttp import web

from .commands import (
    CommandDispatcher,
    CommandProcessingError,
    CommandRequest,
    DeviceRejected,
    DeviceTimeout,
    InvalidCommandPayload,
    UnknownDeviceClass,
    UnsupportedAction,
)
from .devices import AlarmAction, DeviceClass, WaterAction
from .health import HealthReporter
from .registry import ActiveDeviceRegistry

LOGGER = logging.getLogger(__name__)

# one endpoint per (device class, action) pair, as published to clients
COMMAND_ROUTES: tuple[tuple[DeviceClass, str, Enum], ...] = (
    (DeviceClass.ALARMCLOCK, "getData", AlarmAction.GET_DATA),
    (DeviceClass.ALARMCLOCK, "testSiren", AlarmAction.TEST_ALARM),
    (DeviceClass.ALARMCLOCK, "setTime", AlarmAction.SET_TIME),
    (DeviceClass.ALARMCLOCK, "switchState", AlarmAction.SWITCH_STATE),
    (DeviceClass.WATERMIXER, "start", WaterAction.START_MIXING),
    (DeviceClass.WATERMIXER, "getData", WaterAction.GET_DATA),
)

_ERROR_STATUS: Dict[type, int] = {
    UnknownDeviceClass: 404,
    UnsupportedAction: 400,
    InvalidCommandPayload: 400,
    DeviceTimeout: 504,
    DeviceRejected: 502,
}


class CommandServer:
    """aiohttp server in front of the command dispatcher."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        registry: ActiveDeviceRegistry,
        health: HealthReporter,
        host: str,
        port: int,
    ) -> None:
        self._dispatcher = dispatcher
        self._registry = registry
        self._health = health
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        for device_class, route_name, action in COMMAND_ROUTES:
            app.router.add_post(
                f"/api/{device_class.value}/{route_name}",
                self._command_handler(device_class, action),
            )
        app.router.add_post("/api/{device_class}/{action}", self._handle_generic)
        app.router.add_get("/api/devices", self._handle_devices)
        app.router.add_get("/healthz", self._handle_health)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Command API listening on http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    def _command_handler(self, device_class: DeviceClass, action: Enum):
        async def handler(request: web.Request) -> web.Response:
            return await self._dispatch(request, device_class, action)

        return handler

    async def _handle_generic(self, request: web.Request) -> web.Response:
        return await self._dispatch(
            request,
            request.match_info["device_class"],
            request.match_info["action"],
        )

    async def _dispatch(
        self,
        request: web.Request,
        device_class: str | DeviceClass,
        action: str | Enum,
    ) -> web.Response:
        try:
            payload = await _read_payload(request)
        except ValueError as exc:
            return _error_response(400, "invalid_body", str(exc))

        target_uid = payload.pop("deviceUid", None)
        command = CommandRequest(
            device_class=device_class,
            action=action,
            target_uid=str(target_uid) if target_uid is not None else None,
            payload=payload,
        )

        try:
            response = await self._dispatcher.dispatch(command)
        except CommandProcessingError as exc:
            status = _ERROR_STATUS.get(type(exc), 500)
            LOGGER.warning(
                "Command %s/%s failed (%s): %s",
                exc.device_class or device_class,
                exc.action or action,
                exc.code,
                exc,
            )
            return _error_response(status, exc.code, str(exc))

        return web.json_response(response.as_dict())

    async def _handle_devices(self, request: web.Request) -> web.Response:
        device_type = request.query.get("type")
        devices = (
            self._registry.by_type(device_type)
            if device_type
            else self._registry.list()
        )
        return web.json_response(
            {"requestType": "DEVICES", "data": [d.as_dict() for d in devices]}
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._health.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)


async def _read_payload(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    text = await request.text()
    if not text.strip():
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValueError("Request body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def _error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response(
        {"error": {"code": code, "message": message}}, status=status
    )
