"""Tests for the device HTTP adapter."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web

from esp_hub.adapters import DeviceClient, DeviceResponseError
from esp_hub.config import DeviceConfig
from esp_hub.devices import AlarmAction, AlarmClockHandler, DeviceStatus


@pytest_asyncio.fixture
async def device_server(unused_tcp_port_factory):
    received: list[tuple[str, str, object, str | None]] = []

    async def data_handler(request: web.Request):
        received.append(("GET", request.path, None, request.headers.get("X-Api-Key")))
        return web.json_response({"alarmTime": "07:00", "alarmState": 1})

    async def command_handler(request: web.Request):
        text = await request.text()
        body = await request.json() if text else None
        received.append(("POST", request.path, body, request.headers.get("X-Api-Key")))
        return web.Response(text="OK")

    async def busy_handler(request: web.Request):
        return web.json_response({"error": "alarm is ringing"}, status=409)

    async def soft_error_handler(request: web.Request):
        return web.json_response({"error": {"message": "bad hour"}})

    async def slow_handler(request: web.Request):
        await asyncio.sleep(1.0)
        return web.json_response({})

    app = web.Application()
    app.router.add_get("/data", data_handler)
    app.router.add_post("/set-time", command_handler)
    app.router.add_post("/test-alarm", command_handler)
    app.router.add_post("/switch-state", busy_handler)
    app.router.add_post("/soft-error", soft_error_handler)
    app.router.add_get("/slow", slow_handler)

    runner = web.AppRunner(app)
    await runner.setup()

    port = unused_tcp_port_factory()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()

    class _Server:
        def __init__(self, server_port: int):
            self._port = server_port
            self.received = received

        def make_url(self, path: str = "/") -> str:
            if not path.startswith("/"):
                path = "/" + path
            return f"http://127.0.0.1:{self._port}{path}"

    try:
        yield _Server(port)
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_fetch_returns_json_reading(device_server):
    client = DeviceClient(DeviceConfig(url=device_server.make_url("/"), api_key="k1"))

    try:
        reading = await client.fetch("/data")
    finally:
        await client.aclose()

    assert reading == {"alarmTime": "07:00", "alarmState": 1}
    assert device_server.received == [("GET", "/data", None, "k1")]


@pytest.mark.asyncio
async def test_send_posts_json_and_returns_text_ack(device_server):
    client = DeviceClient(DeviceConfig(url=device_server.make_url("/")))

    try:
        ack = await client.send("set-time", {"hour": 6, "minute": 30})
        empty_ack = await client.send("/test-alarm")
    finally:
        await client.aclose()

    assert ack == "OK"
    assert empty_ack == "OK"
    assert device_server.received == [
        ("POST", "/set-time", {"hour": 6, "minute": 30}, None),
        ("POST", "/test-alarm", None, None),
    ]


@pytest.mark.asyncio
async def test_error_status_raises_with_status(device_server):
    client = DeviceClient(DeviceConfig(url=device_server.make_url("/")))

    try:
        with pytest.raises(DeviceResponseError) as excinfo:
            await client.send("/switch-state", {"state": 1})
    finally:
        await client.aclose()

    assert excinfo.value.status == 409
    assert "alarm is ringing" in str(excinfo.value)


@pytest.mark.asyncio
async def test_error_body_raises_even_on_success_status(device_server):
    client = DeviceClient(DeviceConfig(url=device_server.make_url("/")))

    try:
        with pytest.raises(DeviceResponseError, match="bad hour"):
            await client.send("/soft-error", {})
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_slow_device_times_out(device_server):
    client = DeviceClient(DeviceConfig(url=device_server.make_url("/")))

    try:
        with pytest.raises(asyncio.TimeoutError):
            await client.fetch("/slow", timeout=0.1)
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_handler_round_trip_over_http(device_server):
    handler = AlarmClockHandler(
        DeviceClient(DeviceConfig(url=device_server.make_url("/")))
    )

    try:
        reading = await handler.refresh()
        command = handler.build_command(AlarmAction.SET_TIME, {"time": "05:15"})
        await handler.send(AlarmAction.SET_TIME, command)
    finally:
        await handler.aclose()

    assert reading.status is DeviceStatus.ACTIVE
    assert reading.data == {"alarmTime": "07:00", "alarmState": 1}
    assert device_server.received[-1] == (
        "POST",
        "/set-time",
        {"hour": 5, "minute": 15},
        None,
    )
