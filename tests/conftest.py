import asyncio
from typing import Any, Optional

import pytest

from esp_hub.devices import AlarmClockHandler, DeviceClass, WaterMixerHandler


class FakeDeviceClient:
    """Stands in for DeviceClient; readings and acks are scripted per test."""

    def __init__(self, base_url: str = "http://device.local") -> None:
        self.base_url = base_url
        self.readings: list[Any] = []
        self.fetch_delay = 0.0
        self.fetch_calls = 0
        self.sent: list[tuple[str, Optional[dict]]] = []
        self.ack: Any = {"ok": True}
        self.send_error: Optional[BaseException] = None
        self.send_delay = 0.0
        self.closed = False

    async def fetch(self, path: str, *, timeout: float = 5.0) -> Any:
        self.fetch_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if not self.readings:
            raise ConnectionError("device unreachable")
        result = self.readings.pop(0) if len(self.readings) > 1 else self.readings[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def send(
        self, path: str, payload: Optional[dict] = None, *, timeout: float = 5.0
    ) -> Any:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((path, payload))
        return self.ack

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def alarm_client() -> FakeDeviceClient:
    return FakeDeviceClient("http://alarmclock.local")


@pytest.fixture
def mixer_client() -> FakeDeviceClient:
    return FakeDeviceClient("http://watermixer.local")


@pytest.fixture
def handlers(alarm_client, mixer_client):
    return {
        DeviceClass.ALARMCLOCK: AlarmClockHandler(alarm_client),
        DeviceClass.WATERMIXER: WaterMixerHandler(mixer_client),
    }
