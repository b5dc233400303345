"""Tests for the device poller."""

import asyncio

import pytest

from esp_hub.devices import DeviceClass, DeviceStatus
from esp_hub.health import HealthReporter
from esp_hub.poller import DevicePoller


@pytest.mark.asyncio
async def test_poll_once_caches_successful_reading(handlers, alarm_client):
    alarm_client.readings = [{"alarmTime": "07:00", "alarmState": 1}]
    poller = DevicePoller(handlers)

    reading = await poller.poll_once(DeviceClass.ALARMCLOCK)

    assert reading.status is DeviceStatus.ACTIVE
    assert reading.data == {"alarmTime": "07:00", "alarmState": 1}


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_value(handlers, alarm_client):
    alarm_client.readings = [{"alarmTime": "07:00"}, ConnectionError("unreachable")]
    poller = DevicePoller(handlers)

    await poller.poll_once(DeviceClass.ALARMCLOCK)
    reading = await poller.poll_once(DeviceClass.ALARMCLOCK)

    assert reading.status is DeviceStatus.STALE
    assert reading.data == {"alarmTime": "07:00"}
    assert reading.last_error == "unreachable"


@pytest.mark.asyncio
async def test_successful_refresh_replaces_stale_value(handlers, alarm_client):
    alarm_client.readings = [
        {"alarmTime": "07:00"},
        ConnectionError("unreachable"),
        {"alarmTime": "08:15"},
    ]
    poller = DevicePoller(handlers)

    for _ in range(3):
        reading = await poller.poll_once(DeviceClass.ALARMCLOCK)

    assert reading.status is DeviceStatus.ACTIVE
    assert reading.data == {"alarmTime": "08:15"}


@pytest.mark.asyncio
async def test_timed_out_refresh_is_discarded(handlers, alarm_client):
    alarm_client.readings = [{"alarmTime": "07:00"}]
    poller = DevicePoller(handlers, refresh_timeout=0.05)
    await poller.poll_once(DeviceClass.ALARMCLOCK)

    alarm_client.readings = [{"alarmTime": "09:00"}]
    alarm_client.fetch_delay = 0.5
    reading = await poller.poll_once(DeviceClass.ALARMCLOCK)

    assert reading.status is DeviceStatus.STALE
    assert reading.data == {"alarmTime": "07:00"}
    assert "timed out" in (reading.last_error or "")

    # give an abandoned fetch the chance to finish; it must not land in the cache
    await asyncio.sleep(0.6)
    assert handlers[DeviceClass.ALARMCLOCK].cached().data == {"alarmTime": "07:00"}


@pytest.mark.asyncio
async def test_loop_refreshes_every_class(handlers, alarm_client, mixer_client):
    alarm_client.readings = [{"alarmTime": "07:00"}]
    mixer_client.readings = [{"isTimerOn": False}]
    poller = DevicePoller(handlers, interval=0.02, refresh_timeout=0.5)

    poller.start()
    try:
        await asyncio.sleep(0.15)
    finally:
        await poller.stop()

    assert alarm_client.fetch_calls >= 2
    assert mixer_client.fetch_calls >= 2
    assert handlers[DeviceClass.WATERMIXER].cached().status is DeviceStatus.ACTIVE
    assert not poller.running


@pytest.mark.asyncio
async def test_slow_class_skips_ticks_without_delaying_others(
    handlers, alarm_client, mixer_client
):
    alarm_client.readings = [{"alarmTime": "07:00"}]
    alarm_client.fetch_delay = 0.2
    mixer_client.readings = [{"isTimerOn": True}]
    poller = DevicePoller(handlers, interval=0.02, refresh_timeout=1.0)

    poller.start()
    try:
        await asyncio.sleep(0.15)
    finally:
        await poller.stop()

    # one refresh in flight for the slow class, never overlapping
    assert alarm_client.fetch_calls == 1
    assert poller.skipped_ticks(DeviceClass.ALARMCLOCK) >= 3
    assert mixer_client.fetch_calls >= 3
    assert poller.skipped_ticks(DeviceClass.WATERMIXER) == 0


@pytest.mark.asyncio
async def test_poll_results_are_reported_to_health(handlers, alarm_client, mixer_client):
    alarm_client.readings = [{"alarmTime": "07:00"}]
    health = HealthReporter()
    poller = DevicePoller(handlers, health=health)

    await poller.poll_once(DeviceClass.ALARMCLOCK)
    await poller.poll_once(DeviceClass.WATERMIXER)

    snapshot = await health.snapshot()
    components = {item["name"]: item for item in snapshot["components"]}
    assert components["poller:alarmclock"]["healthy"] is True
    assert components["poller:watermixer"]["healthy"] is False
    assert snapshot["status"] == "degraded"


@pytest.mark.asyncio
async def test_poll_once_joins_refresh_already_in_flight(handlers, alarm_client):
    alarm_client.readings = [{"alarmTime": "07:00"}]
    alarm_client.fetch_delay = 0.3
    poller = DevicePoller(handlers, interval=0.02, refresh_timeout=1.0)

    poller.start()
    try:
        await asyncio.sleep(0.05)
        reading = await poller.poll_once(DeviceClass.ALARMCLOCK)
    finally:
        await poller.stop()

    assert alarm_client.fetch_calls == 1
    assert reading.status is DeviceStatus.ACTIVE
    assert reading.data == {"alarmTime": "07:00"}
