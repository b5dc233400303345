import pytest

from esp_hub.health import HealthReporter


@pytest.mark.asyncio
async def test_health_reporter_snapshot():
    reporter = HealthReporter()

    await reporter.update("bus", True)
    await reporter.update("poller:watermixer", False, "stale: device unreachable")

    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "degraded"
    components = {item["name"]: item for item in snapshot["components"]}
    assert components["bus"]["healthy"] is True
    assert components["poller:watermixer"]["healthy"] is False
    assert components["poller:watermixer"]["detail"] == "stale: device unreachable"


@pytest.mark.asyncio
async def test_unchanged_update_keeps_timestamp():
    reporter = HealthReporter()

    await reporter.update("bus", True, "connected")
    first = await reporter.snapshot()
    await reporter.update("bus", True, "connected")
    second = await reporter.snapshot()

    assert first["components"] == second["components"]


@pytest.mark.asyncio
async def test_hub_state_affects_status():
    reporter = HealthReporter()

    await reporter.update("bus", True)
    await reporter.set_hub_state("connecting_bus", healthy=False)

    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "degraded"
    hub = snapshot.get("hubState")
    assert hub is not None
    assert hub["state"] == "connecting_bus"
    assert hub["healthy"] is False


@pytest.mark.asyncio
async def test_empty_reporter_is_ok():
    snapshot = await HealthReporter().snapshot()

    assert snapshot == {"status": "ok", "components": []}
