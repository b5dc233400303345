"""Main application entry-point for esp-hub."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import random
import signal
from enum import Enum
from typing import Dict, Optional

import aiohttp

from . import constants
from .adapters import BusConnectionError, MQTTClient
from .api import CommandServer
from .bus import TelemetryBus
from .commands import CommandDispatcher
from .config import HubConfig, load_config
from .devices import DeviceClass, DeviceHandler, build_handlers
from .health import HealthReporter
from .logging import configure_logging
from .poller import DevicePoller
from .registry import ActiveDeviceRegistry

LOGGER = logging.getLogger(__name__)


class HubState(str, Enum):
    STARTING = "starting"
    CONNECTING_BUS = "connecting_bus"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class EspHubApp:
    """Coordinates startup and shutdown of the hub.

    Every component is constructed once here and handed to its consumers:
    the registry to the bus and the HTTP surface, the device handlers to the
    poller and the dispatcher.
    """

    def __init__(
        self,
        config: Optional[HubConfig] = None,
        *,
        mqtt_client: Optional[MQTTClient] = None,
        handlers: Optional[Dict[DeviceClass, DeviceHandler]] = None,
    ) -> None:
        """Initialize the hub.

        Args:
            config: Application configuration. If None, loads from default path.
            mqtt_client: Bus transport. If None, one is created from config.
            handlers: Device-class handlers. If None, built from the enabled
                      device sections when the hub starts.
        """
        self._config = config or load_config()
        self._registry = ActiveDeviceRegistry()
        self._health = HealthReporter()
        self._mqtt_client = mqtt_client or MQTTClient(
            self._config.bus, client_id=_build_client_id(self._config)
        )
        self._bus = TelemetryBus.for_registry(
            self._mqtt_client, self._config.bus, self._registry
        )
        self._handlers: Optional[Dict[DeviceClass, DeviceHandler]] = handlers
        self._session: Optional[aiohttp.ClientSession] = None
        self._poller: Optional[DevicePoller] = None
        self._dispatcher: Optional[CommandDispatcher] = None
        self._api_server: Optional[CommandServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._state = HubState.STARTING

    @property
    def registry(self) -> ActiveDeviceRegistry:
        return self._registry

    @property
    def bus(self) -> TelemetryBus:
        return self._bus

    @property
    def dispatcher(self) -> Optional[CommandDispatcher]:
        return self._dispatcher

    @property
    def health(self) -> HealthReporter:
        return self._health

    @property
    def state(self) -> HubState:
        return self._state

    @classmethod
    def start(cls, config: Optional[HubConfig] = None) -> int:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            return asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("esp-hub received shutdown signal")
            return 0

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> int:
        """Run until shutdown is requested or the bus reports a fatal fault.

        Returns the process exit code.
        """

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                self._loop.add_signal_handler(signum, self.request_shutdown)

        LOGGER.info("esp-hub starting with config: %s", self._config.path)
        try:
            if not await self._start_services():
                return 1

            shutdown = asyncio.create_task(self._shutdown_event.wait())
            fault = asyncio.create_task(self._bus.wait_fault())
            try:
                await asyncio.wait(
                    {shutdown, fault}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in (shutdown, fault):
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
        finally:
            await self._stop_services()
            for signum in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                    self._loop.remove_signal_handler(signum)

        if self._bus.fault is not None:
            LOGGER.critical("esp-hub stopped after bus fault: %s", self._bus.fault)
            return 1
        return 0

    async def _transition_state(self, state: HubState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.info("Hub state transition %s -> %s", previous.value, state.value)
        await self._health.set_hub_state(
            state.value, healthy=state == HubState.ACTIVE
        )

    async def _start_services(self) -> bool:
        await self._transition_state(HubState.STARTING)
        await self._health.update("bus", False, "initialising")

        if self._handlers is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None)
            )
            self._handlers = build_handlers(
                self._config.enabled_devices(), session=self._session
            )

        self._dispatcher = CommandDispatcher(
            self._handlers, ack_timeout=self._config.commands.ack_timeout_seconds
        )
        self._poller = DevicePoller(
            self._handlers,
            interval=self._config.poller.interval_seconds,
            refresh_timeout=self._config.poller.refresh_timeout_seconds,
            health=self._health,
        )

        await self._transition_state(HubState.CONNECTING_BUS)
        self._mqtt_client.register_disconnect_handler(self._on_bus_disconnect)
        self._mqtt_client.register_connect_handler(self._on_bus_connect)

        if not await self._connect_with_backoff():
            await self._health.update("bus", False, "unreachable")
            await self._transition_state(HubState.DEGRADED)
            return False

        self._bus.attach()
        try:
            self._bus.subscribe_all()
        except BusConnectionError as exc:
            LOGGER.error("Bus subscription failed: %s", exc)
            await self._health.update("bus", False, str(exc))
            await self._transition_state(HubState.DEGRADED)
            return False
        await self._health.update("bus", True, None)

        self._poller.start()

        api_ready = await self._start_api_server()
        await self._transition_state(
            HubState.ACTIVE if api_ready else HubState.DEGRADED
        )
        return True

    async def _start_api_server(self) -> bool:
        api = self._config.api
        if not api.enabled:
            return True

        assert self._dispatcher is not None
        server = CommandServer(
            self._dispatcher, self._registry, self._health, api.host, api.port
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start command API: %s", exc)
            await self._health.update("api", False, str(exc))
            return False

        self._api_server = server
        await self._health.update("api", True, None)
        return True

    async def _connect_with_backoff(self) -> bool:
        """Connect the bus with exponential backoff and jitter."""

        resilience = self._config.resilience
        delay = max(0.05, resilience.reconnect_initial_seconds)
        max_delay = max(delay, resilience.reconnect_max_seconds)
        jitter_ratio = max(0.0, min(1.0, resilience.reconnect_jitter_ratio))
        assert self._shutdown_event is not None

        for attempt in range(1, resilience.reconnect_max_attempts + 1):
            if self._shutdown_event.is_set():
                return False
            try:
                await self._mqtt_client.connect()
                LOGGER.debug("Bus connection attempt %d succeeded", attempt)
                return True
            except BusConnectionError as exc:
                if attempt == resilience.reconnect_max_attempts:
                    LOGGER.error(
                        "Bus connection failed after %d attempts: %s", attempt, exc
                    )
                    break

                sleep_for = delay
                if jitter_ratio > 0.0:
                    jitter = delay * jitter_ratio
                    sleep_for = random.uniform(max(0.01, delay - jitter), delay + jitter)
                LOGGER.warning(
                    "Bus connection attempt %d failed: %s, retrying in %.1fs",
                    attempt,
                    exc,
                    sleep_for,
                )

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=sleep_for
                    )
                    return False
                except asyncio.TimeoutError:
                    pass

                delay = min(delay * 2, max_delay)

        return False

    def _on_bus_disconnect(self, rc: int) -> None:
        if self._state == HubState.STOPPING:
            return
        self._schedule_health_update("bus", False, f"disconnected (rc={rc})")

    def _on_bus_connect(self, rc: int) -> None:
        self._schedule_health_update("bus", True, None)

    def _schedule_health_update(
        self, name: str, healthy: bool, detail: Optional[str]
    ) -> None:
        loop = self._loop
        if loop is None:
            return

        async def _runner() -> None:
            await self._health.update(name, healthy, detail)

        task = loop.create_task(_runner())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _stop_services(self) -> None:
        await self._transition_state(HubState.STOPPING)

        if self._api_server is not None:
            await self._api_server.stop()
            self._api_server = None

        if self._poller is not None:
            await self._poller.stop()

        self._bus.detach()
        with contextlib.suppress(BusConnectionError):
            await self._mqtt_client.disconnect()
        await self._health.update("bus", False, "shutdown")

        if self._session is not None:
            await self._session.close()
            self._session = None

        self._registry.clear()


def _build_client_id(config: HubConfig) -> str:
    if config.bus.client_id:
        return config.bus.client_id
    return f"{constants.APP_NAME}-{os.getpid()}"
