"""Fixed-interval polling of managed device classes.

Each device class gets its own loop so a slow or unreachable device never
delays the others. A tick starts a refresh only when the previous refresh of
the same class has finished; otherwise the tick is skipped. Every refresh is
bounded by a timeout and a timed-out refresh is cancelled without touching
the cache.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Dict, Mapping, Optional

from .devices import CachedReading, DeviceClass, DeviceHandler, DeviceStatus
from .health import HealthReporter

LOGGER = logging.getLogger(__name__)


class DevicePoller:
    """Keeps every handler's cached reading fresh."""

    def __init__(
        self,
        handlers: Mapping[DeviceClass, DeviceHandler],
        *,
        interval: float = 1.0,
        refresh_timeout: float = 5.0,
        health: Optional[HealthReporter] = None,
    ) -> None:
        """Initialize the poller.

        Args:
            handlers: Device-class handlers to refresh
            interval: Seconds between ticks
            refresh_timeout: Upper bound for a single refresh
            health: Optional reporter receiving one component per class
        """
        self._handlers = dict(handlers)
        self._interval = max(interval, 0.01)
        self._refresh_timeout = max(refresh_timeout, 0.01)
        self._health = health
        self._stop_event = asyncio.Event()
        self._poll_tasks: list[asyncio.Task[None]] = []
        self._inflight: Dict[DeviceClass, asyncio.Task[None]] = {}
        self._skipped: Dict[DeviceClass, int] = {cls: 0 for cls in self._handlers}
        self._failing: set[DeviceClass] = set()

    @property
    def running(self) -> bool:
        return bool(self._poll_tasks)

    def skipped_ticks(self, device_class: DeviceClass) -> int:
        return self._skipped.get(device_class, 0)

    def start(self) -> None:
        """Start one polling loop per device class."""
        if self._poll_tasks:
            return

        self._stop_event.clear()
        for handler in self._handlers.values():
            task = asyncio.create_task(
                self._poll_loop(handler), name=f"poll-{handler.device_class.value}"
            )
            self._poll_tasks.append(task)
        LOGGER.info(
            "Polling %d device classes every %.1fs",
            len(self._poll_tasks),
            self._interval,
        )

    async def stop(self) -> None:
        """Stop polling and abandon in-flight refreshes."""
        self._stop_event.set()

        tasks = [*self._poll_tasks, *self._inflight.values()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._poll_tasks.clear()
        self._inflight.clear()

    async def poll_once(self, device_class: DeviceClass) -> CachedReading:
        """Run a single bounded refresh for one class and return its cache.

        Joins the refresh already running for the class instead of starting
        a second one.
        """
        handler = self._handlers[device_class]
        task = self._inflight.get(device_class)
        if task is None or task.done():
            task = asyncio.create_task(self._refresh(handler))
            self._inflight[device_class] = task
        await asyncio.shield(task)
        return handler.cached()

    async def _poll_loop(self, handler: DeviceHandler) -> None:
        device_class = handler.device_class

        while not self._stop_event.is_set():
            inflight = self._inflight.get(device_class)
            if inflight is not None and not inflight.done():
                self._skipped[device_class] = self._skipped.get(device_class, 0) + 1
                LOGGER.debug(
                    "Skipping %s tick; previous refresh still running",
                    device_class.value,
                )
            else:
                self._inflight[device_class] = asyncio.create_task(
                    self._refresh(handler)
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue

    async def _refresh(self, handler: DeviceHandler) -> None:
        device_class = handler.device_class
        timeout = self._refresh_timeout

        try:
            await asyncio.wait_for(handler.refresh(timeout=timeout), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            error = f"refresh timed out after {timeout:.1f}s"
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            if device_class in self._failing:
                self._failing.discard(device_class)
                LOGGER.info("%s refresh recovered", device_class.value)
            await self._report(device_class, True, DeviceStatus.ACTIVE.value)
            return

        reading = handler.mark_stale(error)
        if device_class not in self._failing:
            self._failing.add(device_class)
            LOGGER.warning(
                "%s refresh failed: %s (serving %s cache)",
                device_class.value,
                error,
                reading.status.value,
            )
        else:
            LOGGER.debug("%s refresh failed again: %s", device_class.value, error)
        await self._report(device_class, False, f"{reading.status.value}: {error}")

    async def _report(
        self, device_class: DeviceClass, healthy: bool, detail: str
    ) -> None:
        if self._health is not None:
            await self._health.update(f"poller:{device_class.value}", healthy, detail)
