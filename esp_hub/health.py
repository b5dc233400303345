"""Health reporting for the running hub."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component statuses (bus, pollers, api) and the hub state."""

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._hub_state: Optional[ComponentStatus] = None
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            previous = self._status.get(name)
            if (
                previous is not None
                and previous.healthy == healthy
                and previous.detail == detail
            ):
                return
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    async def set_hub_state(self, state: str, *, healthy: bool) -> None:
        async with self._lock:
            self._hub_state = ComponentStatus(name="hub", healthy=healthy, detail=state)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._status.values()]
            hub_state = self._hub_state

        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        if hub_state is not None and not hub_state.healthy:
            overall = "degraded"

        payload: Dict[str, object] = {"status": overall, "components": components}
        if hub_state is not None:
            payload["hubState"] = {
                "state": hub_state.detail,
                "healthy": hub_state.healthy,
                "updatedAt": hub_state.updated_at.isoformat(timespec="seconds"),
            }
        return payload
