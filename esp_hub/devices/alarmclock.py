"""Alarm clock device class."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .base import ActionKind, ActionSpec, DeviceClass, DeviceHandler

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")


class AlarmAction(str, Enum):
    GET_DATA = "GET_DATA"
    TEST_ALARM = "TEST_ALARM"
    SET_TIME = "SET_TIME"
    SWITCH_STATE = "SWITCH_STATE"


class AlarmClockHandler(DeviceHandler):
    """ESP alarm clock: reading, siren test, alarm time and on/off state."""

    device_class = DeviceClass.ALARMCLOCK
    action_type = AlarmAction
    ACTIONS = {
        AlarmAction.GET_DATA: ActionSpec(ActionKind.READ),
        AlarmAction.TEST_ALARM: ActionSpec(ActionKind.WRITE, "/test-alarm"),
        AlarmAction.SET_TIME: ActionSpec(ActionKind.WRITE, "/set-time"),
        AlarmAction.SWITCH_STATE: ActionSpec(ActionKind.WRITE, "/switch-state"),
    }

    def build_command(
        self, action: Enum, payload: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if action is AlarmAction.SET_TIME:
            hour, minute = _parse_alarm_time(payload)
            return {"hour": hour, "minute": minute}
        if action is AlarmAction.SWITCH_STATE:
            return {"state": 1 if _parse_state(payload) else 0}
        return None


def _parse_alarm_time(payload: Mapping[str, Any]) -> tuple[int, int]:
    if "time" in payload:
        value = payload["time"]
        match = _TIME_PATTERN.match(value) if isinstance(value, str) else None
        if match is None:
            raise ValueError("'time' must be formatted as HH:MM")
        hour, minute = int(match.group(1)), int(match.group(2))
    elif "hour" in payload and "minute" in payload:
        try:
            hour = _strict_int(payload["hour"])
            minute = _strict_int(payload["minute"])
        except (TypeError, ValueError):
            raise ValueError("'hour' and 'minute' must be integers") from None
    else:
        raise ValueError("Alarm time requires 'time' or 'hour' and 'minute'")

    if not 0 <= hour <= 23:
        raise ValueError(f"Hour {hour} is out of range 0-23")
    if not 0 <= minute <= 59:
        raise ValueError(f"Minute {minute} is out of range 0-59")
    return hour, minute


def _strict_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("fractional value")
    return int(value)


def _parse_state(payload: Mapping[str, Any]) -> bool:
    if "state" not in payload:
        raise ValueError("Switching state requires 'state'")
    value = payload["state"]
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    raise ValueError("'state' must be a boolean")
