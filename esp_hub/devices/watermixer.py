"""Water mixer device class."""

from __future__ import annotations

from enum import Enum

from .base import ActionKind, ActionSpec, DeviceClass, DeviceHandler


class WaterAction(str, Enum):
    START_MIXING = "START_MIXING"
    GET_DATA = "GET_DATA"


class WaterMixerHandler(DeviceHandler):
    """ESP water mixer: reading and mixing trigger."""

    device_class = DeviceClass.WATERMIXER
    action_type = WaterAction
    ACTIONS = {
        WaterAction.GET_DATA: ActionSpec(ActionKind.READ),
        WaterAction.START_MIXING: ActionSpec(ActionKind.WRITE, "/start-mixing"),
    }
