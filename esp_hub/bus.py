"""Telemetry bus client routing MQTT channels into the device registry."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Protocol

from .config import BusConfig
from .registry import ActiveDeviceRegistry, DecodeError

LOGGER = logging.getLogger(__name__)

ChannelHandler = Callable[[bytes], object]


class Channel(str, Enum):
    """Bus channels the hub subscribes to."""

    DEVICE_DATA = "device-data"
    """Telemetry upserts, one JSON encoded device per message."""

    DEVICE_DISCONNECT = "device-disconnect"
    """Removal events carrying at least the device uid."""


class UnrecognizedChannelError(RuntimeError):
    """Raised when a message arrives on a topic no channel is mapped to."""

    def __init__(self, topic: str) -> None:
        super().__init__(f"Channel unrecognized: {topic}")
        self.topic = topic


class BusTransport(Protocol):
    def subscribe(self, topic: str, qos: int = 0) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def set_message_handler(self, handler) -> None: ...

    def register_connect_handler(self, handler: Callable[[int], None]) -> None: ...


class TelemetryBus:
    """Delivers bus messages verbatim to the handler of their channel.

    Topics and handlers are resolved once at construction. A message on any
    other topic means publishers and subscribers disagree about the topology;
    it is recorded as a fatal fault that the owning process must act on.
    """

    def __init__(
        self,
        transport: BusTransport,
        config: BusConfig,
        handlers: Mapping[Channel, ChannelHandler],
    ) -> None:
        missing = [channel.value for channel in Channel if channel not in handlers]
        if missing:
            raise ValueError(f"No handler configured for channels: {missing}")

        self._transport = transport
        self._qos = config.qos
        self._topics: Dict[Channel, str] = {
            Channel.DEVICE_DATA: config.data_topic,
            Channel.DEVICE_DISCONNECT: config.disconnect_topic,
        }
        self._channels_by_topic: Dict[str, Channel] = {
            topic: channel for channel, topic in self._topics.items()
        }
        self._handlers: Dict[Channel, ChannelHandler] = dict(handlers)
        self._subscribed: list[Channel] = []
        self._fault: Optional[UnrecognizedChannelError] = None
        self._fault_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def for_registry(
        cls,
        transport: BusTransport,
        config: BusConfig,
        registry: ActiveDeviceRegistry,
    ) -> "TelemetryBus":
        return cls(
            transport,
            config,
            {
                Channel.DEVICE_DATA: registry.on_device_data,
                Channel.DEVICE_DISCONNECT: registry.on_device_disconnect,
            },
        )

    @property
    def fault(self) -> Optional[UnrecognizedChannelError]:
        return self._fault

    @property
    def subscribed_channels(self) -> tuple[Channel, ...]:
        return tuple(self._subscribed)

    def topic_for(self, channel: Channel) -> str:
        return self._topics[channel]

    def attach(self) -> None:
        """Install the message handler on the transport."""

        self._loop = asyncio.get_running_loop()
        self._fault_event = asyncio.Event()
        self._transport.set_message_handler(self._handle_message)
        self._transport.register_connect_handler(self._on_reconnect)

    def subscribe(self, channel: Channel) -> None:
        """Subscribe to a channel.

        Raises:
            BusConnectionError: If the transport is not connected.
        """

        topic = self._topics[channel]
        self._transport.subscribe(topic, qos=self._qos)
        if channel not in self._subscribed:
            self._subscribed.append(channel)
        LOGGER.info("Subscribed to %s (topic=%s)", channel.name, topic)

    def subscribe_all(self) -> None:
        for channel in Channel:
            self.subscribe(channel)

    def detach(self) -> None:
        for channel in list(self._subscribed):
            try:
                self._transport.unsubscribe(self._topics[channel])
            except ConnectionError as exc:
                LOGGER.debug("Unsubscribe from %s skipped: %s", channel.name, exc)
        self._subscribed.clear()
        self._transport.set_message_handler(None)

    async def wait_fault(self) -> UnrecognizedChannelError:
        """Block until a fatal topology fault has been recorded."""

        if self._fault is not None:
            return self._fault
        if self._fault_event is None:
            self._fault_event = asyncio.Event()
        await self._fault_event.wait()
        assert self._fault is not None
        return self._fault

    def _handle_message(self, topic: str, payload: bytes) -> None:
        if self._fault is not None:
            # the bus is stopped once the topology is known to be wrong
            raise UnrecognizedChannelError(self._fault.topic)

        channel = self._channels_by_topic.get(topic)
        if channel is None:
            fault = UnrecognizedChannelError(topic)
            self._record_fault(fault)
            raise fault

        handler = self._handlers[channel]
        try:
            handler(payload)
        except DecodeError as exc:
            LOGGER.warning("Dropping malformed %s message: %s", channel.name, exc)

    def _record_fault(self, fault: UnrecognizedChannelError) -> None:
        if self._fault is None:
            self._fault = fault
            LOGGER.critical(
                "Message on unrecognized topic %r; subscriber and publisher "
                "topology disagree",
                fault.topic,
            )
        loop = self._loop
        event = self._fault_event
        if loop is not None and event is not None:
            loop.call_soon_threadsafe(event.set)

    def _on_reconnect(self, rc: int) -> None:
        for channel in list(self._subscribed):
            try:
                self.subscribe(channel)
            except ConnectionError as exc:
                LOGGER.warning("Resubscribe to %s failed: %s", channel.name, exc)
