"""Configuration loader for esp-hub."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from . import constants


@dataclass(slots=True)
class BusConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    data_topic: str = constants.DEFAULT_DATA_TOPIC
    disconnect_topic: str = constants.DEFAULT_DISCONNECT_TOPIC
    qos: int = 0


@dataclass(slots=True)
class DeviceConfig:
    url: str
    api_key: Optional[str] = None
    enabled: bool = True


@dataclass(slots=True)
class PollerConfig:
    interval_seconds: float = 1.0
    refresh_timeout_seconds: float = 5.0


@dataclass(slots=True)
class CommandConfig:
    ack_timeout_seconds: float = 10.0


@dataclass(slots=True)
class ApiConfig:
    enabled: bool = True
    host: str = constants.DEFAULT_API_HOST
    port: int = constants.DEFAULT_API_PORT


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    reconnect_jitter_ratio: float = 0.5
    reconnect_max_attempts: int = 10


@dataclass(slots=True)
class HubConfig:
    bus: BusConfig
    devices: Dict[str, DeviceConfig]
    poller: PollerConfig
    commands: CommandConfig
    api: ApiConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser = field(default_factory=ConfigParser)
    path: Path = constants.DEFAULT_CONFIG_PATH

    def enabled_devices(self) -> Dict[str, DeviceConfig]:
        return {
            name: device for name, device in self.devices.items() if device.enabled
        }


DEVICE_SECTIONS: Dict[str, str] = {
    "alarmclock": constants.DEFAULT_ALARMCLOCK_URL,
    "watermixer": constants.DEFAULT_WATERMIXER_URL,
}


def load_config(path: Optional[Path] = None) -> HubConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "bus": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "data_topic": constants.DEFAULT_DATA_TOPIC,
                "disconnect_topic": constants.DEFAULT_DISCONNECT_TOPIC,
                "qos": "0",
            },
            **{
                section: {"url": url, "enabled": "true"}
                for section, url in DEVICE_SECTIONS.items()
            },
            "poller": {
                "interval_seconds": "1.0",
                "refresh_timeout_seconds": "5.0",
            },
            "commands": {
                "ack_timeout_seconds": "10.0",
            },
            "api": {
                "enabled": "true",
                "host": constants.DEFAULT_API_HOST,
                "port": str(constants.DEFAULT_API_PORT),
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "resilience": {
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
                "reconnect_jitter_ratio": "0.5",
                "reconnect_max_attempts": "10",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("bus", "broker_host")
    broker_port_value = parser.getint(
        "bus", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("bus", "broker_host", host_part)
            parser.set("bus", "broker_port", str(parsed_port))

    bus = BusConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("bus", "username", fallback=None),
        password=parser.get("bus", "password", fallback=None),
        client_id=parser.get("bus", "client_id", fallback=None),
        data_topic=parser.get("bus", "data_topic"),
        disconnect_topic=parser.get("bus", "disconnect_topic"),
        qos=max(0, min(2, parser.getint("bus", "qos", fallback=0))),
    )

    devices = {
        section: DeviceConfig(
            url=parser.get(section, "url"),
            api_key=parser.get(section, "api_key", fallback=None) or None,
            enabled=parser.getboolean(section, "enabled", fallback=True),
        )
        for section in DEVICE_SECTIONS
    }

    poller_defaults = PollerConfig()
    poller = PollerConfig(
        interval_seconds=max(
            0.1,
            parser.getfloat(
                "poller",
                "interval_seconds",
                fallback=poller_defaults.interval_seconds,
            ),
        ),
        refresh_timeout_seconds=max(
            0.1,
            parser.getfloat(
                "poller",
                "refresh_timeout_seconds",
                fallback=poller_defaults.refresh_timeout_seconds,
            ),
        ),
    )

    commands = CommandConfig(
        ack_timeout_seconds=max(
            0.1,
            parser.getfloat("commands", "ack_timeout_seconds", fallback=10.0),
        ),
    )

    api = ApiConfig(
        enabled=parser.getboolean("api", "enabled", fallback=True),
        host=parser.get("api", "host", fallback=constants.DEFAULT_API_HOST),
        port=parser.getint("api", "port", fallback=constants.DEFAULT_API_PORT),
    )

    log_path_value = parser.get("logging", "path", fallback="")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        reconnect_initial_seconds=parser.getfloat(
            "resilience", "reconnect_initial_seconds", fallback=1.0
        ),
        reconnect_max_seconds=parser.getfloat(
            "resilience", "reconnect_max_seconds", fallback=30.0
        ),
        reconnect_jitter_ratio=max(
            0.0,
            min(
                1.0,
                parser.getfloat("resilience", "reconnect_jitter_ratio", fallback=0.5),
            ),
        ),
        reconnect_max_attempts=max(
            1,
            parser.getint("resilience", "reconnect_max_attempts", fallback=10),
        ),
    )

    return HubConfig(
        bus=bus,
        devices=devices,
        poller=poller,
        commands=commands,
        api=api,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def save_config(config: HubConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
