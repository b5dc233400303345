from pathlib import Path

from esp_hub import constants
from esp_hub.config import load_config, save_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "esp-hub.cfg"
    config = load_config(config_path)

    assert config.bus.broker_host == "localhost"
    assert config.bus.broker_port == 1883
    assert config.bus.data_topic == "device-data"
    assert config.bus.disconnect_topic == "device-disconnect"
    assert config.devices["alarmclock"].url == constants.DEFAULT_ALARMCLOCK_URL
    assert config.devices["watermixer"].url == constants.DEFAULT_WATERMIXER_URL
    assert config.devices["watermixer"].api_key is None
    assert config.poller.interval_seconds == 1.0
    assert config.poller.refresh_timeout_seconds == 5.0
    assert config.commands.ack_timeout_seconds == 10.0
    assert config.api.port == 8000
    assert config.resilience.reconnect_max_attempts == 10
    assert config.logging.path is None


def test_load_config_parses_broker_host_with_port(tmp_path: Path) -> None:
    config_path = tmp_path / "esp-hub.cfg"
    config_path.write_text("[bus]\nbroker_host = mosquitto:61198\n", encoding="utf-8")

    config = load_config(config_path)

    assert config.bus.broker_host == "mosquitto"
    assert config.bus.broker_port == 61198
    assert config.raw.get("bus", "broker_host") == "mosquitto"
    assert config.raw.get("bus", "broker_port") == "61198"


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "esp-hub.cfg"
    config_path.write_text(
        """
[bus]
username = hub
password = secret
qos = 5

[alarmclock]
url = http://10.0.0.20
api_key = abc

[watermixer]
enabled = false

[poller]
interval_seconds = 0.01
refresh_timeout_seconds = 2.5

[logging]
level = DEBUG
path = ~/esp-hub.log
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.bus.username == "hub"
    assert config.bus.password == "secret"
    assert config.bus.qos == 2
    assert config.devices["alarmclock"].url == "http://10.0.0.20"
    assert config.devices["alarmclock"].api_key == "abc"
    assert set(config.enabled_devices()) == {"alarmclock"}
    assert config.poller.interval_seconds == 0.1
    assert config.poller.refresh_timeout_seconds == 2.5
    assert config.logging.level == "DEBUG"
    assert config.logging.path == Path("~/esp-hub.log").expanduser()


def test_save_config_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "esp-hub.cfg"
    config = load_config(config_path)
    config.raw.set("api", "port", "9100")

    save_config(config)
    reloaded = load_config(config_path)

    assert config_path.exists()
    assert reloaded.api.port == 9100
