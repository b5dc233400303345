import logging
from pathlib import Path

from esp_hub.logging import configure_logging


def test_configure_logging_writes_file_and_quiets_network(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    log_path = tmp_path / "logs" / "esp-hub.log"

    try:
        configure_logging("debug", log_path=log_path)
        logging.getLogger("esp_hub.test").info("hub ready")
        for handler in root.handlers:
            handler.flush()

        assert root.level == logging.DEBUG
        assert logging.getLogger("paho").level == logging.WARNING
        assert "hub ready" in log_path.read_text(encoding="utf-8")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
        logging.getLogger("paho").setLevel(logging.NOTSET)
        logging.getLogger("aiohttp.access").setLevel(logging.NOTSET)
        logging.getLogger("aiohttp.client").setLevel(logging.NOTSET)
