"""Active-device registry and command hub for ESP devices."""

__version__ = "0.1.0"
