"""Configuration for the fuel queue services.

Usage:
    from fuel_queue.config import Config

    # Access config values
    database_url = Config.DATABASE_URL
    topic = Config.MQTT_TOPIC
"""

import os
from pathlib import Path


class Config:
    """Centralized configuration for the station and car back-ends.

    All configuration values are class variables that can be accessed directly.
    Values are loaded from environment variables with sensible defaults.

    Example:
        from fuel_queue.config import Config

        print(Config.FUEL_QUEUE_DIR)
        print(Config.DATABASE_URL)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_fuel_queue_dir() -> str:
        """Get and validate FUEL_QUEUE_DIR environment variable.

        Falls back to ``~/.fuel_queue`` when unset. An explicitly configured
        directory must exist and be writable.

        Returns:
            Data directory path

        Raises:
            ValueError: If FUEL_QUEUE_DIR is set but not writable
        """
        fuel_queue_dir = os.getenv("FUEL_QUEUE_DIR")
        if not fuel_queue_dir:
            return str(Path.home() / ".fuel_queue")

        if not os.access(fuel_queue_dir, os.W_OK):
            raise ValueError(
                f"FUEL_QUEUE_DIR does not exist or no write permission: {fuel_queue_dir}"
            )

        return fuel_queue_dir

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        return int(os.getenv(key, str(default)))

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Get boolean configuration value."""
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    # ========================================================================
    # Common Configuration
    # ========================================================================

    FUEL_QUEUE_DIR: str = _get_fuel_queue_dir()

    DATABASE_URL: str = _get_value("DATABASE_URL", f"sqlite:///{FUEL_QUEUE_DIR}/fuel_queue.db")

    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")

    # ========================================================================
    # Queue Configuration
    # ========================================================================

    # Attempts made by a car whose queue position was taken concurrently
    SUBMIT_MAX_RETRIES: int = _get_int("SUBMIT_MAX_RETRIES", 3)

    # Compact positions when a car leaves the queue on its own
    RENUMBER_ON_WITHDRAW: bool = _get_bool("RENUMBER_ON_WITHDRAW", True)

    # Used for the "average wait" shown next to a station
    MINUTES_PER_CAR: int = _get_int("MINUTES_PER_CAR", 5)

    # Day boundaries for the daily station counters
    STATION_TIMEZONE: str = _get_value("STATION_TIMEZONE", "UTC")

    # ========================================================================
    # MQTT Configuration
    # ========================================================================

    BROADCAST_TYPE: str = _get_value("BROADCAST_TYPE", "mqtt")
    MQTT_BROKER: str = _get_value("MQTT_BROKER", "localhost")
    MQTT_PORT: int = _get_int("MQTT_PORT", 1883)
    MQTT_TOPIC: str = _get_value("MQTT_TOPIC", "fuel_queue/events")
    STATION_TOPIC_PREFIX: str = _get_value("STATION_TOPIC_PREFIX", "fuel_queue/stations")
