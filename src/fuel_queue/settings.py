"""Runtime settings shared by reference between the coordinator and views.

``SettingsHolder`` owns an immutable ``QueueSettings`` snapshot. Updating it
validates the new values, swaps the snapshot and tells every subscriber,
so consumers never read a half-applied change.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import Config

logger = logging.getLogger(__name__)


class QueueSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    submit_max_retries: int = Field(3, ge=0)
    renumber_on_withdraw: bool = True
    minutes_per_car: int = Field(5, ge=0)
    station_timezone: str = "UTC"

    @field_validator("station_timezone")
    @classmethod
    def validate_station_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.station_timezone)

    @classmethod
    def from_config(cls) -> QueueSettings:
        """Build settings from environment-backed Config values."""
        return cls(
            submit_max_retries=Config.SUBMIT_MAX_RETRIES,
            renumber_on_withdraw=Config.RENUMBER_ON_WITHDRAW,
            minutes_per_car=Config.MINUTES_PER_CAR,
            station_timezone=Config.STATION_TIMEZONE,
        )


SettingsListener = Callable[[QueueSettings], None]


class SettingsHolder:
    """Observable container for QueueSettings."""

    def __init__(self, settings: QueueSettings | None = None) -> None:
        self._lock = threading.Lock()
        self._settings = settings if settings is not None else QueueSettings.from_config()
        self._listeners: list[SettingsListener] = []

    @property
    def current(self) -> QueueSettings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> QueueSettings:
        """Validate and apply changes, then notify listeners.

        A failing listener is logged and skipped; the others are still told.

        Raises:
            pydantic.ValidationError: If a changed value is invalid; the
                current settings are left untouched.
        """
        with self._lock:
            new = QueueSettings.model_validate({**self._settings.model_dump(), **changes})
            self._settings = new
            listeners = list(self._listeners)

        logger.info(f"Queue settings updated: {changes}")
        for listener in listeners:
            try:
                listener(new)
            except Exception:
                logger.exception(f"Settings listener {listener!r} failed")
        return new
