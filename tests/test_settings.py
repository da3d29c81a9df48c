"""Tests for QueueSettings and the observable SettingsHolder."""

from zoneinfo import ZoneInfo

import pydantic
import pytest

from fuel_queue import Config, QueueSettings, SettingsHolder


def test_defaults():
    settings = QueueSettings()

    assert settings.submit_max_retries == 3
    assert settings.renumber_on_withdraw is True
    assert settings.minutes_per_car == 5
    assert settings.tzinfo == ZoneInfo("UTC")


def test_from_config_mirrors_config():
    settings = QueueSettings.from_config()

    assert settings.submit_max_retries == Config.SUBMIT_MAX_RETRIES
    assert settings.renumber_on_withdraw == Config.RENUMBER_ON_WITHDRAW
    assert settings.station_timezone == Config.STATION_TIMEZONE


def test_settings_are_frozen():
    settings = QueueSettings()

    with pytest.raises(pydantic.ValidationError):
        settings.minutes_per_car = 10


@pytest.mark.parametrize(
    "changes",
    [
        {"submit_max_retries": -1},
        {"minutes_per_car": -5},
        {"station_timezone": "Mars/Olympus_Mons"},
    ],
)
def test_invalid_values_rejected(changes):
    with pytest.raises(pydantic.ValidationError):
        QueueSettings(**changes)


def test_update_swaps_snapshot_and_notifies():
    holder = SettingsHolder(QueueSettings())
    original = holder.current
    seen = []
    _ = holder.subscribe(seen.append)

    updated = holder.update(minutes_per_car=8, renumber_on_withdraw=False)

    assert holder.current is updated
    assert updated.minutes_per_car == 8
    assert updated.renumber_on_withdraw is False
    assert original.minutes_per_car == 5
    assert seen == [updated]


def test_invalid_update_keeps_current():
    holder = SettingsHolder(QueueSettings())
    seen = []
    _ = holder.subscribe(seen.append)

    with pytest.raises(pydantic.ValidationError):
        holder.update(station_timezone="Nowhere/Town")

    assert holder.current.station_timezone == "UTC"
    assert seen == []


def test_unsubscribe():
    holder = SettingsHolder(QueueSettings())
    seen = []
    unsubscribe = holder.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    _ = holder.update(minutes_per_car=2)

    assert seen == []


def test_shared_holder_visible_to_coordinator(coordinator, settings):
    """Test the coordinator reads the holder it was given on every call."""
    assert coordinator.settings is settings

    _ = settings.update(minutes_per_car=7)

    assert coordinator.estimated_wait_minutes(2) == 14


def test_failing_listener_does_not_block_others(caplog):
    holder = SettingsHolder(QueueSettings())
    seen = []

    def broken(settings):
        raise RuntimeError("view already closed")

    _ = holder.subscribe(broken)
    _ = holder.subscribe(seen.append)

    updated = holder.update(minutes_per_car=9)

    assert seen == [updated]
    assert holder.current.minutes_per_car == 9
    assert "Settings listener" in caplog.text
