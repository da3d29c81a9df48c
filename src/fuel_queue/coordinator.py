"""Queue coordinator: the fuel queue state machine.

Entries move ``pending -> serving -> completed`` or ``pending|serving ->
cancelled``; a car may also withdraw (hard delete) an entry at any time.
Whenever an entry leaves the pending set the station's remaining pending
entries are compacted back to positions ``1..N``.

All shared state lives in the record store. The coordinator itself only
holds its collaborators, so any number of dashboard and tracker sessions
can run their own instance against the same database.
"""

import logging
import math
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from typing import Any

import pydantic

from .config import Config
from .errors import (
    InvalidAmount,
    InvalidTransition,
    NotFound,
    PositionConflict,
    StoreFailure,
    ValidationError,
)
from .events import ChangeAction, ChangeEvent, EventBus
from .mqtt import MQTTBroadcaster, NoOpBroadcaster
from .schemas import (
    ACTIVE_STATUSES,
    CarQueueView,
    DailyStats,
    FuelType,
    QueueAction,
    QueueEntryRecord,
    QueueRequest,
    QueueStatus,
    StationHistory,
    StationQueueSnapshot,
)
from .settings import SettingsHolder
from .store import QueueStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


# action -> (statuses the action applies to, resulting status)
TRANSITIONS: dict[QueueAction, tuple[tuple[QueueStatus, ...], QueueStatus]] = {
    QueueAction.start: ((QueueStatus.pending,), QueueStatus.serving),
    QueueAction.complete: ((QueueStatus.serving,), QueueStatus.completed),
    QueueAction.skip: (ACTIVE_STATUSES, QueueStatus.cancelled),
    QueueAction.cancel: (ACTIVE_STATUSES, QueueStatus.cancelled),
}


class QueueCoordinator:
    """Business logic for station queues.

    Example:
        coordinator = QueueCoordinator(QueueStore(session_factory))

        entry = coordinator.submit_request("car-1", "station-1", "Diesel", 20.0)
        coordinator.advance(entry.id, "start")
        coordinator.advance(entry.id, "complete", served_amount=18.5)
        coordinator.daily_stats("station-1")
    """

    def __init__(
        self,
        store: QueueStore,
        broadcaster: MQTTBroadcaster | NoOpBroadcaster | None = None,
        event_bus: EventBus | None = None,
        settings: SettingsHolder | None = None,
        clock: Clock | None = None,
    ):
        """Initialize coordinator.

        Args:
            store: Record store holding the queue table
            broadcaster: Publisher for change events (no-op when omitted)
            event_bus: Local bus for in-process subscribers
            settings: Shared observable settings
            clock: Returns the current time in epoch milliseconds
        """
        self.store: QueueStore = store
        self.broadcaster: MQTTBroadcaster | NoOpBroadcaster = (
            broadcaster if broadcaster is not None else NoOpBroadcaster()
        )
        self.event_bus: EventBus = event_bus if event_bus is not None else EventBus()
        self.settings: SettingsHolder = settings if settings is not None else SettingsHolder()
        self.clock: Clock = clock or now_ms

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def submit_request(
        self,
        car_user_id: str,
        station_user_id: str,
        fuel_type: FuelType | str,
        requested_amount: float,
    ) -> QueueEntryRecord:
        """Put a car at the back of a station's queue.

        The new entry is pending with position ``pending count + 1``. When a
        concurrent request takes that position first, the station's pending
        set is compacted and the insert retried.

        Raises:
            InvalidAmount: requested_amount is not a positive number
            ValidationError: missing ids or unknown fuel type
            StoreFailure: store error, or no free position after all retries
        """
        request = self._validate_request(car_user_id, station_user_id, fuel_type, requested_amount)
        max_retries = self.settings.current.submit_max_retries

        attempt = 0
        while True:
            try:
                entry = self.store.insert_pending(request, created_at=self.clock())
            except PositionConflict as e:
                attempt += 1
                if attempt > max_retries:
                    raise StoreFailure(
                        f"Could not reserve a queue position at station "
                        f"{station_user_id} after {attempt} attempts"
                    ) from e
                logger.warning(f"{e.message}; compacting queue and retrying ({attempt}/{max_retries})")
                _ = self.renumber_pending(station_user_id)
                continue
            break

        logger.info(
            f"Car {entry.car_user_id} joined station {entry.station_user_id} "
            f"at position {entry.queue_position} (entry {entry.id})"
        )
        self._emit(ChangeAction.created, entry)
        return entry

    def advance(
        self,
        entry_id: int,
        action: QueueAction | str,
        served_amount: float | None = None,
    ) -> QueueEntryRecord:
        """Apply a station-side action to an entry.

        Args:
            entry_id: Queue entry id
            action: start, complete, skip or cancel
            served_amount: Litres served, required for complete

        Returns:
            The updated entry

        Raises:
            ValidationError: unknown action
            InvalidAmount: complete without a positive served_amount
            NotFound: no entry with this id
            InvalidTransition: action does not apply to the entry's status
            StoreFailure: store error
        """
        try:
            action = QueueAction(action)
        except ValueError as e:
            raise ValidationError(f"Unknown queue action: {action!r}") from e

        amount = self._validate_served_amount(served_amount) if action is QueueAction.complete else None

        entry = self.get_entry(entry_id)
        if entry.status.is_terminal:
            raise InvalidTransition(
                f"Cannot {action.value} entry {entry_id}: it is already {entry.status.value}"
            )
        from_statuses, to_status = TRANSITIONS[action]
        if entry.status not in from_statuses:
            raise InvalidTransition(
                f"Cannot {action.value} entry {entry_id}: status is {entry.status.value}"
            )

        updated, moved = self.store.transition(
            entry_id,
            (entry.status,),
            self._transition_values(entry, to_status, amount),
            renumber=True,
        )
        if updated is None:
            # Lost the race against another station session
            current = self.store.get_entry(entry_id)
            if current is None:
                raise NotFound(f"Queue entry {entry_id} not found")
            raise InvalidTransition(
                f"Cannot {action.value} entry {entry_id}: status changed to {current.status.value}"
            )

        logger.info(
            f"Entry {entry_id} at station {updated.station_user_id}: "
            f"{entry.status.value} -> {updated.status.value} ({action.value})"
        )
        self._announce_renumber(updated.station_user_id, moved)
        self._emit(ChangeAction.updated, updated)
        return updated

    def renumber_pending(self, station_user_id: str) -> int:
        """Compact a station's pending positions to 1..N, keeping their order.

        Returns:
            Number of pending entries at the station
        """
        pending, moved = self.store.renumber_pending(station_user_id)
        self._announce_renumber(station_user_id, moved)
        return pending

    def withdraw(self, entry_id: int) -> None:
        """Car leaves the queue: the entry is deleted, whatever its status.

        A pending entry's station is compacted in the same transaction only
        when the ``renumber_on_withdraw`` setting is on. With it off the
        stored positions keep a gap, while compute_cars_ahead and
        compute_rank stay exact.

        Raises:
            NotFound: no entry with this id
            StoreFailure: store error
        """
        deleted, moved = self.store.delete_entry(
            entry_id, renumber=self.settings.current.renumber_on_withdraw
        )
        if deleted is None:
            raise NotFound(f"Queue entry {entry_id} not found")

        logger.info(
            f"Car {deleted.car_user_id} withdrew entry {entry_id} "
            f"({deleted.status.value}) from station {deleted.station_user_id}"
        )
        self._announce_renumber(deleted.station_user_id, moved)
        self._emit(ChangeAction.deleted, deleted)

    # -------------------------------------------------------------------------
    # Derived reads
    # -------------------------------------------------------------------------

    def get_entry(self, entry_id: int) -> QueueEntryRecord:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise NotFound(f"Queue entry {entry_id} not found")
        return entry

    def compute_cars_ahead(self, entry: QueueEntryRecord) -> int:
        """Pending entries at the same station with a lower position.

        Serving and finished entries report 0.
        """
        if entry.status is not QueueStatus.pending:
            return 0
        return self.store.count_pending_before(entry.station_user_id, entry.queue_position)

    def compute_rank(self, entry: QueueEntryRecord) -> int | None:
        """Place in line computed from the live pending set, None if not pending."""
        if entry.status is not QueueStatus.pending:
            return None
        return self.compute_cars_ahead(entry) + 1

    def estimated_wait_minutes(self, cars: int) -> int:
        return cars * self.settings.current.minutes_per_car

    def list_active_for_station(self, station_user_id: str) -> list[QueueEntryRecord]:
        """Serving entries (oldest start first) followed by pending by position."""
        entries = self.store.list_for_station(station_user_id, ACTIVE_STATUSES)
        serving = sorted(
            (e for e in entries if e.status is QueueStatus.serving),
            key=lambda e: (e.started_at or 0, e.id),
        )
        pending = [e for e in entries if e.status is QueueStatus.pending]
        return serving + pending

    def list_active_for_car(self, car_user_id: str) -> list[CarQueueView]:
        """A car's pending and serving entries, newest first, with cars ahead."""
        views: list[CarQueueView] = []
        for entry in self.store.list_for_car(car_user_id, ACTIVE_STATUSES):
            cars_ahead = self.compute_cars_ahead(entry)
            views.append(
                CarQueueView(
                    entry=entry,
                    cars_ahead=cars_ahead,
                    rank=cars_ahead + 1 if entry.status is QueueStatus.pending else None,
                    estimated_wait_minutes=self.estimated_wait_minutes(cars_ahead),
                )
            )
        return views

    def list_recent_completed(
        self, station_user_id: str, limit: int = 10
    ) -> list[QueueEntryRecord]:
        return self.store.list_completed(station_user_id, limit=limit)

    def station_history(self, station_user_id: str) -> StationHistory:
        entries = self.store.list_completed(station_user_id)
        return StationHistory(
            station_user_id=station_user_id,
            entries=entries,
            total_fuel=round(sum(e.served_amount or 0.0 for e in entries), 2),
            cars_served=len(entries),
        )

    def daily_stats(self, station_user_id: str, day: date | None = None) -> DailyStats:
        """Station counters for one day in the configured station timezone.

        Completed entries count towards the day their completed_at falls in,
        with the window running from local midnight to the next midnight.
        """
        tz = self.settings.current.tzinfo
        if day is None:
            day = datetime.fromtimestamp(self.clock() / 1000, tz).date()

        start = datetime.combine(day, dt_time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), dt_time.min, tzinfo=tz)
        completed, fuel_sold = self.store.completed_totals(
            station_user_id,
            since=int(start.timestamp() * 1000),
            until=int(end.timestamp() * 1000),
        )

        return DailyStats(
            station_user_id=station_user_id,
            day=day,
            pending_count=self.store.count(station_user_id, QueueStatus.pending),
            serving_count=self.store.count(station_user_id, QueueStatus.serving),
            completed_today_count=completed,
            fuel_sold_today=round(fuel_sold, 2),
        )

    def station_snapshot(self, station_user_id: str) -> StationQueueSnapshot:
        pending = self.store.count(station_user_id, QueueStatus.pending)
        serving = self.store.count(station_user_id, QueueStatus.serving)
        return StationQueueSnapshot(
            station_user_id=station_user_id,
            pending_count=pending,
            serving_count=serving,
            active_count=pending + serving,
            estimated_wait_minutes=self.estimated_wait_minutes(pending + serving),
            timestamp=self.clock(),
        )

    def active_queue_sizes(self) -> dict[str, int]:
        """Pending plus serving entries per station."""
        return self.store.active_counts()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_request(
        car_user_id: str,
        station_user_id: str,
        fuel_type: FuelType | str,
        requested_amount: float,
    ) -> QueueRequest:
        try:
            return QueueRequest(
                car_user_id=car_user_id,
                station_user_id=station_user_id,
                fuel_type=fuel_type,
                requested_amount=requested_amount,
            )
        except pydantic.ValidationError as e:
            fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if "requested_amount" in fields:
                raise InvalidAmount(
                    f"Requested amount must be a positive number of litres, got {requested_amount!r}"
                ) from e
            raise ValidationError(f"Invalid queue request for fields: {', '.join(sorted(fields))}") from e

    @staticmethod
    def _validate_served_amount(served_amount: Any) -> float:
        if served_amount is None:
            raise InvalidAmount("Served amount is required to complete an entry")
        if isinstance(served_amount, bool):
            raise InvalidAmount(f"Served amount is not a number: {served_amount!r}")
        try:
            value = float(served_amount)
        except (TypeError, ValueError) as e:
            raise InvalidAmount(f"Served amount is not a number: {served_amount!r}") from e
        if not math.isfinite(value) or value <= 0:
            raise InvalidAmount(f"Served amount must be positive, got {served_amount!r}")
        return value

    def _transition_values(
        self, entry: QueueEntryRecord, to_status: QueueStatus, served_amount: float | None
    ) -> dict[str, Any]:
        now = self.clock()
        values: dict[str, Any] = {"status": to_status.value}
        if to_status is QueueStatus.serving:
            values["started_at"] = max(now, entry.created_at)
        elif to_status is QueueStatus.completed:
            values["served_amount"] = served_amount
            values["completed_at"] = max(now, entry.started_at or entry.created_at)
        return values

    def _announce_renumber(self, station_user_id: str, moved: int) -> None:
        if moved:
            logger.info(f"Renumbered {moved} pending entries at station {station_user_id}")
            self._emit(ChangeAction.renumbered, station_user_id=station_user_id)

    def _emit(
        self,
        action: ChangeAction,
        entry: QueueEntryRecord | None = None,
        *,
        station_user_id: str | None = None,
    ) -> None:
        """Notify local subscribers and the broker about a committed change."""
        station = entry.station_user_id if entry is not None else station_user_id
        event = ChangeEvent(
            action=action,
            entry_id=entry.id if entry is not None else None,
            station_user_id=station,
            car_user_id=entry.car_user_id if entry is not None else None,
            status=entry.status.value if entry is not None else None,
            timestamp=self.clock(),
        )
        _ = self.event_bus.publish(event)

        if not self.broadcaster.publish_event(
            topic=f"{Config.MQTT_TOPIC}/{station}", payload=event.model_dump_json()
        ):
            logger.debug(f"Change event for station {station} not broadcast")

        if station is not None and isinstance(self.broadcaster, MQTTBroadcaster):
            self._publish_snapshot(station)

    def _publish_snapshot(self, station_user_id: str) -> None:
        try:
            snapshot = self.station_snapshot(station_user_id)
        except StoreFailure as e:
            logger.warning(f"Skipping queue snapshot for station {station_user_id}: {e.message}")
            return
        _ = self.broadcaster.publish_retained(
            f"{Config.STATION_TOPIC_PREFIX}/{station_user_id}/queue",
            snapshot.model_dump_json(),
        )
