"""
Pydantic schemas for fuel queue records.
Shared between the station dashboard and the car tracker.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class QueueStatus(str, Enum):
    """Lifecycle of a queue entry."""

    pending = "pending"
    serving = "serving"
    completed = "completed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.completed, QueueStatus.cancelled)


ACTIVE_STATUSES: tuple[QueueStatus, ...] = (QueueStatus.pending, QueueStatus.serving)


class QueueAction(str, Enum):
    """Station-side actions on a queue entry."""

    start = "start"
    complete = "complete"
    skip = "skip"
    cancel = "cancel"


class FuelType(str, Enum):
    diesel = "Diesel"
    benzene = "Benzene"


class QueueRequest(BaseModel):
    """A car asking to join a station's queue."""

    car_user_id: str = Field(..., min_length=1, description="Account id of the car")
    station_user_id: str = Field(..., min_length=1, description="Account id of the station")
    fuel_type: FuelType = Field(FuelType.diesel, description="Requested fuel grade")
    requested_amount: float = Field(
        ..., gt=0, allow_inf_nan=False, strict=True, description="Requested litres"
    )


class QueueEntryRecord(BaseModel):
    """Stored queue entry as seen by consumers."""

    model_config = ConfigDict(frozen=True)

    id: int
    car_user_id: str
    station_user_id: str
    fuel_type: FuelType
    requested_amount: float
    served_amount: float | None = None
    status: QueueStatus
    queue_position: int
    created_at: int
    started_at: int | None = None
    completed_at: int | None = None


class CarQueueView(BaseModel):
    """One of a car's active entries with its live place in line."""

    entry: QueueEntryRecord
    cars_ahead: int = Field(..., ge=0)
    rank: int | None = Field(None, description="Freshly computed place among pending entries")
    estimated_wait_minutes: int = Field(..., ge=0)


class DailyStats(BaseModel):
    """Station counters for one calendar day."""

    station_user_id: str
    day: date
    pending_count: int
    serving_count: int
    completed_today_count: int
    fuel_sold_today: float


class StationHistory(BaseModel):
    """Completed entries of a station, newest first, with totals."""

    station_user_id: str
    entries: list[QueueEntryRecord] = Field(default_factory=list)
    total_fuel: float = 0.0
    cars_served: int = 0


class StationQueueSnapshot(BaseModel):
    """Live queue size of a station, shown on the car-side station map."""

    station_user_id: str
    pending_count: int
    serving_count: int
    active_count: int
    estimated_wait_minutes: int
    timestamp: int
