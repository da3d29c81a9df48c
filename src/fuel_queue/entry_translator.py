"""Conversion between the QueueEntry table row and QueueEntryRecord."""

from .models import QueueEntry
from .schemas import FuelType, QueueEntryRecord, QueueRequest, QueueStatus


def db_entry_to_record(db_entry: QueueEntry) -> QueueEntryRecord:
    """Convert SQLAlchemy QueueEntry to Pydantic QueueEntryRecord.

    Returns:
        Pydantic QueueEntryRecord with all stored fields
    """
    return QueueEntryRecord(
        id=db_entry.id,
        car_user_id=db_entry.car_user_id,
        station_user_id=db_entry.station_user_id,
        fuel_type=FuelType(db_entry.fuel_type),
        requested_amount=db_entry.requested_amount,
        served_amount=db_entry.served_amount,
        status=QueueStatus(db_entry.status),
        queue_position=db_entry.queue_position,
        created_at=db_entry.created_at,
        started_at=db_entry.started_at,
        completed_at=db_entry.completed_at,
    )


def queue_request_to_db_entry(
    request: QueueRequest,
    *,
    queue_position: int,
    created_at: int,
) -> QueueEntry:
    """Create a pending SQLAlchemy QueueEntry from a validated QueueRequest.

    Args:
        request: Validated car request
        queue_position: Position at the back of the station's pending set
        created_at: Creation time in milliseconds

    Returns:
        SQLAlchemy QueueEntry instance (not persisted)
    """
    return QueueEntry(
        car_user_id=request.car_user_id,
        station_user_id=request.station_user_id,
        fuel_type=request.fuel_type.value,
        requested_amount=request.requested_amount,
        status=QueueStatus.pending.value,
        queue_position=queue_position,
        created_at=created_at,
    )
