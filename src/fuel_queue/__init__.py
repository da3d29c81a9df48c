"""Shared queue coordination for fuel station and car apps."""

# Public API - Pydantic models
from .schemas import (
    CarQueueView,
    DailyStats,
    FuelType,
    QueueAction,
    QueueEntryRecord,
    QueueStatus,
    StationHistory,
    StationQueueSnapshot,
)

# Public API - Service implementations
from .config import Config
from .coordinator import QueueCoordinator
from .errors import (
    InvalidAmount,
    InvalidTransition,
    NotFound,
    QueueError,
    StoreFailure,
    ValidationError,
)
from .events import ChangeAction, ChangeEvent, EventBus
from .settings import QueueSettings, SettingsHolder
from .store import QueueStore, create_session_factory

__all__ = [
    # Configuration
    "Config",
    "QueueSettings",
    "SettingsHolder",
    # Services
    "QueueCoordinator",
    "QueueStore",
    "create_session_factory",
    "EventBus",
    # Pydantic Models
    "CarQueueView",
    "ChangeAction",
    "ChangeEvent",
    "DailyStats",
    "FuelType",
    "QueueAction",
    "QueueEntryRecord",
    "QueueStatus",
    "StationHistory",
    "StationQueueSnapshot",
    # Errors
    "QueueError",
    "ValidationError",
    "InvalidAmount",
    "InvalidTransition",
    "NotFound",
    "StoreFailure",
]
