"""Fuel queue entry model."""

from typing_extensions import override

from sqlalchemy import BigInteger, Float, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueueEntry(Base):
    """One car's request for fuel at one station.

    This model is shared between:
    - station dashboard: starts, completes, skips and cancels entries
    - car tracker: creates entries and withdraws its own

    queue_position is meaningful only while status is "pending". The partial
    unique index stops two pending entries of one station from holding the
    same position; serving and finished rows keep their last position.

    Timestamps are epoch milliseconds.
    """

    __tablename__ = "fuel_queue"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        Index(
            "ux_fuel_queue_pending_position",
            "station_user_id",
            "queue_position",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    car_user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    station_user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    fuel_type: Mapped[str] = mapped_column(String, nullable=False)
    requested_amount: Mapped[float] = mapped_column(Float, nullable=False)
    served_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    queue_position: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    started_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    @override
    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id}, station_user_id={self.station_user_id}, "
            f"status={self.status}, queue_position={self.queue_position})>"
        )
