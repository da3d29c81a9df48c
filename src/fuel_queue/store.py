"""SQLAlchemy record store for the fuel queue table.

This module is the only place that talks to the database. It handles:
- Mapping between the QueueEntry table row and QueueEntryRecord (Pydantic)
- Counting and inserting new pending entries in one transaction
- Status changes guarded by optimistic locking on the previous status
- Transactional renumbering of a station's pending positions
- Translating SQLAlchemy failures into StoreFailure
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .entry_translator import db_entry_to_record, queue_request_to_db_entry
from .errors import PositionConflict, StoreFailure
from .models import Base, QueueEntry
from .schemas import ACTIVE_STATUSES, QueueEntryRecord, QueueRequest, QueueStatus

logger = logging.getLogger(__name__)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create engine, make sure tables exist and return a session factory.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        sessionmaker bound to the new engine
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    try:
        engine = create_engine(url)
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StoreFailure(f"Cannot open record store {url!r}: {e}") from e
    return sessionmaker(bind=engine)


def _status_values(statuses: Sequence[QueueStatus]) -> list[str]:
    return [QueueStatus(s).value for s in statuses]


class QueueStore:
    """SQLAlchemy implementation of the queue record store.

    Each method opens its own short session; nothing is cached between
    calls, so several dashboards and trackers can share one database.

    Example:
        session_factory = create_session_factory("sqlite:///fuel_queue.db")
        store = QueueStore(session_factory)

        entry = store.insert_pending(
            QueueRequest(car_user_id="car-1", station_user_id="st-1", requested_amount=20),
            created_at=int(time.time() * 1000),
        )
        store.count("st-1", QueueStatus.pending)
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        """Initialize store with session factory.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
        """
        self.session_factory: sessionmaker[Session] = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Record store failure: {e}")
            raise StoreFailure(f"Record store failure: {e}") from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert_pending(self, request: QueueRequest, created_at: int) -> QueueEntryRecord:
        """Append a pending entry at the back of the station's queue.

        The new position is the pending count plus one, or one past the last
        pending position if an earlier withdrawal left a gap. Reading it and
        the insert run in one transaction. If another request took the same
        position first, the partial unique index rejects the row and
        PositionConflict is raised.

        Args:
            request: Validated car request
            created_at: Creation time in milliseconds

        Returns:
            The stored entry with its generated id

        Raises:
            PositionConflict: The computed position is already taken
            StoreFailure: Any other database failure
        """
        with self._session() as session:
            pending, last_position = session.execute(
                select(func.count(), func.max(QueueEntry.queue_position)).where(
                    QueueEntry.station_user_id == request.station_user_id,
                    QueueEntry.status == QueueStatus.pending.value,
                )
            ).one()
            # Equals pending + 1 whenever positions are compact
            position = max(pending, last_position or 0) + 1

            db_entry = queue_request_to_db_entry(
                request, queue_position=position, created_at=created_at
            )
            session.add(db_entry)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise PositionConflict(
                    f"Queue position {position} at station "
                    f"{request.station_user_id} is already taken"
                ) from e

            session.refresh(db_entry)
            return db_entry_to_record(db_entry)

    def transition(
        self,
        entry_id: int,
        from_statuses: Sequence[QueueStatus],
        values: dict[str, Any],
        *,
        renumber: bool = False,
    ) -> tuple[QueueEntryRecord | None, int]:
        """Atomically update an entry that is still in one of from_statuses.

        The UPDATE ... WHERE status IN (...) acts as an optimistic lock: when
        two stations act on the same entry only the first one matches.

        With renumber set, the station's pending positions are compacted in
        the same transaction, so a failure leaves both the status and the
        numbering as they were.

        Args:
            entry_id: Queue entry id
            from_statuses: Statuses the entry must still be in
            values: Column values to write
            renumber: Compact the entry's station before committing

        Returns:
            (updated entry or None if the entry is gone or its status moved
            on, number of pending entries that moved)
        """
        with self._session() as session:
            stmt = (
                update(QueueEntry)
                .where(
                    QueueEntry.id == entry_id,
                    QueueEntry.status.in_(_status_values(from_statuses)),
                )
                .values(**values)
                .returning(QueueEntry)
            )
            db_entry: QueueEntry | None = session.execute(stmt).scalar_one_or_none()
            if db_entry is None:
                session.rollback()
                return None, 0

            record = db_entry_to_record(db_entry)
            moved = 0
            if renumber:
                _, moved = self._compact(session, record.station_user_id)
            session.commit()
            return record, moved

    def delete_entry(self, entry_id: int, *, renumber: bool = False) -> tuple[QueueEntryRecord | None, int]:
        """Delete an entry outright.

        With renumber set and the entry pending, the station's remaining
        pending positions are compacted in the same transaction.

        Returns:
            (deleted entry or None if it did not exist, number of pending
            entries that moved)
        """
        with self._session() as session:
            db_entry = session.get(QueueEntry, entry_id)
            if db_entry is None:
                return None, 0

            record = db_entry_to_record(db_entry)
            session.delete(db_entry)
            moved = 0
            if renumber and record.status is QueueStatus.pending:
                session.flush()
                _, moved = self._compact(session, record.station_user_id)
            session.commit()
            return record, moved

    def renumber_pending(self, station_user_id: str) -> tuple[int, int]:
        """Compact a station's pending positions to 1..N in one transaction.

        Returns:
            (number of pending entries, number of entries that moved)
        """
        with self._session() as session:
            result = self._compact(session, station_user_id)
            session.commit()
            return result

    @staticmethod
    def _compact(session: Session, station_user_id: str) -> tuple[int, int]:
        # Keeps relative order (position, created_at, id). Updates go front
        # to back so every target position is already free when written.
        rows = session.execute(
            select(QueueEntry.id, QueueEntry.queue_position)
            .where(
                QueueEntry.station_user_id == station_user_id,
                QueueEntry.status == QueueStatus.pending.value,
            )
            .order_by(QueueEntry.queue_position, QueueEntry.created_at, QueueEntry.id)
        ).all()

        moved = 0
        for position, (entry_id, current) in enumerate(rows, start=1):
            if current == position:
                continue
            _ = session.execute(
                update(QueueEntry).where(QueueEntry.id == entry_id).values(queue_position=position)
            )
            moved += 1
        return len(rows), moved

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_entry(self, entry_id: int) -> QueueEntryRecord | None:
        """Get entry by id.

        Returns:
            Pydantic QueueEntryRecord if found, None otherwise
        """
        with self._session() as session:
            db_entry = session.get(QueueEntry, entry_id)
            if db_entry:
                return db_entry_to_record(db_entry)
            return None

    def count(self, station_user_id: str, status: QueueStatus) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count())
                .select_from(QueueEntry)
                .where(
                    QueueEntry.station_user_id == station_user_id,
                    QueueEntry.status == QueueStatus(status).value,
                )
            ).scalar_one()

    def count_pending_before(self, station_user_id: str, queue_position: int) -> int:
        """Count pending entries of a station with a strictly lower position."""
        with self._session() as session:
            return session.execute(
                select(func.count())
                .select_from(QueueEntry)
                .where(
                    QueueEntry.station_user_id == station_user_id,
                    QueueEntry.status == QueueStatus.pending.value,
                    QueueEntry.queue_position < queue_position,
                )
            ).scalar_one()

    def list_for_station(
        self, station_user_id: str, statuses: Sequence[QueueStatus] = ACTIVE_STATUSES
    ) -> list[QueueEntryRecord]:
        """Entries of a station in the given statuses, ordered by position."""
        with self._session() as session:
            stmt = (
                select(QueueEntry)
                .where(
                    QueueEntry.station_user_id == station_user_id,
                    QueueEntry.status.in_(_status_values(statuses)),
                )
                .order_by(QueueEntry.queue_position, QueueEntry.created_at, QueueEntry.id)
            )
            return [db_entry_to_record(e) for e in session.execute(stmt).scalars()]

    def list_for_car(
        self, car_user_id: str, statuses: Sequence[QueueStatus] = ACTIVE_STATUSES
    ) -> list[QueueEntryRecord]:
        """Entries of a car in the given statuses, newest first."""
        with self._session() as session:
            stmt = (
                select(QueueEntry)
                .where(
                    QueueEntry.car_user_id == car_user_id,
                    QueueEntry.status.in_(_status_values(statuses)),
                )
                .order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
            )
            return [db_entry_to_record(e) for e in session.execute(stmt).scalars()]

    def list_completed(
        self,
        station_user_id: str,
        *,
        since: int | None = None,
        until: int | None = None,
        limit: int | None = None,
    ) -> list[QueueEntryRecord]:
        """Completed entries of a station, most recently completed first.

        Args:
            station_user_id: Station account id
            since: Inclusive lower bound on completed_at (ms)
            until: Exclusive upper bound on completed_at (ms)
            limit: Maximum number of rows
        """
        with self._session() as session:
            stmt = select(QueueEntry).where(
                QueueEntry.station_user_id == station_user_id,
                QueueEntry.status == QueueStatus.completed.value,
            )
            if since is not None:
                stmt = stmt.where(QueueEntry.completed_at >= since)
            if until is not None:
                stmt = stmt.where(QueueEntry.completed_at < until)
            stmt = stmt.order_by(QueueEntry.completed_at.desc(), QueueEntry.id.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            return [db_entry_to_record(e) for e in session.execute(stmt).scalars()]

    def completed_totals(
        self, station_user_id: str, *, since: int | None = None, until: int | None = None
    ) -> tuple[int, float]:
        """Count and summed served litres of completed entries in a window."""
        with self._session() as session:
            stmt = select(
                func.count(), func.coalesce(func.sum(QueueEntry.served_amount), 0.0)
            ).where(
                QueueEntry.station_user_id == station_user_id,
                QueueEntry.status == QueueStatus.completed.value,
            )
            if since is not None:
                stmt = stmt.where(QueueEntry.completed_at >= since)
            if until is not None:
                stmt = stmt.where(QueueEntry.completed_at < until)
            count, total = session.execute(stmt).one()
            return int(count), float(total)

    def active_counts(self) -> dict[str, int]:
        """Number of pending and serving entries per station."""
        with self._session() as session:
            stmt = (
                select(QueueEntry.station_user_id, func.count())
                .where(QueueEntry.status.in_(_status_values(ACTIVE_STATUSES)))
                .group_by(QueueEntry.station_user_id)
            )
            return {station: count for station, count in session.execute(stmt).all()}


__all__ = [
    "QueueEntry",
    "QueueStore",
    "create_session_factory",
]
