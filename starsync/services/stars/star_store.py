"""Idempotent persistence of repositories and star events."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import Date, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from starsync.crawlers.stars.contracts import StarEvent
from starsync.errors import PersistenceFailure
from starsync.models.repository import Repository
from starsync.models.star import Star

logger = logging.getLogger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def to_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class StarStore:
    """Upserts star facts and answers per-day range queries.

    Every public method runs in its own session and commits before returning,
    so rows written for one page stay visible even if a later page fails.
    """

    def __init__(self, session_factory: Callable[[], Any]) -> None:
        self._session_factory = session_factory

    def upsert_repository(self, owner: str, name: str) -> uuid.UUID:
        """Return the id for owner/name, creating the row on first sight."""

        def _write(db: Any) -> uuid.UUID:
            insert = self._conflict_insert(db)
            if insert is not None:
                statement = insert(Repository).values(id=uuid.uuid4(), owner=owner, name=name, created_at=datetime.utcnow())
                db.execute(statement.on_conflict_do_nothing(index_elements=["owner", "name"]))
            elif self._find_repository(db, owner, name) is None:
                db.add(Repository(id=uuid.uuid4(), owner=owner, name=name))
                db.flush()

            repository = self._find_repository(db, owner, name)
            if repository is None:
                raise PersistenceFailure(f"repository {owner}/{name} missing after upsert")
            return repository.id

        return self._in_session("upsert_repository", _write, commit=True)

    def get_repository(self, owner: str, name: str) -> Optional[Repository]:
        return self._in_session("get_repository", lambda db: self._find_repository(db, owner, name))

    def upsert_star_events(self, repository_id: uuid.UUID, events: Sequence[StarEvent]) -> int:
        """Insert events in one batch, ignoring stargazers already stored.

        Returns the number of distinct stargazers submitted.
        """

        rows_by_stargazer: dict[str, dict[str, Any]] = {}
        for event in events:
            if event.stargazer in rows_by_stargazer:
                continue
            rows_by_stargazer[event.stargazer] = {
                "id": uuid.uuid4(),
                "repository_id": repository_id,
                "stargazer": event.stargazer,
                "starred_at": to_naive_utc(event.starred_at),
                "observed_at": to_naive_utc(event.observed_at),
            }
        rows = list(rows_by_stargazer.values())
        if not rows:
            return 0

        def _write(db: Any) -> int:
            insert = self._conflict_insert(db)
            if insert is not None:
                statement = insert(Star).values(rows)
                db.execute(statement.on_conflict_do_nothing(index_elements=["repository_id", "stargazer"]))
                return len(rows)

            existing = set(
                db.execute(
                    select(Star.stargazer).where(
                        Star.repository_id == repository_id,
                        Star.stargazer.in_(list(rows_by_stargazer)),
                    )
                ).scalars()
            )
            for row in rows:
                if row["stargazer"] not in existing:
                    db.add(Star(**row))
            return len(rows)

        return self._in_session("upsert_star_events", _write, commit=True)

    def get_daily_counts(self, repository_id: uuid.UUID) -> list[tuple[date, int]]:
        """Number of stars per `starred_at` day, ascending by day."""

        day = func.date(Star.starred_at, type_=Date)

        def _read(db: Any) -> list[tuple[date, int]]:
            result = db.execute(
                select(day, func.count())
                .where(Star.repository_id == repository_id)
                .group_by(day)
                .order_by(day)
            )
            return [(_as_date(row[0]), int(row[1])) for row in result]

        return self._in_session("get_daily_counts", _read)

    def get_latest_event_date(self, repository_id: uuid.UUID) -> Optional[date]:
        def _read(db: Any) -> Optional[date]:
            latest = db.execute(
                select(func.max(Star.starred_at)).where(Star.repository_id == repository_id)
            ).scalar()
            return _as_date(latest) if latest is not None else None

        return self._in_session("get_latest_event_date", _read)

    @staticmethod
    def _find_repository(db: Any, owner: str, name: str) -> Optional[Repository]:
        return db.execute(
            select(Repository).where(Repository.owner == owner, Repository.name == name)
        ).scalar_one_or_none()

    @staticmethod
    def _conflict_insert(db: Any):
        return _CONFLICT_INSERTS.get(db.get_bind().dialect.name)

    def _in_session(self, operation: str, work: Callable[[Any], Any], *, commit: bool = False) -> Any:
        db = self._session_factory()
        try:
            result = work(db)
            if commit:
                db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Star store operation failed", extra={"operation": operation, "error": str(exc)})
            raise PersistenceFailure(f"{operation} failed: {exc}") from exc
        finally:
            db.close()


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()
