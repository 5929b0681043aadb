"""Row-oriented storage collaborator used by the importer.

Every write is committed on its own so that one rejected row never rolls
back rows written before it. Failures from SQLAlchemy are re-raised as
StorageUnavailableError; callers decide whether a failure is fatal.
"""

import logging
from datetime import date
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from creator_analytics.errors import StorageUnavailableError
from creator_analytics.models import Base

logger = logging.getLogger(__name__)


class RowStore:
    """CRUD over ORM models with upsert-on-conflict for bulk rows."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_key(self, model: type[Base], **key: Any) -> Any | None:
        """Return the first row of ``model`` matching every ``key`` column."""
        try:
            return self.session.execute(
                select(model).filter_by(**key).limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailableError(
                f"Lookup on {model.__tablename__} failed: {exc}"
            ) from exc

    def insert(self, row: Base) -> Base:
        """Persist a new row and return it with its generated id."""
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailableError(
                f"Insert into {row.__tablename__} failed: {exc}"
            ) from exc
        return row

    def update(self, row: Base, values: dict[str, Any]) -> Base:
        """Apply ``values`` to an existing row in place."""
        try:
            for column, value in values.items():
                setattr(row, column, value)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailableError(
                f"Update of {row.__tablename__} id={row.id} failed: {exc}"
            ) from exc
        return row

    def upsert_batch(
        self,
        model: type[Base],
        rows: list[dict[str, Any]],
        conflict_columns: tuple[str, ...],
    ) -> int:
        """Insert ``rows``; rows colliding on ``conflict_columns`` are updated.

        Returns:
            Number of rows sent to the database.
        """
        if not rows:
            return 0

        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(model).values(rows)
        elif dialect == "sqlite":
            stmt = sqlite.insert(model).values(rows)
        else:
            raise StorageUnavailableError(
                f"Upsert is not supported on the '{dialect}' dialect."
            )

        update_columns = {
            column: stmt.excluded[column]
            for column in rows[0]
            if column not in conflict_columns
        }
        if "updated_at" in model.__table__.c:
            update_columns["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_=update_columns,
        )

        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailableError(
                f"Batch upsert into {model.__tablename__} failed: {exc}"
            ) from exc
        logger.debug("Upserted %d rows into %s", len(rows), model.__tablename__)
        return len(rows)

    def select_range(
        self,
        model: type[Base],
        order_by: str,
        since: date | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[Any]:
        """Return rows matching ``filters``, ordered by ``order_by``.

        Args:
            since: Keep only rows whose ``order_by`` column is on or after it.
        """
        column = getattr(model, order_by)
        stmt = select(model).filter_by(**filters)
        if since is not None:
            stmt = stmt.where(column >= since)
        stmt = stmt.order_by(column.desc() if descending else column, model.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return list(self.session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailableError(
                f"Query on {model.__tablename__} failed: {exc}"
            ) from exc


def chunked(rows: list[dict[str, Any]], size: int) -> Iterable[list[dict[str, Any]]]:
    """Yield consecutive slices of ``rows`` no longer than ``size``."""
    for start in range(0, len(rows), size):
        yield rows[start : start + size]
