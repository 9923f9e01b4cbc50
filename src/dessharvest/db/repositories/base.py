"""Base repository class."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from dessharvest.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)

# Keeps multi-row statements under SQLite's bound parameter limit
UPSERT_CHUNK_SIZE = 200


class BaseRepository(Generic[ModelT]):
    """Base repository with common CRUD operations."""

    model: type[ModelT]

    def __init__(self, session: Session) -> None:
        """Initialize repository with a session.

        Args:
            session: SQLAlchemy session.
        """
        self.session = session

    @property
    def dialect(self) -> str:
        """Name of the database dialect bound to the session."""
        return self.session.bind.dialect.name if self.session.bind else "sqlite"

    def get_all(self) -> list[ModelT]:
        """Get all records.

        Returns:
            List of all model instances.
        """
        stmt = select(self.model)
        return list(self.session.scalars(stmt).all())

    def upsert_rows(
        self,
        rows: list[dict[str, Any]],
        index_elements: list[str],
        constraint: str | None,
        update_columns: list[str],
    ) -> int:
        """Insert rows, overwriting update_columns when the unique key exists.

        Args:
            rows: Column values for each row.
            index_elements: Columns forming the unique key.
            constraint: Unique constraint name (PostgreSQL), or None for the primary key.
            update_columns: Columns overwritten on conflict.

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0

        # A single statement may not touch the same key twice; last value wins
        unique: dict[tuple, dict[str, Any]] = {}
        for row in rows:
            unique[tuple(row.get(col) for col in index_elements)] = row
        rows = list(unique.values())

        dialect = self.dialect

        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            chunk = rows[start : start + UPSERT_CHUNK_SIZE]

            if dialect == "postgresql":
                stmt = pg_insert(self.model).values(chunk)
                set_ = {col: stmt.excluded[col] for col in update_columns}
                if constraint:
                    stmt = stmt.on_conflict_do_update(constraint=constraint, set_=set_)
                else:
                    stmt = stmt.on_conflict_do_update(
                        index_elements=index_elements, set_=set_
                    )
            elif dialect in ("mysql", "mariadb"):
                stmt = mysql_insert(self.model).values(chunk)
                stmt = stmt.on_duplicate_key_update(
                    {col: stmt.inserted[col] for col in update_columns}
                )
            else:
                stmt = sqlite_insert(self.model).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=index_elements,
                    set_={col: stmt.excluded[col] for col in update_columns},
                )

            self.session.execute(stmt)

        self.session.flush()
        return len(rows)
