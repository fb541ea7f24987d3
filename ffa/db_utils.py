"""Database utility functions for cross-database compatibility."""

import logging
from typing import Any, Optional, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind
    return bind.dialect.name if bind is not None else "sqlite"


async def upsert(
    session: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
    update_where: Any = None,
) -> bool:
    """
    Dialect-aware INSERT ... ON CONFLICT DO UPDATE.

    The same statement shape works on PostgreSQL and SQLite, so the last
    consistent snapshot wins instead of whichever writer ran last.

    Args:
        session: AsyncSession instance
        model: SQLModel table class
        values: Column values to insert/update
        conflict_columns: Columns of the unique constraint
        update_columns: Columns to update on conflict (defaults to all non-conflict columns)
        update_where: Optional guard on the existing row; when false the row is left alone

    Returns:
        True if a row was inserted or updated

    Example:
        await upsert(
            session,
            PeriodTotalRecord,
            {"season": "2025/26", "manager": "MATT", "period": 30, "total": 54, ...},
            conflict_columns=["season", "manager", "period"],
            update_where=PeriodTotalRecord.__table__.c.finalized.is_(False),
        )
    """
    if update_columns is None:
        update_columns = [k for k in values.keys() if k not in conflict_columns]

    insert = pg_insert if _dialect_name(session) == "postgresql" else sqlite_insert
    stmt = insert(model).values(**values)

    if update_columns:
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
            where=update_where,
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    result = await session.execute(stmt)
    return bool(result.rowcount)


async def bulk_upsert(
    session: AsyncSession,
    model: type[T],
    values_list: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
    update_where: Any = None,
) -> int:
    """
    Upsert multiple records.

    Returns:
        Number of rows inserted or updated
    """
    count = 0
    for values in values_list:
        if await upsert(session, model, values, conflict_columns, update_columns, update_where):
            count += 1
    return count
