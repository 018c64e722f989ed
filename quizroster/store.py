"""Conflict-target upsert, the one primitive enrollment idempotency rests on.

``upsert_rows`` inserts a batch and resolves collisions on a uniqueness
constraint inside the database, so two concurrent callers racing on the same
key are serialized by the store rather than by application locks.

With ``on_conflict="none"`` the returned rows are exactly the newly inserted
ones: an empty list means every row already existed. With ``"merge"`` the
returned rows are every row written (inserted or updated).
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from sqlalchemy import ColumnElement, Table
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.errors import Internal
from quizroster.logger import get_logger

_logger = get_logger("store")

OnConflict = Literal["none", "merge"]

_DIALECT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind
    if bind is None:
        return ""
    return bind.dialect.name


async def upsert_rows(
    session: AsyncSession,
    table: Table,
    rows: Sequence[Mapping[str, Any]],
    *,
    conflict_columns: Sequence[str],
    on_conflict: OnConflict = "none",
    update_columns: Sequence[str] = (),
    index_where: Optional[ColumnElement[bool]] = None,
    returning: Sequence[str] = ("id",),
) -> List[Dict[str, Any]]:
    if not rows:
        return []

    dialect_name = _dialect_name(session)
    insert_factory = _DIALECT_INSERTS.get(dialect_name)
    if insert_factory is None:
        raise Internal(f"Conflict-target upsert is not supported on '{dialect_name}' databases")

    stmt = insert_factory(table).values([dict(row) for row in rows])
    if on_conflict == "merge":
        if not update_columns:
            raise ValueError("merge upserts need at least one update column")
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            index_where=index_where,
            set_={column: stmt.excluded[column] for column in update_columns},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(
            index_elements=list(conflict_columns),
            index_where=index_where,
        )
    stmt = stmt.returning(*(table.c[column] for column in returning))

    result = await session.execute(stmt)
    written = [dict(row) for row in result.mappings().all()]
    _logger.debug(
        "store.upsert",
        "Applied conflict-target upsert",
        table=table.name,
        on_conflict=on_conflict,
        requested=len(rows),
        written=len(written),
    )
    return written
