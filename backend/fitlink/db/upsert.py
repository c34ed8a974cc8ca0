"""Dialect-aware INSERT .. ON CONFLICT DO UPDATE (PostgreSQL in deployment, SQLite locally)."""

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession, model: Any):
    """Return a dialect-specific insert() construct that supports on_conflict_do_update."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def upsert_rows(
    session: AsyncSession,
    model: Any,
    rows: list[dict[str, Any]],
    conflict_keys: list[str],
) -> int:
    """
    Upsert rows on conflict_keys, overwriting every other provided column with the incoming value.
    Repeated deliveries converge to the latest values. Returns the number of distinct rows written.
    """
    if not rows:
        return 0
    # PostgreSQL refuses to touch the same row twice in one statement; last delivery wins.
    deduped = {tuple(r[k] for k in conflict_keys): r for r in rows}
    rows = list(deduped.values())
    stmt = insert_for(session, model).values(rows)
    update_cols = [c for c in rows[0].keys() if c not in conflict_keys]
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_keys,
        set_={c: stmt.excluded[c] for c in update_cols},
    )
    await session.execute(stmt)
    return len(rows)
