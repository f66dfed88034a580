"""Conflict-aware inserts keyed on a table's natural-key constraint."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def insert_if_absent(
    session: AsyncSession,
    table: Table,
    values: dict[str, Any],
    index_elements: Sequence[str],
) -> int | None:
    """Insert ``values`` unless a row with the same natural key exists.

    Returns the new row's ``pk_id``, or ``None`` when the key was already
    taken (including by a concurrent transaction that committed first).
    """
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on {dialect!r}") from None

    stmt = (
        insert(table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(index_elements))
        .returning(table.c.pk_id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
