"""Column listing for the tables a collection query targets."""

from typing import Any

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession


async def columns_of(session: AsyncSession, table_name: str) -> set[str]:
    """Return the column names of *table_name* as the database reports them.

    Read-only; safe to call from concurrent requests. Returns an empty set when
    the table does not exist.
    """
    connection = await session.connection()

    def _list_columns(sync_connection) -> set[str]:
        inspector = inspect(sync_connection)
        if not inspector.has_table(table_name):
            return set()
        return {column["name"] for column in inspector.get_columns(table_name)}

    return await connection.run_sync(_list_columns)


def mapped_columns(model: Any) -> set[str]:
    """Return the column names declared on *model*'s table, without a round trip."""
    return {column.name for column in inspect(model).local_table.columns}
