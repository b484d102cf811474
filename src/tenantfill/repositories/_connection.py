"""
Connection handling helper for SQLAlchemy-backed repositories.

Repositories accept either an ``AsyncEngine`` or an ``AsyncConnection``.
``execute_with_connection`` opens a connection (or transaction) for an
engine and passes an existing connection through unchanged.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for ``execute()`` calls.

    Args:
        conn: Database connection or engine
        transactional: Wrap in ``begin()`` when True, plain ``connect()``
            otherwise. Ignored for an existing connection, whose owner
            manages the transaction.

    Example:
        >>> async with execute_with_connection(self._conn, transactional=False) as conn:
        ...     result = await conn.execute(query, params)
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        yield conn
