"""Database connection helper."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from receipt_lira.config import get_database_url


async def get_connection() -> psycopg.AsyncConnection[dict[str, object]]:
    """Create and return a new async database connection."""
    return await psycopg.AsyncConnection.connect(get_database_url(), row_factory=dict_row)
