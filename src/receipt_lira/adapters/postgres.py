"""PostgreSQL bill source: one table per bill collection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from psycopg import sql

from receipt_lira.adapters.base import BILL_COLLECTIONS
from receipt_lira.db import get_connection

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    import psycopg

logger = logging.getLogger(__name__)


class PostgresBillSource:
    """Query bill rows from the per-type tables.

    Tables share the columns id, user_id, type, usage, cost, due_date,
    merchant, description, items and image_url.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[psycopg.AsyncConnection[Any]]] = get_connection,
    ) -> None:
        self._connect = connect

    async def query_bills(
        self,
        collection: str,
        user_id: str,
        *,
        due_from: datetime,
        due_until: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows for a user with due_date in [due_from, due_until]."""
        if collection not in BILL_COLLECTIONS:
            msg = f"Unknown bill collection: {collection}"
            raise ValueError(msg)

        query, params = self._build_query(collection, user_id, due_from, due_until)
        async with await self._connect() as conn, conn.cursor() as cur:
            await cur.execute(query, params)
            rows = await cur.fetchall()
        logger.debug("Fetched %d rows from %s", len(rows), collection)
        return [dict(row) for row in rows]

    @staticmethod
    def _build_query(
        collection: str,
        user_id: str,
        due_from: datetime,
        due_until: datetime | None,
    ) -> tuple[sql.Composed, list[Any]]:
        conditions = [sql.SQL("user_id = %s"), sql.SQL("due_date >= %s")]
        params: list[Any] = [user_id, due_from]
        if due_until is not None:
            conditions.append(sql.SQL("due_date <= %s"))
            params.append(due_until)

        query = sql.SQL("SELECT * FROM {table} WHERE {where} ORDER BY due_date").format(
            table=sql.Identifier(collection),
            where=sql.SQL(" AND ").join(conditions),
        )
        return query, params
