"""Bill document source protocol and the document-to-record boundary."""

from __future__ import annotations

import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from receipt_lira.models import BillRecord, BillType
from receipt_lira.patterns import parse_turkish_number

if TYPE_CHECKING:
    from collections.abc import Mapping

BILL_COLLECTIONS = (
    "electricity_bills",
    "water_bills",
    "gas_bills",
    "naturalGas_bills",
    "internet_bills",
    "other_bills",
)


@runtime_checkable
class BillSource(Protocol):
    """Protocol for the document store holding one collection per bill type."""

    async def query_bills(
        self,
        collection: str,
        user_id: str,
        *,
        due_from: datetime,
        due_until: datetime | None = None,
    ) -> list[dict[str, Any]]: ...


def bill_type_for_collection(collection: str) -> BillType:
    """Return the bill type implied by a collection name."""
    return BillType.normalize(collection.removesuffix("_bills")) or BillType.OTHER


def bill_from_document(document: Mapping[str, Any], collection: str) -> BillRecord | None:
    """Convert a raw store document into a BillRecord.

    Field presence and types are checked here so the rest of the code can
    rely on BillRecord. Returns None for documents without an id.
    """
    doc_id = document.get("id")
    if doc_id is None or str(doc_id) == "":
        return None

    bill_type = BillType.normalize(document.get("type")) or bill_type_for_collection(
        collection
    )
    due_value = document.get("due_date")
    if due_value is None:
        due_value = document.get("date")

    return BillRecord(
        id=str(doc_id),
        bill_type=bill_type,
        usage=_as_amount(document.get("usage")),
        cost=_as_amount(document.get("cost")),
        due_date=_as_datetime(due_value),
        merchant=_as_text(document.get("merchant")),
        description=_as_text(document.get("description")),
        items=_as_text(document.get("items")),
        image_source=_as_text(document.get("image_url")),
        user_id=_as_text(document.get("user_id")),
    )


def _as_amount(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float | Decimal):
        number = float(value)
    elif isinstance(value, str):
        parsed = parse_turkish_number(value)
        if parsed is None:
            return None
        number = parsed
    else:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
