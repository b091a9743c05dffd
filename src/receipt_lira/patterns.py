"""Deterministic text-pattern extraction for bill OCR text.

Used when the vision strategy fails outright, and to fill in usage or
cost when the vision result leaves them empty. Every numeric value is
read with Turkish conventions: ``.`` groups thousands and ``,`` marks
decimals, so ``1.234,56`` is 1234.56.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date

from receipt_lira.models import BillFields, BillType, CandidateFields, ExtractionResult

PATTERN_CONFIDENCE = 0.98

_NUMBER = r"([\d.,]+)"

# Checked in order; the first category with a keyword hit wins.
_TYPE_KEYWORDS: list[tuple[BillType, tuple[str, ...]]] = [
    (BillType.ELECTRICITY, ("electricity", "kwh", "energy")),
    (BillType.WATER, ("water", "m3", "sewer")),
    (BillType.NATURAL_GAS, ("gas", "natural gas")),
]

COST_PATTERNS = [
    re.compile(r"[öo]denecek\s*tutar[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"toplam\s*tutar[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"genel\s*toplam[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"\btotal[:\s]*\$?" + _NUMBER, re.IGNORECASE),
    re.compile(r"amount\s*due[:\s]*\$?" + _NUMBER, re.IGNORECASE),
    re.compile(r"\$" + _NUMBER),
]

# Electricity bills report the daily average, never the monthly total.
ELECTRICITY_USAGE_PATTERNS = [
    re.compile(r"g[üu]nl[üu]k\s*ortalama\s*t[üu]ketim[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"ort\.\s*t[üu]ketim[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"g[üu]nl[üu]k\s*ort\.[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"daily\s*average(?:\s*consumption)?[:\s]*" + _NUMBER, re.IGNORECASE),
]

VOLUME_USAGE_PATTERNS = [
    re.compile(r"toplam\s*t[üu]ketim[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"total\s*consumption[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"sarfiyat[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(r"t[üu]ketim[:\s]*" + _NUMBER, re.IGNORECASE),
    re.compile(_NUMBER + r"\s*m[3³]", re.IGNORECASE),
]

DUE_DATE_PATTERNS = [
    re.compile(
        r"(?:son\s*[öo]deme\s*tarihi|last\s*payment\s*date|due\s*date)[:\s]*"
        r"(\d{4}-\d{2}-\d{2}|\d{1,2}[./-]\d{1,2}[./-]\d{2,4})",
        re.IGNORECASE,
    ),
]

USAGE_UNITS = {
    BillType.ELECTRICITY: "kWh",
    BillType.WATER: "m3",
    BillType.NATURAL_GAS: "m3",
}


@dataclass(frozen=True)
class BillData:
    """Usage and cost found in bill text."""

    usage: float | None = None
    cost: float | None = None


def parse_turkish_number(value: str) -> float | None:
    """Parse a Turkish-formatted number, returning None when it is not one.

    >>> parse_turkish_number("1.234,56")
    1234.56
    """
    if not value:
        return None
    cleaned = value.strip().replace(".", "").replace(",", ".", 1)
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_date(value: str) -> date | None:
    """Parse ISO or day-first (DD.MM.YYYY, DD/MM/YY) dates."""
    text = value.strip()
    iso = re.fullmatch(r"(\d{4})-(\d{1,2})-(\d{1,2})", text)
    if iso:
        year, month, day = (int(part) for part in iso.groups())
    else:
        day_first = re.fullmatch(r"(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})", text)
        if not day_first:
            return None
        day, month, year = (int(part) for part in day_first.groups())
        if year < 100:
            year += 2000 if year < 70 else 1900
    try:
        return date(year, month, day)
    except ValueError:
        return None


def detect_bill_type(text: str) -> BillType | None:
    """Classify bill text by keyword, or None when nothing matches."""
    lowered = text.lower()
    for bill_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return bill_type
    return None


def extract_bill_data(text: str, bill_type: BillType | str | None) -> BillData:
    """Pull cost and type-specific usage out of bill text.

    Each field takes the first pattern that yields a parseable number;
    a field with no match stays None.
    """
    cost = _first_number(text, COST_PATTERNS)

    normalized = BillType.normalize(bill_type)
    usage: float | None = None
    if normalized is BillType.ELECTRICITY:
        usage = _first_number(text, ELECTRICITY_USAGE_PATTERNS)
    elif normalized in (BillType.WATER, BillType.NATURAL_GAS):
        usage = _first_number(text, VOLUME_USAGE_PATTERNS)

    return BillData(usage=usage, cost=cost)


def extract_due_date(text: str) -> date | None:
    """Find the last-payment date printed on a bill."""
    for pattern in DUE_DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            parsed = parse_date(match.group(1))
            if parsed is not None:
                return parsed
    return None


def extract_with_patterns(text: str) -> ExtractionResult:
    """Build a complete extraction result from raw text alone."""
    detected = detect_bill_type(text)
    data = extract_bill_data(text, detected)
    due = extract_due_date(text)

    if detected is None and data.cost is None and data.usage is None and due is None:
        return ExtractionResult(raw_text=text, confidence=0.0, source="patterns")

    bill_type = detected or BillType.OTHER
    return ExtractionResult(
        raw_text=text,
        confidence=PATTERN_CONFIDENCE,
        source="patterns",
        candidate_fields=CandidateFields(bill_date=due, amount=data.cost),
        bill_fields=BillFields(
            bill_type=bill_type,
            usage=data.usage,
            usage_unit=USAGE_UNITS.get(bill_type) if data.usage is not None else None,
            cost=data.cost,
        ),
    )


def _first_number(text: str, patterns: list[re.Pattern[str]]) -> float | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            number = parse_turkish_number(match.group(1))
            if number is not None:
                return number
    return None
