"""Bill and receipt extraction: vision model first, text patterns as fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from datetime import date, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_ai import Agent, BinaryContent

from receipt_lira.config import (
    get_anthropic_api_key,
    get_llm_model,
    get_mock_delay,
    has_vision_credentials,
)
from receipt_lira.errors import ExtractionFailure
from receipt_lira.models import BillFields, BillType, CandidateFields, ExtractionResult
from receipt_lira.patterns import (
    USAGE_UNITS,
    extract_bill_data,
    extract_with_patterns,
    parse_date,
    parse_turkish_number,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    MockFactory = Callable[[date], ExtractionResult]

logger = logging.getLogger(__name__)

VISION_CONFIDENCE = 0.9
DEFAULT_MEDIA_TYPE = "image/jpeg"

_SYSTEM_PROMPT = """\
You read photographs of Turkish utility bills and shopping receipts and \
answer with a single JSON object only.\
"""

VISION_PROMPT = """\
Analyze this image. It is most likely a utility bill (electricity, water, \
natural gas, internet) or a shopping receipt. Return this JSON object:
{
  "text": "The full text content of the document",
  "merchant": "The merchant or provider name",
  "date": "The Last Payment Date (Son Ödeme Tarihi) in YYYY-MM-DD format. \
Do not use the issue date (Fatura Tarihi) unless no last payment date exists.",
  "total": 0.00,
  "billType": "electricity" | "water" | "gas" | "internet" | "other",
  "usage": 0.00,
  "usageUnit": "kWh" | "m3" | null,
  "items": "A short summary of what was bought, or the service period for a \
utility bill. MUST BE IN TURKISH.",
  "description": "A short description of the expense, e.g. 'Market \
alışverişi' or 'Elektrik Faturası'. MUST BE IN TURKISH."
}

Rules for "usage":
- ELECTRICITY bills: extract the Average Daily Consumption (Günlük Ortalama \
Tüketim). Do NOT extract the total monthly consumption.
- WATER and GAS bills: extract the Total Consumption (Toplam Tüketim / Sarfiyat).
- Numbers use Turkish formatting: "1.234,56" means 1234.56. Return plain numbers.

Use null for any field you cannot find. Return ONLY the JSON, no markdown.\
"""

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class ExtractionStrategy(Protocol):
    """One way of turning image bytes into an extraction result."""

    async def extract(self, image: bytes, media_type: str) -> ExtractionResult: ...


class VisionPayload(BaseModel):
    """The JSON object the vision model is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str | None = None
    merchant: str | None = None
    bill_date: date | None = Field(default=None, alias="date")
    total: float | None = None
    bill_type: str | None = Field(default=None, alias="billType")
    usage: float | None = None
    usage_unit: str | None = Field(default=None, alias="usageUnit")
    items: str | None = None
    description: str | None = None

    @field_validator("total", "usage", mode="before")
    @classmethod
    def parse_number(cls, value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int | float):
            return float(value)
        if isinstance(value, str):
            return parse_turkish_number(value)
        return None

    @field_validator("bill_date", mode="before")
    @classmethod
    def parse_bill_date(cls, value: Any) -> date | None:
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            return parse_date(value) or parse_date(value[:10])
        return None

    @field_validator("items", mode="before")
    @classmethod
    def join_items(cls, value: Any) -> Any:
        if isinstance(value, list):
            return ", ".join(str(item) for item in value)
        return value


def create_vision_agent() -> Agent[None, str]:
    """Create a pydantic-ai Agent that answers with raw JSON text."""
    # Ensure API key is available (fail fast)
    get_anthropic_api_key()

    model_name = get_llm_model()
    return Agent(
        f"anthropic:{model_name}",
        output_type=str,
        system_prompt=_SYSTEM_PROMPT,
    )


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences around a JSON answer."""
    return _FENCE.sub("", text).strip()


def parse_vision_payload(response_text: str) -> VisionPayload:
    """Parse the model's answer, raising ExtractionFailure when unusable."""
    try:
        data = json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError as exc:
        msg = "Vision model returned invalid JSON"
        raise ExtractionFailure(msg, code="invalid_json", raw_text=response_text) from exc
    if not isinstance(data, dict):
        msg = "Vision model output must be a JSON object"
        raise ExtractionFailure(msg, code="invalid_json_shape", raw_text=response_text)
    try:
        return VisionPayload.model_validate(data)
    except ValidationError as exc:
        msg = "Vision model output has unexpected field types"
        raise ExtractionFailure(msg, code="invalid_payload", raw_text=response_text) from exc


def build_vision_result(payload: VisionPayload, response_text: str) -> ExtractionResult:
    """Turn a parsed payload into a result, filling only missing usage/cost.

    Values the model did return are never replaced by the pattern fallback.
    """
    bill_type = BillType.normalize(payload.bill_type)
    usage = payload.usage
    cost = payload.total

    if usage is None or cost is None:
        fallback = extract_bill_data(
            payload.text or response_text, bill_type or BillType.ELECTRICITY
        )
        if usage is None and fallback.usage is not None:
            logger.info("Vision result missed usage, using pattern value %s", fallback.usage)
            usage = fallback.usage
        if cost is None and fallback.cost is not None:
            logger.info("Vision result missed cost, using pattern value %s", fallback.cost)
            cost = fallback.cost

    usage_unit = payload.usage_unit
    if usage_unit is None and usage is not None and bill_type is not None:
        usage_unit = USAGE_UNITS.get(bill_type)

    return ExtractionResult(
        raw_text=payload.text or "",
        confidence=VISION_CONFIDENCE,
        source="vision",
        candidate_fields=CandidateFields(
            merchant=payload.merchant,
            bill_date=payload.bill_date,
            amount=cost,
        ),
        bill_fields=BillFields(
            bill_type=bill_type,
            usage=usage,
            usage_unit=usage_unit,
            cost=cost,
            items=payload.items,
            description=payload.description,
        ),
    )


class VisionStrategy:
    """Single-shot multimodal request to the configured vision model."""

    def __init__(self, agent: Agent[None, str] | None = None) -> None:
        self._agent = agent if agent is not None else create_vision_agent()

    async def extract(self, image: bytes, media_type: str) -> ExtractionResult:
        try:
            result: Any = await self._agent.run(
                [VISION_PROMPT, BinaryContent(data=image, media_type=media_type)]
            )
        except Exception as exc:  # noqa: BLE001
            msg = f"Vision request failed: {exc}"
            raise ExtractionFailure(msg, code="provider_request_failed") from exc

        response_text = result.output
        if not isinstance(response_text, str) or not response_text.strip():
            msg = "Vision model returned an empty response"
            raise ExtractionFailure(msg, code="empty_response")

        logger.debug("Vision response: %s", response_text)
        return build_vision_result(parse_vision_payload(response_text), response_text)


def mock_electricity_bill(today: date) -> ExtractionResult:
    """Canned ENERJISA electricity bill."""
    due = today + timedelta(days=10)
    text = (
        "ENERJISA\n"
        "Musteri Hizmetleri: 444 4 372\n\n"
        f"Fatura Tarihi: {today:%d.%m.%Y}\n"
        f"Son Odeme Tarihi: {due:%d.%m.%Y}\n\n"
        "Tuketim Detayi:\n"
        "Ilk Endeks: 12.500 kWh\n"
        "Son Endeks: 12.750 kWh\n"
        "Tuketim: 250 kWh\n\n"
        "Bedeller:\n"
        "Enerji Bedeli: 450,00 TL\n"
        "Dagitim Bedeli: 150,00 TL\n"
        "Vergiler: 100,00 TL\n\n"
        "ODENECEK TUTAR: 700,00 TL\n\n"
        "Tesekkurler."
    )
    return ExtractionResult(
        raw_text=text,
        confidence=0.99,
        source="mock",
        candidate_fields=CandidateFields(merchant="ENERJISA", bill_date=today, amount=700.00),
        bill_fields=BillFields(
            bill_type=BillType.ELECTRICITY,
            usage=250.00,
            usage_unit="kWh",
            cost=700.00,
        ),
    )


def mock_grocery_receipt(today: date) -> ExtractionResult:
    """Canned grocery store receipt."""
    text = (
        "GROCERY STORE\n"
        "123 Main Street\n"
        "City, State 12345\n\n"
        f"Date: {today.isoformat()}\n\n"
        "Items:\n"
        "Milk                $3.99\n"
        "Bread               $2.49\n"
        "Eggs                $4.99\n"
        "Coffee              $8.99\n\n"
        "Subtotal:          $20.46\n"
        "Tax:                $1.84\n"
        "Total:             $22.30\n\n"
        "Payment: Credit Card\n"
        "Thank you for shopping!"
    )
    return ExtractionResult(
        raw_text=text,
        confidence=0.98,
        source="mock",
        candidate_fields=CandidateFields(
            merchant="GROCERY STORE", bill_date=today, amount=22.30
        ),
    )


MOCK_RESULTS: tuple[MockFactory, ...] = (
    mock_grocery_receipt,
    mock_electricity_bill,
)


class MockStrategy:
    """Offline stand-in returning one of two canned results after a delay.

    ``choose`` picks from MOCK_RESULTS; tests pass a deterministic picker.
    """

    def __init__(
        self,
        *,
        choose: Callable[[Sequence[MockFactory]], MockFactory] = random.choice,
        delay: float = 1.0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._choose = choose
        self._delay = delay
        self._today = today

    async def extract(self, image: bytes, media_type: str) -> ExtractionResult:
        await asyncio.sleep(self._delay)
        factory = self._choose(MOCK_RESULTS)
        return factory(self._today())


async def load_image(image: str | Path) -> tuple[bytes, str]:
    """Read image bytes from a local path or an http(s) URL.

    Errors reading the image propagate unchanged.
    """
    if isinstance(image, str) and image.startswith(("http://", "https://")):
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
            response = await client.get(image)
            response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        media_type = content_type if content_type.startswith("image/") else DEFAULT_MEDIA_TYPE
        data = response.content
    else:
        path = Path(image.removeprefix("file://")) if isinstance(image, str) else image
        data = await asyncio.to_thread(path.read_bytes)
        media_type = _media_type_for_path(path)

    if not data:
        msg = f"Image {image} contains no data"
        raise ValueError(msg)
    return data, media_type


def _media_type_for_path(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".png":
        return "image/png"
    if suffix == ".webp":
        return "image/webp"
    if suffix == ".gif":
        return "image/gif"
    return DEFAULT_MEDIA_TYPE


class ExtractionEngine:
    """Run the configured strategy, degrading to text patterns on failure."""

    def __init__(
        self,
        strategy: ExtractionStrategy,
        *,
        fetch: Callable[[str | Path], Awaitable[tuple[bytes, str]]] = load_image,
    ) -> None:
        self.strategy = strategy
        self._fetch = fetch

    async def extract(self, image: str | Path) -> ExtractionResult:
        """Extract structured fields from an image reference.

        Never raises for a readable image: when the strategy fails the
        pattern extractor runs on whatever text came back, which may
        leave every structured field empty.
        """
        data, media_type = await self._fetch(image)
        try:
            return await self.strategy.extract(data, media_type)
        except ExtractionFailure as exc:
            logger.warning(
                "Vision extraction failed (%s), falling back to text patterns",
                exc.code,
                exc_info=True,
            )
            return extract_with_patterns(exc.raw_text)


def create_extraction_engine(
    *,
    choose: Callable[[Sequence[MockFactory]], MockFactory] = random.choice,
) -> ExtractionEngine:
    """Select the strategy from configuration: vision when a key is set, else mock."""
    if has_vision_credentials():
        logger.info("Using vision extraction with %s", get_llm_model())
        return ExtractionEngine(VisionStrategy())
    logger.info("Using mock extraction (no vision API key configured)")
    return ExtractionEngine(MockStrategy(choose=choose, delay=get_mock_delay()))
