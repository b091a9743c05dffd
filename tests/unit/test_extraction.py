"""Tests for receipt_lira.extraction."""

from __future__ import annotations

import asyncio
import json
from datetime import date
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from receipt_lira import extraction
from receipt_lira.errors import ExtractionFailure
from receipt_lira.extraction import (
    VISION_PROMPT,
    ExtractionEngine,
    MockStrategy,
    VisionStrategy,
    build_vision_result,
    create_extraction_engine,
    load_image,
    mock_electricity_bill,
    mock_grocery_receipt,
    parse_vision_payload,
    strip_code_fences,
)
from receipt_lira.models import BillType
from receipt_lira.patterns import extract_bill_data

if TYPE_CHECKING:
    from pathlib import Path

BILL_TEXT = (
    "ENERJISA\n"
    "Son Odeme Tarihi: 20.06.2025\n"
    "Toplam Tuketim: 1.250 kWh\n"
    "Gunluk Ortalama Tuketim: 41,67 kWh\n"
    "ODENECEK TUTAR: 2.845,30 TL"
)


def _agent_returning(output: str) -> MagicMock:
    mock_result = MagicMock()
    mock_result.output = output
    mock_agent = MagicMock()
    mock_agent.run = AsyncMock(return_value=mock_result)
    return mock_agent


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "text": BILL_TEXT,
        "merchant": "ENERJISA",
        "date": "2025-06-20",
        "total": 2845.30,
        "billType": "electricity",
        "usage": 41.67,
        "usageUnit": "kWh",
        "items": "Mayıs 2025 dönemi elektrik tüketimi",
        "description": "Elektrik Faturası",
    }
    payload.update(overrides)
    return payload


class _StaticStrategy:
    def __init__(self, error: ExtractionFailure) -> None:
        self.error = error

    async def extract(self, image: bytes, media_type: str) -> Any:
        raise self.error


async def _fake_fetch(image: Any) -> tuple[bytes, str]:
    return b"jpeg-bytes", "image/jpeg"


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_json_fence(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self) -> None:
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self) -> None:
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestParseVisionPayload:
    """Tests for parse_vision_payload."""

    def test_fenced_payload(self) -> None:
        payload = parse_vision_payload("```json\n" + json.dumps(_payload()) + "\n```")
        assert payload.merchant == "ENERJISA"
        assert payload.bill_date == date(2025, 6, 20)
        assert payload.bill_type == "electricity"

    def test_turkish_number_strings(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(total="1.234,56", usage="45,20")))
        assert payload.total == pytest.approx(1234.56)
        assert payload.usage == pytest.approx(45.2)

    def test_day_first_date_accepted(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(date="20.06.2025")))
        assert payload.bill_date == date(2025, 6, 20)

    def test_unparseable_date_becomes_none(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(date="unknown")))
        assert payload.bill_date is None

    def test_items_list_joined(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(items=["Süt", "Ekmek"])))
        assert payload.items == "Süt, Ekmek"

    def test_invalid_json(self) -> None:
        with pytest.raises(ExtractionFailure) as exc_info:
            parse_vision_payload("Sorry, I cannot read this bill.")
        assert exc_info.value.code == "invalid_json"
        assert exc_info.value.raw_text == "Sorry, I cannot read this bill."

    def test_non_object_json(self) -> None:
        with pytest.raises(ExtractionFailure) as exc_info:
            parse_vision_payload("[1, 2, 3]")
        assert exc_info.value.code == "invalid_json_shape"

    def test_wrong_field_types(self) -> None:
        with pytest.raises(ExtractionFailure) as exc_info:
            parse_vision_payload(json.dumps(_payload(merchant={"name": "x"})))
        assert exc_info.value.code == "invalid_payload"


class TestBuildVisionResult:
    """Tests for build_vision_result."""

    def test_complete_payload(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload()))
        result = build_vision_result(payload, "")

        assert result.source == "vision"
        assert result.confidence == 0.9
        assert result.raw_text == BILL_TEXT
        assert result.candidate_fields.merchant == "ENERJISA"
        assert result.candidate_fields.amount == pytest.approx(2845.30)
        assert result.bill_fields is not None
        assert result.bill_fields.bill_type is BillType.ELECTRICITY
        assert result.bill_fields.description == "Elektrik Faturası"

    def test_missing_usage_filled_from_text_cost_kept(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(usage=None, total=3000.0)))
        result = build_vision_result(payload, "")

        fallback = extract_bill_data(BILL_TEXT, BillType.ELECTRICITY)
        assert result.bill_fields is not None
        assert result.bill_fields.cost == 3000.0
        assert result.candidate_fields.amount == 3000.0
        assert result.bill_fields.usage == fallback.usage
        assert result.bill_fields.usage == pytest.approx(41.67)

    def test_missing_cost_filled_usage_kept(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(total=None, usage=40.0)))
        result = build_vision_result(payload, "")

        assert result.bill_fields is not None
        assert result.bill_fields.usage == 40.0
        assert result.bill_fields.cost == pytest.approx(2845.30)
        assert result.candidate_fields.amount == pytest.approx(2845.30)

    def test_zero_values_are_not_missing(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(total=0, usage=0)))
        result = build_vision_result(payload, "")

        assert result.bill_fields is not None
        assert result.bill_fields.cost == 0.0
        assert result.bill_fields.usage == 0.0

    def test_missing_text_falls_back_to_response(self) -> None:
        raw = json.dumps(_payload(text=None, usage=None, usageUnit=None, billType="water"))
        payload = parse_vision_payload(raw)
        result = build_vision_result(payload, "Toplam Tüketim: 18,5 m3")

        assert result.raw_text == ""
        assert result.bill_fields is not None
        assert result.bill_fields.usage == pytest.approx(18.5)
        assert result.bill_fields.usage_unit == "m3"

    def test_gas_type_normalized(self) -> None:
        payload = parse_vision_payload(json.dumps(_payload(billType="gas", usageUnit=None)))
        result = build_vision_result(payload, "")

        assert result.bill_fields is not None
        assert result.bill_fields.bill_type is BillType.NATURAL_GAS
        assert result.bill_fields.usage_unit == "m3"


class TestVisionStrategy:
    """Tests for VisionStrategy."""

    def test_sends_prompt_and_image(self) -> None:
        agent = _agent_returning(json.dumps(_payload()))
        strategy = VisionStrategy(agent=agent)

        asyncio.run(strategy.extract(b"jpeg-bytes", "image/png"))

        agent.run.assert_awaited_once()
        prompt_parts = agent.run.call_args[0][0]
        assert prompt_parts[0] == VISION_PROMPT
        assert prompt_parts[1].data == b"jpeg-bytes"
        assert prompt_parts[1].media_type == "image/png"

    def test_prompt_business_rules(self) -> None:
        assert "Son Ödeme Tarihi" in VISION_PROMPT
        assert "Günlük Ortalama" in VISION_PROMPT
        assert "Do NOT extract the total monthly consumption" in VISION_PROMPT
        assert "1.234,56" in VISION_PROMPT
        assert "TURKISH" in VISION_PROMPT

    def test_returns_vision_result(self) -> None:
        strategy = VisionStrategy(agent=_agent_returning(json.dumps(_payload())))
        result = asyncio.run(strategy.extract(b"img", "image/jpeg"))
        assert result.source == "vision"
        assert result.candidate_fields.bill_date == date(2025, 6, 20)

    def test_provider_error_becomes_failure(self) -> None:
        agent = MagicMock()
        agent.run = AsyncMock(side_effect=TimeoutError("read timeout"))
        strategy = VisionStrategy(agent=agent)

        with pytest.raises(ExtractionFailure) as exc_info:
            asyncio.run(strategy.extract(b"img", "image/jpeg"))
        assert exc_info.value.code == "provider_request_failed"
        assert exc_info.value.raw_text == ""

    def test_empty_response(self) -> None:
        strategy = VisionStrategy(agent=_agent_returning("   "))
        with pytest.raises(ExtractionFailure) as exc_info:
            asyncio.run(strategy.extract(b"img", "image/jpeg"))
        assert exc_info.value.code == "empty_response"


class TestMockStrategy:
    """Tests for MockStrategy."""

    def test_deterministic_electricity(self) -> None:
        strategy = MockStrategy(
            choose=lambda options: options[1], delay=0, today=lambda: date(2025, 6, 10)
        )
        result = asyncio.run(strategy.extract(b"", "image/jpeg"))
        assert result.source == "mock"
        assert result.bill_fields is not None
        assert result.bill_fields.bill_type is BillType.ELECTRICITY
        assert result.bill_fields.cost == 700.0
        assert "Son Odeme Tarihi: 20.06.2025" in result.raw_text

    def test_deterministic_grocery(self) -> None:
        strategy = MockStrategy(choose=lambda options: options[0], delay=0)
        result = asyncio.run(strategy.extract(b"", "image/jpeg"))
        assert result.candidate_fields.merchant == "GROCERY STORE"
        assert result.candidate_fields.amount == 22.30
        assert result.bill_fields is None

    def test_choice_sees_both_results(self) -> None:
        seen: list[Any] = []

        def choose(options: Any) -> Any:
            seen.extend(options)
            return options[0]

        asyncio.run(MockStrategy(choose=choose, delay=0).extract(b"", "image/jpeg"))
        assert seen == [mock_grocery_receipt, mock_electricity_bill]


class TestLoadImage:
    """Tests for load_image."""

    def test_reads_local_file(self, tmp_path: Path) -> None:
        image = tmp_path / "bill.png"
        image.write_bytes(b"\x89PNG data")
        data, media_type = asyncio.run(load_image(image))
        assert data == b"\x89PNG data"
        assert media_type == "image/png"

    def test_file_uri_and_default_media_type(self, tmp_path: Path) -> None:
        image = tmp_path / "bill.heic"
        image.write_bytes(b"data")
        _data, media_type = asyncio.run(load_image(f"file://{image}"))
        assert media_type == "image/jpeg"

    def test_missing_file_propagates(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            asyncio.run(load_image(tmp_path / "nope.jpg"))

    def test_empty_file_rejected(self, tmp_path: Path) -> None:
        image = tmp_path / "empty.jpg"
        image.write_bytes(b"")
        with pytest.raises(ValueError, match="no data"):
            asyncio.run(load_image(image))


class TestExtractionEngine:
    """Tests for ExtractionEngine."""

    def test_returns_strategy_result(self) -> None:
        engine = ExtractionEngine(
            VisionStrategy(agent=_agent_returning(json.dumps(_payload()))),
            fetch=_fake_fetch,
        )
        result = asyncio.run(engine.extract("bill.jpg"))
        assert result.source == "vision"

    def test_invalid_json_falls_back_to_patterns(self) -> None:
        engine = ExtractionEngine(
            VisionStrategy(agent=_agent_returning(BILL_TEXT)), fetch=_fake_fetch
        )
        result = asyncio.run(engine.extract("bill.jpg"))

        assert result.source == "patterns"
        assert result.raw_text == BILL_TEXT
        assert result.bill_fields is not None
        assert result.bill_fields.bill_type is BillType.ELECTRICITY
        assert result.bill_fields.cost == pytest.approx(2845.30)
        assert result.candidate_fields.bill_date == date(2025, 6, 20)

    def test_provider_failure_yields_empty_result(self) -> None:
        failure = ExtractionFailure("down", code="provider_request_failed")
        engine = ExtractionEngine(_StaticStrategy(failure), fetch=_fake_fetch)
        result = asyncio.run(engine.extract("bill.jpg"))

        assert result.confidence == 0.0
        assert result.bill_fields is None
        assert result.candidate_fields.amount is None

    def test_unreadable_image_propagates(self, tmp_path: Path) -> None:
        engine = ExtractionEngine(MockStrategy(delay=0))
        with pytest.raises(FileNotFoundError):
            asyncio.run(engine.extract(tmp_path / "missing.jpg"))


class TestCreateExtractionEngine:
    """Tests for create_extraction_engine."""

    def test_mock_without_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("RECEIPT_LIRA_MOCK_DELAY", "0")
        engine = create_extraction_engine(choose=lambda options: options[0])

        assert isinstance(engine.strategy, MockStrategy)
        result = asyncio.run(engine.strategy.extract(b"", "image/jpeg"))
        assert result.candidate_fields.merchant == "GROCERY STORE"

    def test_vision_with_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")  # pragma: allowlist secret
        fake_agent = MagicMock()
        monkeypatch.setattr(extraction, "create_vision_agent", lambda: fake_agent)

        engine = create_extraction_engine()

        assert isinstance(engine.strategy, VisionStrategy)
