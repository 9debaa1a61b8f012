"""Tests for the receipt reader and the draft merge rule."""

import base64
from datetime import date
from decimal import Decimal

import pytest

from ledgersync.config import GeminiSettings
from ledgersync.models.transaction import ReceiptExtraction, Transaction
from ledgersync.services.extraction import (
    GeminiReceiptExtractor,
    apply_extraction,
    parse_extraction_text,
)


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel."""

    def __init__(self, text=None, error=None):
        self._text = text
        self._error = error
        self.calls = []

    async def generate_content_async(self, contents):
        self.calls.append(contents)
        if self._error:
            raise self._error
        return FakeResponse(self._text)


class TestParseExtraction:
    """Tests for mapping the model's answer."""

    def test_full_answer(self):
        """Test every field is mapped."""
        result = parse_extraction_text(
            '{"date": "2024-03-01", "amount": 1280, "summary": "Team lunch", "hasTaxId": true}'
        )
        assert result.date == date(2024, 3, 1)
        assert result.amount == Decimal("1280")
        assert result.summary == "Team lunch"
        assert result.has_tax_id is True

    def test_answer_wrapped_in_prose(self):
        """Test JSON embedded in surrounding text is found."""
        result = parse_extraction_text('Here you go:\n```json\n{"amount": "42.5"}\n```')
        assert result.amount == Decimal("42.5")
        assert result.date is None

    def test_bad_fields_left_unset(self):
        """Test unparseable values are dropped, not guessed."""
        result = parse_extraction_text('{"date": "last tuesday", "amount": "n/a", "summary": "  "}')
        assert result == ReceiptExtraction()

    def test_not_json(self):
        """Test a non-JSON answer yields an empty extraction."""
        assert parse_extraction_text("I cannot read this receipt") == ReceiptExtraction()


class TestGeminiReceiptExtractor:
    """Tests for the Gemini-backed extractor."""

    @pytest.mark.asyncio
    async def test_no_api_key_returns_empty(self):
        """Test extraction is disabled without a key."""
        extractor = GeminiReceiptExtractor(GeminiSettings(api_key=None))
        assert not extractor.is_available
        assert await extractor.extract(b"jpeg") == ReceiptExtraction()

    @pytest.mark.asyncio
    async def test_data_url_decoded_and_sent(self):
        """Test a data URL image is decoded before being sent."""
        model = FakeModel(text='{"amount": 99}')
        extractor = GeminiReceiptExtractor(GeminiSettings(api_key=None), model=model)
        data_url = "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode()
        result = await extractor.extract(data_url)
        assert result.amount == Decimal("99")
        image_part = model.calls[0][0]
        assert image_part["data"] == b"jpeg-bytes"
        assert image_part["mime_type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_model_failure_returns_empty(self):
        """Test a failing model call yields an empty extraction."""
        model = FakeModel(error=RuntimeError("quota exceeded"))
        extractor = GeminiReceiptExtractor(GeminiSettings(api_key=None), model=model)
        assert await extractor.extract(b"jpeg") == ReceiptExtraction()


class TestApplyExtraction:
    """Tests for filling a draft from an extraction."""

    def _draft(self) -> Transaction:
        return Transaction(date=date(2024, 1, 1), amount=Decimal("0"), summary="")

    def test_fills_blank_draft(self):
        """Test extracted values fill the draft."""
        extraction = ReceiptExtraction(
            amount=Decimal("300"), date=date(2024, 2, 2), summary="Taxi", has_tax_id=True,
        )
        draft = apply_extraction(self._draft(), extraction)
        assert draft.amount == Decimal("300")
        assert draft.date == date(2024, 2, 2)
        assert draft.summary == "Taxi"
        assert draft.has_tax_id is True

    def test_missing_fields_do_not_blank_the_draft(self):
        """Test absent extracted fields leave draft values alone."""
        original = self._draft().model_copy(update={"summary": "typed by user"})
        draft = apply_extraction(original, ReceiptExtraction(amount=Decimal("10")))
        assert draft.summary == "typed by user"
        assert draft.amount == Decimal("10")

    def test_edited_fields_win(self):
        """Test a field the user edited is never overwritten."""
        original = self._draft().model_copy(update={"amount": Decimal("55")})
        extraction = ReceiptExtraction(amount=Decimal("300"), summary="Taxi")
        draft = apply_extraction(original, extraction, edited_fields={"amount"})
        assert draft.amount == Decimal("55")
        assert draft.summary == "Taxi"

    def test_false_tax_flag_is_applied(self):
        """Test an explicit False is a value, not a blank."""
        original = self._draft().model_copy(update={"has_tax_id": True})
        draft = apply_extraction(original, ReceiptExtraction(has_tax_id=False))
        assert draft.has_tax_id is False
