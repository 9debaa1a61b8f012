"""
Receipt Reader

Asks Gemini for a best-effort guess at a receipt's amount, date, summary
and whether a tax id is printed on it.

BOUNDARIES:
- The result is PROPOSED data only. It pre-fills a draft the user still
  reviews and submits; nothing here saves anything.
- Every field may be missing. A blank guess never replaces a value, and
  a field the user has already edited is never touched.
- Any failure (no API key, network, unparseable answer) yields an empty
  extraction rather than an error.
"""

import base64
import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

import google.generativeai as genai
import structlog

from ledgersync.config import GeminiSettings, get_settings
from ledgersync.models.transaction import ReceiptExtraction, Transaction
from ledgersync.services.remote.wire import RowSchemaError, parse_amount, parse_date


logger = structlog.get_logger(__name__)

EXTRACTION_PROMPT = (
    "Extract the following details from this receipt image: "
    "Transaction Date (YYYY-MM-DD), Total Amount (number), "
    "Summary (brief description), and determine if a Tax ID/VAT number "
    "is visible on the receipt (return boolean true/false). "
    'Return ONLY a JSON object: {"date": "...", "amount": 0, "summary": "...", "hasTaxId": false}'
)

EXTRACTABLE_FIELDS = ("amount", "date", "summary", "has_tax_id")


class ReceiptExtractorInterface(ABC):

    @abstractmethod
    async def extract(self, image: Union[bytes, str], mime_type: str = "image/jpeg") -> ReceiptExtraction:
        pass


def _decode_image(image: Union[bytes, str]) -> bytes:
    """Accept raw bytes, base64, or a data URL."""
    if isinstance(image, bytes):
        return image
    _, _, data = image.rpartition(",")
    return base64.b64decode(data)


def parse_extraction_text(text: str) -> ReceiptExtraction:
    """
    Map the model's JSON answer to a ReceiptExtraction.

    Fields that are missing or do not parse are left unset.
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return ReceiptExtraction()
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        return ReceiptExtraction()
    if not isinstance(data, dict):
        return ReceiptExtraction()

    fields: dict[str, Any] = {}
    try:
        if data.get("date"):
            fields["date"] = parse_date(data["date"])
    except RowSchemaError:
        pass
    try:
        if data.get("amount") not in (None, ""):
            amount = parse_amount(data["amount"])
            if amount >= 0:
                fields["amount"] = amount
    except RowSchemaError:
        pass
    summary = data.get("summary")
    if isinstance(summary, str) and summary.strip():
        fields["summary"] = summary.strip()
    if isinstance(data.get("hasTaxId"), bool):
        fields["has_tax_id"] = data["hasTaxId"]
    return ReceiptExtraction(**fields)


class GeminiReceiptExtractor(ReceiptExtractorInterface):
    """
    Receipt reader backed by Gemini.

    Without an API key the model is never configured and every call
    returns an empty extraction.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None, model: Any = None):
        self._settings = settings or get_settings().gemini
        self._model = model
        if self._model is None and self._settings.api_key:
            self._configure_genai()

    def _configure_genai(self):
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
                "response_mime_type": "application/json",
            }
        )

    @property
    def is_available(self) -> bool:
        return self._model is not None

    async def extract(self, image: Union[bytes, str], mime_type: str = "image/jpeg") -> ReceiptExtraction:
        if self._model is None:
            logger.warning("receipt_extraction_disabled", reason="no api key")
            return ReceiptExtraction()

        try:
            payload = {"mime_type": mime_type, "data": _decode_image(image)}
            response = await self._model.generate_content_async([payload, EXTRACTION_PROMPT])
            return parse_extraction_text(response.text or "")
        except Exception as e:
            # The guess is optional; the user fills the form by hand instead
            logger.warning("receipt_extraction_failed", error=str(e))
            return ReceiptExtraction()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def apply_extraction(
    draft: Transaction,
    extraction: ReceiptExtraction,
    edited_fields: Iterable[str] = (),
) -> Transaction:
    """
    Fill a draft from an extraction.

    Only non-blank extracted values are used, and never for a field named
    in `edited_fields` (snake_case field names).
    """
    edited = set(edited_fields)
    update = {}
    for name in EXTRACTABLE_FIELDS:
        value = getattr(extraction, name)
        if name in edited or _is_blank(value):
            continue
        if name == "amount":
            value = Decimal(value)
        update[name] = value
    return draft.model_copy(update=update) if update else draft
