"""Receipt reading (AI extraction) service."""

from ledgersync.services.extraction.receipt import (
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
    apply_extraction,
    parse_extraction_text,
)

__all__ = [
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    "apply_extraction",
    "parse_extraction_text",
]
