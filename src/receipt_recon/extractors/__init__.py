"""
Receipt extractors.

- TextReceiptExtractor: heuristics over emailed text/HTML receipts
- MistralOCRClient: OCR with document annotation for receipt images
"""

from .base import BaseReceiptExtractor, ReceiptExtraction
from .mistral_ocr import MistralOCRClient, OCRAPIError, OCRConnectionError, OCRError
from .text_extractor import TextReceiptExtractor, strip_html

__all__ = [
    "BaseReceiptExtractor",
    "ReceiptExtraction",
    "TextReceiptExtractor",
    "strip_html",
    "MistralOCRClient",
    "OCRError",
    "OCRAPIError",
    "OCRConnectionError",
]
