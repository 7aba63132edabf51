"""
Mistral OCR client for receipt images.

Sends the image as a base64 data URL to the OCR endpoint and asks for a
JSON-schema document annotation with the three fields the ledger needs.
"""

import base64
import json
import logging
import mimetypes
from typing import Any, Optional

import requests

from .base import ReceiptExtraction

logger = logging.getLogger(__name__)


class OCRError(Exception):
    """Base exception for OCR client errors."""

    pass


class OCRAPIError(OCRError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"OCR API error {status_code}: {message}")


class OCRConnectionError(OCRError):
    """Failed to reach the OCR service."""

    pass


RECEIPT_ANNOTATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "vendor": {"type": "string", "description": "The vendor or merchant name"},
        "date": {"type": "string", "description": "The transaction date in MM/DD/YYYY format"},
        "total": {
            "type": "string",
            "description": "The total amount including dollar sign, e.g. $12.34",
        },
    },
    "required": ["vendor", "date", "total"],
    "additionalProperties": False,
}

ANNOTATION_PROMPT = (
    "Extract the vendor/merchant name, transaction date, and total amount from this receipt."
)


def _field_text(value: Any) -> Optional[str]:
    """Annotation field as text; numbers are kept, anything else is dropped."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


class MistralOCRClient:
    """
    Client for the Mistral OCR API.

    A failed call raises OCRError; callers decide whether that is fatal.
    There are no automatic retries: a receipt whose OCR failed is stored
    with null fields and can be corrected by hand.
    """

    DEFAULT_TIMEOUT = 60
    DEFAULT_MODEL = "mistral-ocr-latest"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mistral.ai",
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the OCR client.

        Args:
            api_key: Mistral API key
            base_url: API root (without /v1)
            model: OCR model name
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _request(self, endpoint: str, payload: dict) -> dict:
        """POST a JSON payload and return the decoded response."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise OCRConnectionError(f"Failed to connect to OCR service at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise OCRConnectionError(f"Request to OCR service timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise OCRError(f"Request failed: {e}")

        if not response.ok:
            raise OCRAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise OCRError(f"OCR response is not JSON: {e}")

    @staticmethod
    def build_data_url(image_bytes: bytes, filename: Optional[str] = None) -> str:
        """Encode image bytes as a data URL (JPEG unless the filename says otherwise)."""
        mime_type = None
        if filename:
            mime_type, _ = mimetypes.guess_type(filename)
        if not mime_type or not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    def analyze_image(self, image_bytes: bytes, filename: Optional[str] = None) -> ReceiptExtraction:
        """
        Extract vendor, date and total from a receipt image.

        Returns:
            ReceiptExtraction; all fields None if the service returned no annotation

        Raises:
            OCRError: On transport, API or decoding failure
        """
        payload = {
            "model": self.model,
            "document": {
                "type": "image_url",
                "image_url": self.build_data_url(image_bytes, filename),
            },
            "document_annotation_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "receipt",
                    "schema": RECEIPT_ANNOTATION_SCHEMA,
                    "strict": True,
                },
            },
            "document_annotation_prompt": ANNOTATION_PROMPT,
        }

        data = self._request("/v1/ocr", payload)
        if not isinstance(data, dict):
            raise OCRError(f"Unexpected OCR response type: {type(data).__name__}")
        annotation = data.get("document_annotation")

        if not annotation:
            logger.debug("OCR returned no document annotation")
            return ReceiptExtraction.empty()

        if isinstance(annotation, str):
            try:
                annotation = json.loads(annotation)
            except json.JSONDecodeError as e:
                raise OCRError(f"Document annotation is not valid JSON: {e}")

        if not isinstance(annotation, dict):
            raise OCRError(f"Unexpected document annotation type: {type(annotation).__name__}")

        return ReceiptExtraction(
            vendor=_field_text(annotation.get("vendor")),
            date=_field_text(annotation.get("date")),
            total=_field_text(annotation.get("total")),
        )
