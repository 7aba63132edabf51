"""
Base extractor interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class ReceiptExtraction:
    """
    Raw fields read from a receipt.

    Values are kept as the extractor found them ("$44.04", "02/19/2024");
    normalization to cents and ISO dates happens at intake.
    """

    vendor: Optional[str] = None
    date: Optional[str] = None
    total: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """True if nothing was extracted."""
        return not (self.vendor or self.date or self.total)

    @classmethod
    def empty(cls) -> "ReceiptExtraction":
        """All-null extraction (used when extraction fails)."""
        return cls()


class BaseReceiptExtractor(ABC):
    """
    Base class for text-based receipt extractors.

    Image extraction goes through the OCR client instead, which needs
    network access and credentials.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging."""
        pass

    @abstractmethod
    def extract(self, content: str, sender: Optional[str] = None) -> ReceiptExtraction:
        """
        Extract receipt fields from text.

        Args:
            content: Plain text or HTML body
            sender: Optional "From" header of the message carrying the text

        Returns:
            ReceiptExtraction (fields may be None)
        """
        pass
