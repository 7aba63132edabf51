"""
Content fingerprints (CRITICAL).

This module defines THE deterministic digest functions used by every
deduplication guard. This is the ONLY way to compute fingerprints in the
system.

Fingerprint kinds:
1. File fingerprint: SHA256 of the raw statement bytes
   - Unique per scope -> file-level import idempotency
2. Row fingerprint: SHA256 of the exact raw row text (UTF-8)
   - Unique per statement -> row-level import idempotency
3. Image fingerprint: SHA256 of the receipt image bytes
   - Unique per scope among non-null values -> Ingestion Guard
4. Content fingerprint: SHA256 of "content|{date}|{cents}"
   - Not unique -> Content Guard lookup key

Fingerprints must be:
- Stable: Same inputs always produce same output
- Collision-resistant: used as uniqueness constraints, not cache keys
"""

import hashlib

# Prefix for semantic content keys, keeps them out of the byte-digest space
CONTENT_KEY_PREFIX = "content"

# Separator between content key components
CONTENT_KEY_SEPARATOR = "|"


def fingerprint(data: bytes) -> str:
    """
    Compute SHA256 hash of raw bytes.

    Args:
        data: Raw content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(data).hexdigest()


def file_fingerprint(file_bytes: bytes) -> str:
    """Whole-file fingerprint of an imported statement."""
    return fingerprint(file_bytes)


def row_fingerprint(raw_row_text: str) -> str:
    """
    Fingerprint of one statement row.

    The row text is hashed exactly as it appeared in the file (no trimming,
    no case folding) so that any change to the row yields a new identity.
    """
    return fingerprint(raw_row_text.encode("utf-8"))


def image_fingerprint(image_bytes: bytes) -> str:
    """Byte-content fingerprint of a receipt image."""
    return fingerprint(image_bytes)


def content_fingerprint(receipt_date: str | None, total_cents: int | None) -> str | None:
    """
    Semantic-content key of an extracted receipt.

    Two receipts with the same extracted date and amount share this key even
    when their images differ (re-scans, customer/merchant copies).

    Args:
        receipt_date: ISO date (YYYY-MM-DD)
        total_cents: Amount in integer minor units

    Returns:
        64-character hex key, or None if either component is missing
    """
    if not receipt_date or total_cents is None:
        return None
    if isinstance(total_cents, bool) or not isinstance(total_cents, int):
        raise ValueError(f"total_cents must be an integer, got: {type(total_cents)}")

    canonical = CONTENT_KEY_SEPARATOR.join(
        [CONTENT_KEY_PREFIX, receipt_date.strip(), str(total_cents)]
    )
    return fingerprint(canonical.encode("utf-8"))
