"""
Invoice / document reference extraction from free text.
"""

import re
from typing import Optional

# "Invoice INV-1042", "inv# A1234", "Receipt: 2024-0042". The code must carry a digit
# so that "invoice payment" does not yield "payment".
MARKED_REFERENCE_PATTERN = re.compile(
    r"\b(?:invoice|inv|receipt|rcpt)\b[\s#:.]*((?=[A-Z-]*\d)[A-Z0-9][A-Z0-9-]{3,})\b",
    re.IGNORECASE
)

# PO-style codes: "PO-1234", "INV-1042"
PREFIXED_CODE_PATTERN = re.compile(r"\b([A-Z]{2,}-\d{3,})\b", re.IGNORECASE)


def extract_reference(text: Optional[str]) -> Optional[str]:
    """
    Return the first probable invoice/document reference in text, or None.

    The explicit marker pattern wins over the prefixed-code fallback.
    """
    if not text:
        return None

    for pattern in (MARKED_REFERENCE_PATTERN, PREFIXED_CODE_PATTERN):
        match = pattern.search(str(text))
        if match:
            return match.group(1)

    return None


def references_match(left: Optional[str], right: Optional[str]) -> bool:
    """Both present and equal ignoring case."""
    return bool(left) and bool(right) and left.casefold() == right.casefold()
