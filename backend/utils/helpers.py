"""
Utility helpers for the member tools backend

Small pure functions shared by the state machine, the templates and
the persistence layer: identifiers, currency handling and multi-select
normalization.
"""

import re
import uuid
from datetime import datetime
from typing import Any, List, Optional


def generate_record_id(short=True):
    """
    Generate unique record identifier (documents, tickets, flows)

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Record ID

    Examples:
        >>> generate_record_id()
        'a3f7e2b9'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def generate_document_filename(document_type, extension="json"):
    """
    Generate timestamped filename with unique ID

    Format: {document_type}_{YYYYMMDD_HHMMSS}_{short_uuid}.{extension}

    Examples:
        >>> generate_document_filename("cover-letter")
        'cover-letter_20251126_153045_a3f7e2b9.json'
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    short_id = generate_record_id(short=True)
    return f"{document_type}_{timestamp}_{short_id}.{extension}"


def split_multi_value(value: Any) -> List[str]:
    """
    Normalize a multi-select answer into a list of option keys.

    The chat transport joins selections with commas, so
    "birth_cert, marriage_cert" and ["birth_cert", "marriage_cert"]
    normalize to the same list. Order of first appearance is kept and
    duplicates are dropped.

    Args:
        value: list, comma-joined string, single scalar or None

    Returns:
        list[str]: Cleaned option keys (possibly empty)
    """
    if value is None:
        return []

    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]

    result = []
    for item in items:
        cleaned = str(item).strip()
        if cleaned and cleaned not in result:
            result.append(cleaned)
    return result


def parse_currency(value: Any) -> Optional[int]:
    """
    Parse a currency answer into an integer amount.

    Accepts numbers and strings such as "€500,000" or "$ 1 200".
    Decimal cents are dropped.

    Returns:
        int amount, or None when no digits are present
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    # Drop cents written as ".50" or ",50" at the end
    text = re.sub(r"[.,]\d{1,2}$", "", text)
    digits = re.sub(r"[^0-9]", "", text)
    if not digits:
        return None
    return int(digits)


def format_currency(amount: Any, symbol: str = "€") -> str:
    """
    Format an integer amount with thousands separators.

    Examples:
        >>> format_currency(400000)
        '€400,000'
    """
    return f"{symbol}{int(round(amount)):,}"


def humanize_key(key: str) -> str:
    """Turn an option key like 'birth_cert' into 'Birth Cert'."""
    return key.replace("_", " ").replace("-", " ").title()
