"""General utility functions."""

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from unidecode import unidecode


def norm(text: Any) -> str:
    """Normalize text for fuzzy comparison (lowercase, accents stripped)."""
    if not text:
        return ""
    return unidecode(str(text).strip().lower())


def normalize_registry_value(value: Any) -> Optional[str]:
    """
    Normalize a raw registration field before it is stored.

    Registration files carry free text with stray whitespace and mixed
    accents. Values are trimmed, inner whitespace collapsed, accents
    transliterated and the result upper-cased, matching the upstream
    file convention. Empty values become None.

    Args:
        value: Raw field value (any type)

    Returns:
        Normalized text or None
    """
    if value is None:
        return None

    cleaned = re.sub(r'\s+', ' ', str(value)).strip()
    if not cleaned or cleaned.lower() == "nan":
        return None

    return unidecode(cleaned).upper()


def pair_key(make_id: int, model_id: int) -> str:
    """Key of an uncurated (make, model) pair in the mapping store."""
    return f"{make_id}_{model_id}"


def canonical_key(make: str, model: str) -> Tuple[str, str]:
    """Lookup key of a canonical (make, model) pair."""
    return (make, model)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
