"""
Utility helper functions for safe data handling.
"""
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Optional


def safe_str(value: Any, default: str = "") -> str:
    """
    Safely convert value to string, handling None.

    Args:
        value: Any value to convert
        default: Default string if value is None

    Returns:
        String representation or default
    """
    if value is None:
        return default
    return str(value)


def safe_lower(value: Any) -> str:
    """Safely lowercase a value, handling None."""
    if value is None:
        return ""
    return str(value).lower()


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert value to float, handling None and invalid values.

    Args:
        value: Any value to convert
        default: Default float if conversion fails

    Returns:
        Float or default
    """
    if value is None:
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def safe_int(value: Any, default: int = 0) -> int:
    """Safely convert value to int, handling None and invalid values."""
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def generate_slug(text: Any) -> str:
    """
    Build a URL slug: accents stripped, lowercase, dash separated.

    "Panadería San Martín" -> "panaderia-san-martin"
    """
    normalized = unicodedata.normalize("NFKD", safe_str(text))
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower())
    return slug.strip("-")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or epoch seconds into an aware datetime.

    Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
