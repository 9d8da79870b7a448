"""Utility functions for time, sanitization and display."""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import bleach


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how datetimes are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sanitize_text(text: str) -> str:
    """Strip any HTML/script content from free text entered by participants."""
    sanitized = bleach.clean(text or "", tags=[], strip=True)
    return " ".join(sanitized.split())


def sanitize_question_text(text: str) -> str:
    """Sanitize question text, allowing basic formatting tags only."""
    allowed_tags = ["b", "i", "u", "em", "strong", "p", "br", "code", "pre", "sub", "sup"]
    sanitized = bleach.clean(text or "", tags=allowed_tags, attributes={}, strip=True)
    return sanitized.strip()


def mask_phone(phone: str) -> str:
    """Show only the last 4 digits of a phone number."""
    if not phone:
        return ""
    return "*" * max(len(phone) - 4, 0) + phone[-4:]


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def seconds_between(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds()), 0)
