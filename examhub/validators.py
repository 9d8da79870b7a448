"""Input validation for registration and OTP requests."""

import re
from typing import Optional

from examhub.errors import ValidationFailed

# Bangladeshi local mobile format after normalization
PHONE_PATTERN = re.compile(r"^01[0-9]{9}$")

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

BANGLA_DIGITS = str.maketrans("০১২৩৪৫৬৭৮৯", "0123456789")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 120
COLLEGE_MIN_LENGTH = 2
COLLEGE_MAX_LENGTH = 200
CLASS_MAX_LENGTH = 60
EMAIL_MAX_LENGTH = 255


def normalize_phone(phone: str) -> str:
    """Return the phone as ``01XXXXXXXXX`` or raise ``ValidationFailed``.

    Accepts spaces, dashes, parentheses, a ``+880`` / ``880`` country prefix
    and Bangla digits.
    """
    cleaned = (phone or "").translate(BANGLA_DIGITS)
    cleaned = re.sub(r"[\s\-()+]", "", cleaned)
    if cleaned.startswith("880"):
        cleaned = cleaned[2:]

    if not PHONE_PATTERN.match(cleaned):
        raise ValidationFailed("Invalid phone number")
    return cleaned


def normalize_code(code: str, length: int = 6) -> str:
    cleaned = (code or "").translate(BANGLA_DIGITS).strip()
    if not cleaned.isdigit() or len(cleaned) != length:
        raise ValidationFailed(f"Invalid code format. Please enter a {length}-digit code.")
    return cleaned


def validate_email(email: Optional[str]) -> Optional[str]:
    """Return a normalized email, ``None`` for blank input, or raise."""
    if email is None or not email.strip():
        return None

    email = email.strip().lower()
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationFailed("Email address is too long.")
    if not EMAIL_PATTERN.match(email):
        raise ValidationFailed("Please enter a valid email address format.")

    local_part, _, domain = email.partition("@")
    if not local_part or len(local_part) > 64 or "." not in domain:
        raise ValidationFailed("Invalid email address format.")
    return email


def validate_registration_fields(name: str, class_name: str, college: str) -> None:
    """Collect field errors and raise them together, like the form validators do."""
    errors: dict[str, str] = {}

    if len(name) < NAME_MIN_LENGTH:
        errors["name"] = f"Name must be at least {NAME_MIN_LENGTH} characters"
    elif len(name) > NAME_MAX_LENGTH:
        errors["name"] = f"Name must be at most {NAME_MAX_LENGTH} characters"

    if not class_name:
        errors["class_name"] = "Class is required"
    elif len(class_name) > CLASS_MAX_LENGTH:
        errors["class_name"] = f"Class must be at most {CLASS_MAX_LENGTH} characters"

    if len(college) < COLLEGE_MIN_LENGTH:
        errors["college"] = "College name is required"
    elif len(college) > COLLEGE_MAX_LENGTH:
        errors["college"] = f"College name must be at most {COLLEGE_MAX_LENGTH} characters"

    if errors:
        raise ValidationFailed("; ".join(errors.values()))
