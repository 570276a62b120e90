"""
Request validation for /identify.

Collects every problem with the submitted email and phone number so the
client gets one itemized 400 instead of fixing fields one at a time.
"""
import re
from typing import List, Optional

EMAIL_MAX_LENGTH = 254
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 13

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(
    r"^[\+]?[1-9][\d]{0,3}[-.\s]?(\(?\d{1,4}\)?[-.\s]?)?\d{1,4}[-.\s]?\d{1,9}$"
)

MISSING_BOTH = "Either email or phoneNumber must be provided"
EMPTY_EMAIL = "Email cannot be empty"
INVALID_EMAIL = "Invalid email format"
EMPTY_PHONE = "Phone number cannot be empty"
INVALID_PHONE = "Invalid phone number format. Must be 10-13 digits with optional formatting"


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email)) and len(email) <= EMAIL_MAX_LENGTH


def is_valid_phone_number(phone_number: str) -> bool:
    digits = re.sub(r"\D", "", phone_number)
    if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        return False
    return bool(PHONE_RE.match(phone_number))


def validate_contact_data(email: Optional[str], phone_number: Optional[str]) -> List[str]:
    """Return a list of error messages; empty when the pair is acceptable."""
    errors = []

    if not email and not phone_number:
        errors.append(MISSING_BOTH)
        return errors

    if email:
        stripped = email.strip()
        if not stripped:
            errors.append(EMPTY_EMAIL)
        elif not is_valid_email(stripped):
            errors.append(INVALID_EMAIL)

    if phone_number:
        stripped = phone_number.strip()
        if not stripped:
            errors.append(EMPTY_PHONE)
        elif not is_valid_phone_number(stripped):
            errors.append(INVALID_PHONE)

    return errors
