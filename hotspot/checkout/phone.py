"""
Phone number canonicalization for M-Pesa (Kenya).

    0712 345 678     -> 254712345678
    712345678        -> 254712345678
    +254 712 345 678 -> 254712345678
"""

import re

from .exceptions import InvalidPhoneNumber

COUNTRY_CODE = "254"
TRUNK_PREFIX = "0"
MIN_SUBSCRIBER_DIGITS = 9

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(phone_number) -> str:
    """
    Return ``phone_number`` as digits only, prefixed with the country code.

    Raises:
        InvalidPhoneNumber: fewer than 9 digits remain after stripping
    """
    digits = _NON_DIGITS.sub("", str(phone_number or ""))

    if len(digits) < MIN_SUBSCRIBER_DIGITS:
        raise InvalidPhoneNumber()

    if digits.startswith(TRUNK_PREFIX):
        return COUNTRY_CODE + digits[len(TRUNK_PREFIX):]
    if not digits.startswith(COUNTRY_CODE):
        return COUNTRY_CODE + digits
    return digits

