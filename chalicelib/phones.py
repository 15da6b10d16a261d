"""
Phone number helpers.

Every function here is total: None and garbage come back as an empty string
(or False) instead of raising, so callers can normalize first and validate later.
"""
import re

from chalicelib.constants.constants import PHONE_MIN_DIGITS

_NON_DIGITS = re.compile(r'\D')

COUNTRY_CODE = '972'


def _digits(raw) -> str:
    if raw is None:
        return ''
    return _NON_DIGITS.sub('', str(raw))


def normalize(raw) -> str:
    """
    '+972 50-123-4567' -> '+972501234567', '050 123 4567' -> '0501234567'
    """
    if raw is None:
        return ''
    trimmed = str(raw).strip()
    digits = _digits(trimmed)
    if not digits:
        return ''
    return f'+{digits}' if trimmed.startswith('+') else digits


def comparison_key(raw) -> str:
    """
    Key that is equal for the local and the international spelling of one number:
    '0501234567', '+972501234567', '972501234567' and '501234567' all give '501234567'
    """
    digits = _digits(raw)
    if digits.startswith(COUNTRY_CODE) and len(digits) >= 11:
        digits = digits[len(COUNTRY_CODE):]
        return digits[1:] if digits.startswith('0') else digits
    if digits.startswith('0') and len(digits) >= PHONE_MIN_DIGITS:
        return digits[1:]
    return digits


def is_valid(canonical) -> bool:
    return len(_digits(canonical)) >= PHONE_MIN_DIGITS


def same_phone(first, second) -> bool:
    first_normalized, second_normalized = normalize(first), normalize(second)
    if first_normalized and first_normalized == second_normalized:
        return True
    first_key = comparison_key(first)
    return bool(first_key) and first_key == comparison_key(second)
