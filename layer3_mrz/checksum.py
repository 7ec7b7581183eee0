"""
Layer 3 - MRZ Extraction
Component: Checksum engine
Responsibility: ICAO 9303 weighted check digits over MRZ field substrings
"""
import logging
import string
from itertools import cycle

from error_handlers import InvalidCharacterError

from .characters import FILLER, is_filler, value_of

logger = logging.getLogger(__name__)

WEIGHTS = (7, 3, 1)


def compute_check_digit(substring):
    """
    Compute the check digit of an MRZ field

    Args:
        substring: Field characters, read left to right

    Returns:
        int: Check digit 0-9

    Raises:
        InvalidCharacterError: If the field contains a non-MRZ character
    """
    total = sum(value_of(c) * w for c, w in zip(substring, cycle(WEIGHTS)))
    return total % 10


def validate(substring, declared_check_char):
    """
    Validate a field against its declared check character.

    A filler in the check position fails unless the whole field is filler:
    an empty optional field may carry ``<`` as its check digit.

    Args:
        substring: Field characters
        declared_check_char: Check character read from the MRZ

    Returns:
        bool: True if the declared check digit matches
    """
    if declared_check_char == FILLER:
        return is_filler(substring)

    if len(declared_check_char) != 1 or declared_check_char not in string.digits:
        logger.debug(f"Non-digit check character {declared_check_char!r} for {substring!r}")
        return False

    try:
        computed = compute_check_digit(substring)
    except InvalidCharacterError as e:
        logger.debug(f"Checksum failed on {substring!r}: {e.message}")
        return False

    return computed == int(declared_check_char)
