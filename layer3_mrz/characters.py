"""
Layer 3 - MRZ Extraction
Component: Character value table
Responsibility: Map MRZ characters to the numeric values used by check digits
"""
import string

from error_handlers import InvalidCharacterError

FILLER = "<"

# Characters the OCR engine is allowed to emit. Lower-case letters are
# accepted by the engine but are not part of the MRZ alphabet.
OCR_WHITELIST = string.digits + string.ascii_lowercase + string.ascii_uppercase + FILLER

MRZ_ALPHABET = string.digits + string.ascii_uppercase + FILLER

_VALUES = {digit: int(digit) for digit in string.digits}
_VALUES.update({letter: 10 + i for i, letter in enumerate(string.ascii_uppercase)})
_VALUES[FILLER] = 0


def value_of(character):
    """
    Numeric value of a single MRZ character

    Args:
        character: One character from the MRZ alphabet

    Returns:
        int: 0-9 for digits, 10-35 for A-Z, 0 for the filler

    Raises:
        InvalidCharacterError: If the character is not in the MRZ alphabet
    """
    try:
        return _VALUES[character]
    except (KeyError, TypeError):
        raise InvalidCharacterError(character) from None


def is_filler(text):
    """True when text is non-empty and made only of filler characters"""
    return bool(text) and all(c == FILLER for c in text)
