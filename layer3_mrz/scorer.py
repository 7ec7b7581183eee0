"""
Layer 3 - MRZ Extraction
Component: Quality scorer
Responsibility: Turn the checksum outcomes of a record into a confidence score
"""
from .parser import MRZRecord

MAX_SCORE = 5


def score(record: MRZRecord) -> int:
    """
    Count passing check digits on a record.

    Each of document number, birth date, expiry date, personal number and
    composite contributes one unit.
    """
    return sum(1 for ok in record.checks.values() if ok)


def meets_threshold(quality: float, threshold: float) -> bool:
    """A score equal to the threshold is accepted."""
    return quality >= threshold
