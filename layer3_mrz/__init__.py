"""
Layer 3 - MRZ Extraction
Handles OCR, TD3 parsing, check digit validation and quality scoring
"""
from .extractor import MRZExtractor
from .parser import MRZLineParser, MRZRecord
from .saver import ImageSaver
from .scorer import MAX_SCORE, meets_threshold, score

__all__ = [
    'MRZExtractor',
    'MRZLineParser',
    'MRZRecord',
    'ImageSaver',
    'MAX_SCORE',
    'meets_threshold',
    'score',
]
