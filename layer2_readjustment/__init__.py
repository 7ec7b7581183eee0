"""
Layer 2 - Image Readjustment
Crops, fits and rotates the MRZ strip for OCR
"""
from .processor import CropRegion, MRZRegionProcessor

__all__ = ['CropRegion', 'MRZRegionProcessor']
