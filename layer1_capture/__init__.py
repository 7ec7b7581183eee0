"""
Layer 1 - Capture
Camera handling, software exposure, tone filters and exposure feedback
"""
from .camera import Camera, ToneSettings, apply_exposure, apply_tone, average_color
from .exposure import ExposureCell, ExposureFeedbackController, ExposureSettings

__all__ = [
    'Camera',
    'apply_exposure',
    'apply_tone',
    'average_color',
    'ExposureCell',
    'ExposureFeedbackController',
    'ExposureSettings',
    'ToneSettings',
]
