"""
Tests for Layer 2 - MRZ region preprocessing.
"""
import cv2
import numpy as np
import pytest

from error_handlers import PreprocessingError
from layer2_readjustment import CropRegion, MRZRegionProcessor


@pytest.fixture
def portrait_frame():
    """Blank 1080x1920 portrait BGR frame."""
    return np.full((1920, 1080, 3), 200, dtype=np.uint8)


class TestCropRegion:

    def test_default_fits_portrait_frame(self):
        assert CropRegion().fits(1080, 1920)

    def test_does_not_fit_landscape_frame(self):
        assert not CropRegion().fits(1920, 1080)

    def test_negative_origin(self):
        assert not CropRegion(x=-1).fits(1080, 1920)


class TestMRZRegionProcessor:

    def test_default_pipeline(self, portrait_frame):
        image = MRZRegionProcessor().process(portrait_frame)

        # 500x1810 strip rotated left, single channel
        assert image.shape == (500, 1810)
        assert image.dtype == np.uint8

    def test_rotation_direction(self):
        frame = np.zeros((40, 20), dtype=np.uint8)
        frame[0, :] = 255  # top row marks the start of the text
        processor = MRZRegionProcessor(crop=CropRegion(0, 0, 20, 40), fit_width=20, fit_height=40)

        image = processor.process(frame)

        assert image.shape == (20, 40)
        assert image[:, 0].min() == 255

    def test_downsizes_to_fit(self):
        frame = np.zeros((400, 200, 3), dtype=np.uint8)
        processor = MRZRegionProcessor(
            crop=CropRegion(0, 0, 200, 400), fit_width=50, fit_height=400, rotation=None
        )
        assert processor.process(frame).shape == (100, 50)

    def test_upscales_small_crop(self):
        frame = np.zeros((100, 50, 3), dtype=np.uint8)
        processor = MRZRegionProcessor(
            crop=CropRegion(0, 0, 50, 100), fit_width=100, fit_height=400, rotation=None
        )
        assert processor.process(frame).shape == (200, 100)

    def test_keeps_color_when_requested(self, portrait_frame):
        processor = MRZRegionProcessor(grayscale=False, rotation=None)
        assert processor.process(portrait_frame).shape == (1810, 500, 3)

    def test_crop_outside_frame_is_fatal(self):
        landscape = np.zeros((1080, 1920, 3), dtype=np.uint8)
        with pytest.raises(PreprocessingError) as exc_info:
            MRZRegionProcessor().process(landscape)
        assert exc_info.value.error_code == "PREPROCESSING_FAILED"
        assert exc_info.value.details["frame"] == [1920, 1080]

    @pytest.mark.parametrize("frame", [None, "frame", np.zeros((0, 0, 3), dtype=np.uint8)])
    def test_not_an_image(self, frame):
        with pytest.raises(PreprocessingError):
            MRZRegionProcessor().process(frame)

    def test_cv2_failure_is_wrapped(self, portrait_frame, monkeypatch):
        def broken_rotate(image, code):
            raise cv2.error("rotate failed")

        monkeypatch.setattr(cv2, "rotate", broken_rotate)
        with pytest.raises(PreprocessingError):
            MRZRegionProcessor().process(portrait_frame)
