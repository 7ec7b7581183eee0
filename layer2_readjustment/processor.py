"""
Layer 2 - Image Readjustment
Responsibility: MRZ region isolation, downsizing and orientation correction
Output: Grayscale image of the MRZ strip, text running left to right
"""
import cv2
import numpy as np
import logging
from dataclasses import dataclass

from error_handlers import PreprocessingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropRegion:
    """MRZ strip in portrait frame pixels (1080x1920 capture)."""
    x: int = 500
    y: int = 110
    width: int = 500
    height: int = 1810

    def fits(self, frame_width, frame_height):
        return (
            self.x >= 0 and self.y >= 0
            and self.width > 0 and self.height > 0
            and self.x + self.width <= frame_width
            and self.y + self.height <= frame_height
        )


class MRZRegionProcessor:
    """
    Prepares a captured frame for OCR.

    The camera is held in portrait with the passport rotated, so the MRZ
    lines run vertically through a fixed strip of the frame. The strip is
    cropped, fitted to the OCR size and rotated back to horizontal.
    """

    def __init__(self,
                 crop=None,
                 fit_width=500,
                 fit_height=1920,
                 rotation=cv2.ROTATE_90_COUNTERCLOCKWISE,
                 grayscale=True):
        """
        Initialize MRZ region processor

        Args:
            crop: CropRegion of the MRZ strip (default: portrait MRZ strip)
            fit_width: Maximum width after resizing (default: 500px)
            fit_height: Maximum height after resizing (default: 1920px)
            rotation: cv2 rotate code, or None to keep orientation
            grayscale: Convert to single channel for OCR (default: True)
        """
        self.crop = crop or CropRegion()
        self.fit_width = fit_width
        self.fit_height = fit_height
        self.rotation = rotation
        self.grayscale = grayscale

        logger.info("MRZRegionProcessor initialized")
        logger.debug(f"  Crop region: {self.crop}")
        logger.debug(f"  Fit size: {fit_width}x{fit_height}")
        logger.debug(f"  Rotation: {rotation}")

    def process(self, frame):
        """
        Process a captured frame into the OCR input

        Args:
            frame: numpy.ndarray from Layer 1

        Returns:
            numpy.ndarray: Preprocessed MRZ image

        Raises:
            PreprocessingError: If the frame is unusable or the crop region
                does not fit inside it
        """
        if not isinstance(frame, np.ndarray) or frame.ndim not in (2, 3) or frame.size == 0:
            raise PreprocessingError("frame is not an image")

        try:
            logger.debug("Step 1: Cropping MRZ region")
            processed = self._crop(frame)

            logger.debug("Step 2: Fitting to OCR size")
            processed = self._fit(processed)

            if self.rotation is not None:
                logger.debug("Step 3: Correcting orientation")
                processed = cv2.rotate(processed, self.rotation)

            if self.grayscale and processed.ndim == 3:
                logger.debug("Step 4: Converting to grayscale")
                processed = cv2.cvtColor(processed, cv2.COLOR_BGR2GRAY)
        except cv2.error as e:
            logger.error(f"Error in processing pipeline: {e}")
            raise PreprocessingError(str(e)) from e

        logger.debug(f"  Output shape: {processed.shape}")
        return processed

    def _crop(self, frame):
        h, w = frame.shape[:2]
        c = self.crop
        if not c.fits(w, h):
            raise PreprocessingError(
                "crop region exceeds frame bounds",
                details={"crop": [c.x, c.y, c.width, c.height], "frame": [w, h]},
            )
        return frame[c.y:c.y + c.height, c.x:c.x + c.width]

    def _fit(self, image):
        """Scale to fit inside fit_width x fit_height, keeping aspect ratio"""
        h, w = image.shape[:2]
        scale = min(self.fit_width / w, self.fit_height / h)
        if scale == 1.0:
            return image

        size = (max(1, round(w * scale)), max(1, round(h * scale)))
        interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_CUBIC
        return cv2.resize(image, size, interpolation=interpolation)
