"""
Layer 3 - MRZ Extraction
Component: MRZ extractor
Responsibility: Run Tesseract OCR over the preprocessed MRZ region
"""
import logging

import pytesseract

from error_handlers import OCREngineError

from .characters import OCR_WHITELIST

logger = logging.getLogger(__name__)


class MRZExtractor:
    """Handles OCR of the MRZ region with Tesseract"""

    def __init__(self, tesseract_cmd=None, language="eng", page_segmentation=6):
        """
        Initialize MRZ extractor

        Args:
            tesseract_cmd: Path to the tesseract binary (uses PATH if None)
            language: Tesseract language / traineddata name
            page_segmentation: Tesseract --psm mode (6 = uniform block of text)
        """
        logger.info("Initializing MRZExtractor")

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
            logger.debug(f"Tesseract command: {tesseract_cmd}")

        self.language = language
        self.config = self.build_config(page_segmentation)
        logger.debug(f"Tesseract config: {self.config}")
        logger.info("MRZExtractor initialized successfully")

    @staticmethod
    def build_config(page_segmentation=6):
        """
        Tesseract options for MRZ text

        Restricts output to the MRZ whitelist and disables the x-height
        quality check, which rejects the monospace OCR-B glyphs.
        """
        return (
            f"--psm {page_segmentation} "
            f"-c tessedit_char_whitelist={OCR_WHITELIST} "
            f"-c x_ht_quality_check=0"
        )

    def recognize(self, image):
        """
        Recognize text in the MRZ image

        Args:
            image: Preprocessed numpy.ndarray from Layer 2

        Returns:
            str: Recognized text, empty if nothing was read

        Raises:
            OCREngineError: If tesseract is not installed
        """
        logger.debug("Starting OCR...")

        try:
            text = pytesseract.image_to_string(image, lang=self.language, config=self.config)
        except pytesseract.TesseractNotFoundError as e:
            logger.error(f"Tesseract not available: {e}")
            raise OCREngineError(str(e)) from e
        except pytesseract.TesseractError as e:
            logger.warning(f"Tesseract failed on this frame: {e}")
            return ""

        text = text.strip()
        if text:
            logger.debug(f"✓ OCR returned {len(text)} characters")
        else:
            logger.debug("OCR returned no text")
        return text
