"""
Layer 3 - MRZ Extraction
Component: Attempt saver
Responsibility: Save preprocessed MRZ images and scan results in debug mode
for traceability
"""
import os
import json
import cv2
import logging
from datetime import datetime

logger = logging.getLogger(__name__)


class ImageSaver:
    """Handles saving scan attempt images and results"""

    def __init__(self, base_dir="Logs/scan_attempts"):
        """
        Initialize saver

        Args:
            base_dir: Base directory (default: "Logs/scan_attempts")

        Directory structure:
            scan_attempts/
            ├── images/  # PNG files of the OCR input
            └── json/    # Recognized text, record and score per attempt
        """
        self.base_dir = base_dir
        self.images_dir = os.path.join(base_dir, "images")
        self.json_dir = os.path.join(base_dir, "json")

        logger.info("ImageSaver initialized")
        logger.debug(f"  Base dir: {base_dir}")

    def _ensure_directories(self):
        """Create directory structure if it doesn't exist"""
        for directory in [self.base_dir, self.images_dir, self.json_dir]:
            if not os.path.exists(directory):
                os.makedirs(directory)
                logger.info(f"Created directory: {directory}")

    @staticmethod
    def _stem(attempt):
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return f"attempt_{attempt:04d}_{timestamp}"

    def save_attempt(self, attempt, image, result_data):
        """
        Save the OCR input image and the attempt result

        Args:
            attempt: Attempt number within the session
            image: numpy.ndarray fed to OCR
            result_data: Dictionary with text, record and score

        Returns:
            dict: Contains image_path and json_path
        """
        self._ensure_directories()
        stem = self._stem(attempt)

        image_path = os.path.join(self.images_dir, f"{stem}.png")
        if not cv2.imwrite(image_path, image):
            logger.warning(f"Could not write image: {image_path}")
            image_path = None

        json_path = os.path.join(self.json_dir, f"{stem}.json")
        full_data = {
            **result_data,
            "attempt": attempt,
            "image_path": image_path,
            "capture_time": datetime.now().isoformat()
        }
        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(full_data, f, indent=2, ensure_ascii=False)

        logger.debug(f"Saved attempt {attempt} to {json_path}")
        return {"image_path": image_path, "json_path": json_path}
