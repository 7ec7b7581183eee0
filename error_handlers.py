"""
Error Handling System
Provides consistent error types and responses across all scanner layers
"""
import logging

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """Base exception for scanner errors"""
    def __init__(self, message, error_code, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert error to JSON-serializable dict"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


# Layer 1 Errors - Camera
class CameraError(ScannerError):
    """Camera-related errors"""
    pass


class CameraNotFoundError(CameraError):
    """Camera device not found"""
    def __init__(self, camera_index):
        super().__init__(
            message=f"Camera not found at /dev/video{camera_index}",
            error_code="CAMERA_NOT_FOUND",
            details={
                "camera_index": camera_index,
                "suggestion": "Check camera connection and device index"
            }
        )


class CameraInitError(CameraError):
    """Camera initialization failed"""
    def __init__(self, camera_index, reason=None):
        super().__init__(
            message=f"Failed to initialize camera at /dev/video{camera_index}",
            error_code="CAMERA_INIT_FAILED",
            details={
                "camera_index": camera_index,
                "reason": reason,
                "suggestion": "Check camera permissions and ensure no other app is using it"
            }
        )


class FrameCaptureError(CameraError):
    """Snapshot could not be taken from the running capture"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to capture frame from camera",
            error_code="FRAME_UNAVAILABLE",
            details={
                "reason": reason,
                "suggestion": "Capture is restarted and the attempt retried"
            }
        )


# Layer 2 Errors - Image Processing
class ProcessingError(ScannerError):
    """Image processing errors"""
    pass


class PreprocessingError(ProcessingError):
    """Crop, resize or rotation failed. Retrying cannot fix this."""
    def __init__(self, reason, details=None):
        super().__init__(
            message=f"Preprocessing failed: {reason}",
            error_code="PREPROCESSING_FAILED",
            details={
                "reason": str(reason),
                **(details or {}),
                "suggestion": "Check the configured MRZ crop region against the camera resolution"
            }
        )


# Layer 3 Errors - MRZ Extraction
class MRZError(ScannerError):
    """MRZ extraction errors"""
    pass


class InvalidCharacterError(MRZError):
    """Character outside the MRZ alphabet used in a checksum"""
    def __init__(self, character):
        self.character = character
        super().__init__(
            message=f"Invalid MRZ character: {character!r}",
            error_code="INVALID_CHARACTER",
            details={"character": character}
        )


class ParseError(MRZError):
    """Recognized text could not be turned into an MRZ record"""
    pass


class MalformedLayoutError(ParseError):
    """Text does not split into two 44-character TD3 lines"""
    def __init__(self, reason, details=None):
        super().__init__(
            message=f"Malformed MRZ layout: {reason}",
            error_code="MALFORMED_LAYOUT",
            details={
                "reason": reason,
                **(details or {}),
                "suggestion": "Ensure passport MRZ area is fully inside the scan region"
            }
        )


class MalformedNameError(ParseError):
    """Name field has no surname/given-name separator"""
    def __init__(self, name_field):
        super().__init__(
            message="MRZ name field has no '<<' separator",
            error_code="MALFORMED_NAME",
            details={"name_field": name_field}
        )


class OCREngineError(MRZError):
    """OCR engine is missing or crashed"""
    def __init__(self, reason):
        super().__init__(
            message=f"OCR engine failed: {reason}",
            error_code="OCR_ENGINE_FAILED",
            details={
                "reason": str(reason),
                "suggestion": "Check that tesseract is installed and TESSERACT_CMD points to it"
            }
        )


# Layer 4 Errors - Scan orchestration
class ScanError(ScannerError):
    """Scan session errors"""
    pass


class ScanInProgressError(ScanError):
    """A scan session is already running"""
    def __init__(self, phase):
        super().__init__(
            message="A scan session is already in progress",
            error_code="SCAN_IN_PROGRESS",
            details={
                "phase": phase,
                "suggestion": "Call /stop_scan before starting a new scan"
            }
        )


# Error response helpers
def handle_error(error, log_message=None):
    """
    Handle error consistently across the application

    Args:
        error: Exception that occurred
        log_message: Optional custom log message

    Returns:
        dict: Error response for JSON serialization
    """
    if log_message:
        logger.error(log_message)

    if isinstance(error, ScannerError):
        # Known scanner error
        logger.error(f"{error.error_code}: {error.message}")
        if error.details:
            logger.debug(f"Error details: {error.details}")
        return error.to_dict()
    else:
        # Unexpected error
        logger.error(f"Unexpected error: {error}")
        logger.exception("Full traceback:")
        return {
            "success": False,
            "error": "An unexpected error occurred",
            "error_code": "UNEXPECTED_ERROR",
            "details": {
                "error_type": type(error).__name__,
                "error_message": str(error)
            }
        }
