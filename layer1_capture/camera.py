"""
Layer 1 - Capture
Responsibility: Camera initialization, continuous frame capture with a
software exposure and tone filters, average-colour sampling and snapshots
Output: Exposure-adjusted, toned numpy.ndarray frames
"""
import cv2
import logging
import os
import threading
from dataclasses import dataclass

import numpy as np

from error_handlers import CameraInitError, CameraNotFoundError

from .exposure import ExposureCell

logger = logging.getLogger(__name__)

# Relative (x, y, width, height) of the MRZ strip in a portrait frame
DEFAULT_SAMPLE_REGION = (500.0 / 1080.0, 110.0 / 1920.0, 500.0 / 1080.0, 1810.0 / 1920.0)


def apply_exposure(frame, exposure):
    """Scale pixel intensities by 2 ** exposure, saturating at 255"""
    return cv2.convertScaleAbs(frame, alpha=2.0 ** exposure, beta=0)


@dataclass(frozen=True)
class ToneSettings:
    """Tone filters applied after exposure, before sampling and snapshots"""
    highlights: float = 0.7   # 1.0 keeps highlights, lower compresses them
    saturation: float = 0.3   # 0.0 grayscale, 1.0 unchanged
    contrast: float = 4.0     # 1.0 unchanged, stretched around mid-gray


def apply_tone(frame, tone):
    """
    Compress highlights, desaturate and raise contrast

    Args:
        frame: BGR or grayscale uint8 numpy.ndarray
        tone: ToneSettings

    Returns:
        numpy.ndarray: Toned frame of the same shape
    """
    levels = np.arange(256, dtype=np.float32)
    lut = np.where(levels > 128, 128 + (levels - 128) * tone.highlights, levels)
    frame = cv2.LUT(frame, np.clip(np.round(lut), 0, 255).astype(np.uint8))

    if frame.ndim == 3 and tone.saturation != 1.0:
        gray = cv2.cvtColor(cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY), cv2.COLOR_GRAY2BGR)
        frame = cv2.addWeighted(frame, tone.saturation, gray, 1.0 - tone.saturation, 0)

    return cv2.convertScaleAbs(frame, alpha=tone.contrast, beta=127.5 * (1.0 - tone.contrast))


def average_color(frame, region=DEFAULT_SAMPLE_REGION):
    """
    Mean colour of a relative region of a BGR frame

    Args:
        frame: BGR (or grayscale) numpy.ndarray
        region: Relative (x, y, width, height), each in 0..1

    Returns:
        tuple: (red, green, blue) means, each in 0..1
    """
    h, w = frame.shape[:2]
    rx, ry, rw, rh = region
    x0, y0 = int(rx * w), int(ry * h)
    x1, y1 = min(w, int((rx + rw) * w)), min(h, int((ry + rh) * h))
    patch = frame[y0:y1, x0:x1]
    if patch.size == 0:
        patch = frame

    blue, green, red, _ = cv2.mean(patch)
    if frame.ndim == 2:
        green = red = blue
    return red / 255.0, green / 255.0, blue / 255.0


class Camera:
    """
    Handles USB camera initialization and continuous frame capture.

    A reader thread keeps the latest exposure-adjusted frame and reports the
    mean colour of the sample region on every frame.
    """

    def __init__(self, camera_index=2, width=1920, height=1080, portrait=True,
                 exposure_cell=None, sample_region=DEFAULT_SAMPLE_REGION, on_sample=None,
                 tone=ToneSettings()):
        """
        Initialize camera handler

        Args:
            camera_index: V4L2 device index (default: 2 for /dev/video2)
            width: Requested sensor width
            height: Requested sensor height
            portrait: Rotate frames 90 degrees clockwise to portrait
            exposure_cell: Shared exposure value applied to every frame
            sample_region: Relative region used for colour samples
            on_sample: Callback receiving (red, green, blue) per frame
            tone: Tone filters after exposure, None to disable
        """
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.portrait = portrait
        self.exposure_cell = exposure_cell or ExposureCell()
        self.sample_region = sample_region
        self.on_sample = on_sample
        self.tone = tone

        self.camera = None
        self._thread = None
        self._stop_event = threading.Event()
        self._frame_ready = threading.Condition()
        self._latest = None
        self._frame_id = 0

        logger.info(f"Camera handler created for device index {camera_index}")

    def _check_camera_exists(self):
        """Check if camera device exists"""
        device_path = f"/dev/video{self.camera_index}"
        if not os.path.exists(device_path):
            logger.error(f"Camera device not found: {device_path}")
            raise CameraNotFoundError(self.camera_index)
        return True

    def initialize(self):
        """
        Initialize and configure the camera

        Returns:
            bool: True if successful

        Raises:
            CameraNotFoundError: If camera device doesn't exist
            CameraInitError: If camera fails to initialize
        """
        logger.info(f"Attempting to initialize camera at index {self.camera_index}")

        if self.is_opened():
            logger.debug("Camera already initialized")
            return True

        self._check_camera_exists()

        self.camera = cv2.VideoCapture(self.camera_index, cv2.CAP_V4L2)
        if not self.camera.isOpened():
            logger.error(f"Failed to open camera at index {self.camera_index}")
            self.camera = None
            raise CameraInitError(
                self.camera_index,
                reason="Camera opened but isOpened() returned False"
            )

        self.camera.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc('M', 'J', 'P', 'G'))
        self.camera.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.camera.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.camera.set(cv2.CAP_PROP_FPS, 30)
        self.camera.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        actual_width = self.camera.get(cv2.CAP_PROP_FRAME_WIDTH)
        actual_height = self.camera.get(cv2.CAP_PROP_FRAME_HEIGHT)
        logger.info("Camera initialized successfully")
        logger.debug(f"Resolution: {actual_width}x{actual_height}")
        return True

    def start_capture(self):
        """Open the camera if needed and start the reader thread"""
        if self.is_capturing():
            return True

        self.initialize()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._capture_loop, name="camera-capture", daemon=True
        )
        self._thread.start()
        logger.info("Capture started")
        return True

    def stop_capture(self):
        """Stop the reader thread and release the device"""
        self._stop_event.set()
        with self._frame_ready:
            self._frame_ready.notify_all()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._thread = None
        self.release()

    def restart_capture(self):
        """Stop and start capture again after a failed snapshot"""
        logger.info("Restarting capture")
        self.stop_capture()
        return self.start_capture()

    def is_capturing(self):
        return self._thread is not None and self._thread.is_alive()

    def is_opened(self):
        """Check if camera is currently open"""
        return self.camera is not None and self.camera.isOpened()

    def get_snapshot(self, timeout=1.0):
        """
        Wait for the next frame and return a copy of it

        Args:
            timeout: Seconds to wait for a new frame

        Returns:
            numpy.ndarray: Exposure-adjusted frame, or None if unavailable
        """
        if not self.is_capturing():
            logger.warning("Snapshot requested while capture is stopped")
            return None

        with self._frame_ready:
            start_id = self._frame_id
            self._frame_ready.wait_for(
                lambda: self._frame_id > start_id or self._stop_event.is_set(),
                timeout=timeout,
            )
            if self._frame_id <= start_id or self._latest is None:
                logger.warning("No new frame within snapshot timeout")
                return None
            return self._latest.copy()

    def _prepare(self, frame):
        if self.portrait:
            frame = cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
        frame = apply_exposure(frame, self.exposure_cell.get())
        if self.tone is not None:
            frame = apply_tone(frame, self.tone)
        return frame

    def _capture_loop(self):
        logger.debug("Capture loop running")
        while not self._stop_event.is_set():
            ret, frame = self.camera.read()
            if not ret:
                logger.warning("Failed to read frame from camera")
                self._stop_event.wait(0.05)
                continue

            try:
                frame = self._prepare(frame)
                with self._frame_ready:
                    self._latest = frame
                    self._frame_id += 1
                    self._frame_ready.notify_all()

                if self.on_sample is not None:
                    self.on_sample(*average_color(frame, self.sample_region))
            except Exception as e:
                logger.warning(f"Frame processing error: {e}")
        logger.debug("Capture loop stopped")

    def release(self):
        """Release camera resources"""
        logger.info("Releasing camera")

        if self.camera is not None:
            self.camera.release()
            self.camera = None
            logger.info("Camera released successfully")
