"""
Layer 1 - Capture
Component: Exposure feedback
Responsibility: Nudge the software exposure of the capture stream toward a
stable luminance band using live average-colour samples
"""
import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExposureSettings:
    """Target band and limits for the exposure controller."""
    default: float = 0.8
    lower_bound: float = 2.85    # r + g + b, each channel in 0..1
    upper_bound: float = 2.91
    target: float = 2.88
    gain: float = 2.0
    minimum: float = 0.5
    maximum: float = 3.0


class ExposureCell:
    """
    Single shared exposure value.

    Written by the colour sampling thread, read by the capture thread and
    reset by the orchestrator when a session starts.
    """

    def __init__(self, default=0.8):
        self.default = default
        self._value = default
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            return self._value

    def set(self, value):
        with self._lock:
            self._value = value

    def update(self, fn):
        """Replace the value with fn(value) under one lock hold"""
        with self._lock:
            self._value = fn(self._value)
            return self._value

    def reset(self):
        self.set(self.default)


class ExposureFeedbackController:
    """
    Proportional exposure controller.

    No integral or derivative term: the exposure can oscillate around the
    band edges when the scene sits close to them.
    """

    def __init__(self, settings=None, cell=None):
        """
        Args:
            settings: Band and clamp configuration (defaults if None)
            cell: Shared exposure cell (created if None)
        """
        self.settings = settings or ExposureSettings()
        self.cell = cell or ExposureCell(self.settings.default)
        logger.debug(f"ExposureFeedbackController: {self.settings}")

    @property
    def exposure(self):
        return self.cell.get()

    def reset(self):
        """Restore the default exposure for a new session"""
        self.cell.reset()
        logger.debug(f"Exposure reset to {self.cell.default}")

    def on_sample(self, mean_red, mean_green, mean_blue):
        """
        Update exposure from one average-colour sample

        Args:
            mean_red: Mean red channel over the sample region (0..1)
            mean_green: Mean green channel (0..1)
            mean_blue: Mean blue channel (0..1)

        Returns:
            float: New exposure value
        """
        lighting = mean_red + mean_green + mean_blue
        return self.cell.update(lambda exposure: self._adjust(exposure, lighting))

    def _adjust(self, exposure, lighting):
        s = self.settings
        if lighting < s.lower_bound:
            exposure += (s.target - lighting) * s.gain
        elif lighting > s.upper_bound:
            exposure -= (lighting - s.target) * s.gain
        return min(max(exposure, s.minimum), s.maximum)
