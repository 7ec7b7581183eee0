"""
Tests for Layer 1 - exposure feedback and camera capture.
"""
import random
import threading

import numpy as np
import pytest

from error_handlers import CameraInitError, CameraNotFoundError
from layer1_capture import camera as camera_module
from layer1_capture.camera import Camera, ToneSettings, apply_exposure, apply_tone, average_color
from layer1_capture.exposure import (
    ExposureCell,
    ExposureFeedbackController,
    ExposureSettings,
)


class TestExposureFeedbackController:
    """Test the proportional exposure controller."""

    @pytest.fixture
    def controller(self):
        return ExposureFeedbackController()

    def test_default_exposure(self, controller):
        assert controller.exposure == pytest.approx(0.8)

    def test_dark_sample_increases_exposure(self, controller):
        # lighting 2.7 -> 0.8 + (2.88 - 2.7) * 2
        assert controller.on_sample(0.9, 0.9, 0.9) == pytest.approx(1.16)

    def test_bright_sample_decreases_exposure(self, controller):
        controller.cell.set(2.0)
        # lighting 2.97 -> 2.0 - (2.97 - 2.88) * 2
        assert controller.on_sample(0.99, 0.99, 0.99) == pytest.approx(1.82)

    def test_in_band_sample_keeps_exposure(self, controller):
        controller.cell.set(1.5)
        assert controller.on_sample(0.96, 0.96, 0.96) == pytest.approx(1.5)

    @pytest.mark.parametrize("lighting", [2.85, 2.91])
    def test_band_edges_are_stable(self, controller, lighting):
        assert controller.on_sample(lighting, 0.0, 0.0) == pytest.approx(0.8)

    def test_clamped_to_maximum(self, controller):
        assert controller.on_sample(0.0, 0.0, 0.0) == pytest.approx(3.0)

    def test_clamped_to_minimum(self, controller):
        assert controller.on_sample(1.0, 1.0, 1.0) == pytest.approx(0.8 - 0.24)
        for _ in range(10):
            controller.on_sample(1.0, 1.0, 1.0)
        assert controller.exposure == pytest.approx(0.5)

    def test_exposure_never_leaves_clamp(self, controller):
        rng = random.Random(9303)
        for _ in range(2000):
            value = controller.on_sample(rng.random(), rng.random(), rng.random())
            assert 0.5 <= value <= 3.0

    def test_reset_restores_default(self, controller):
        controller.on_sample(0.0, 0.0, 0.0)
        controller.reset()
        assert controller.exposure == pytest.approx(0.8)

    def test_writes_shared_cell(self):
        cell = ExposureCell(default=1.0)
        controller = ExposureFeedbackController(ExposureSettings(default=1.0), cell)
        controller.on_sample(0.0, 0.0, 0.0)
        assert cell.get() == pytest.approx(3.0)

    def test_concurrent_samples_stay_clamped(self, controller):
        def worker(seed):
            rng = random.Random(seed)
            for _ in range(500):
                controller.on_sample(rng.random(), rng.random(), rng.random())

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert 0.5 <= controller.exposure <= 3.0

    def test_reset_waits_for_sample_update(self):
        """A reset during a sample update is applied after it, not lost."""
        cell = ExposureCell(default=0.8)
        cell.set(2.0)
        resetter = threading.Thread(target=cell.reset)
        blocked = []

        def adjust(value):
            resetter.start()
            resetter.join(timeout=0.1)
            blocked.append(resetter.is_alive())
            return value + 0.5

        assert cell.update(adjust) == pytest.approx(2.5)
        resetter.join(timeout=2.0)

        assert blocked == [True]
        assert cell.get() == pytest.approx(0.8)


class TestFrameHelpers:
    """Test software exposure and colour sampling."""

    def test_apply_exposure_scales(self):
        frame = np.full((4, 4, 3), 50, dtype=np.uint8)
        assert apply_exposure(frame, 1.0)[0, 0, 0] == 100

    def test_apply_exposure_saturates(self):
        frame = np.full((4, 4, 3), 200, dtype=np.uint8)
        assert apply_exposure(frame, 2.0)[0, 0, 0] == 255

    def test_average_color_channels(self):
        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        frame[:, :] = (0, 127.5, 255)  # BGR
        red, green, blue = average_color(frame, (0.0, 0.0, 1.0, 1.0))
        assert red == pytest.approx(1.0)
        assert green == pytest.approx(0.5, abs=0.01)
        assert blue == pytest.approx(0.0)

    def test_average_color_region(self):
        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        frame[:, 5:] = 255
        red, _, _ = average_color(frame, (0.5, 0.0, 0.5, 1.0))
        assert red == pytest.approx(1.0)

    def test_average_color_grayscale(self):
        frame = np.full((10, 10), 255, dtype=np.uint8)
        assert average_color(frame, (0.0, 0.0, 1.0, 1.0)) == pytest.approx((1.0, 1.0, 1.0))

    def test_neutral_tone_is_identity(self):
        frame = np.random.RandomState(7).randint(0, 256, (6, 6, 3)).astype(np.uint8)
        neutral = ToneSettings(highlights=1.0, saturation=1.0, contrast=1.0)
        assert np.array_equal(apply_tone(frame, neutral), frame)

    def test_tone_compresses_highlights(self):
        frame = np.full((4, 4), 228, dtype=np.uint8)
        tone = ToneSettings(highlights=0.7, saturation=1.0, contrast=1.0)
        # 128 + (228 - 128) * 0.7
        assert apply_tone(frame, tone)[0, 0] == 198

    def test_tone_desaturates(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[:, :] = (0, 0, 200)  # BGR red, luma ~60
        tone = ToneSettings(highlights=1.0, saturation=0.3, contrast=1.0)
        blue, green, red = apply_tone(frame, tone)[0, 0]
        assert red == pytest.approx(102, abs=1)
        assert green == pytest.approx(42, abs=1)
        assert blue == pytest.approx(42, abs=1)

    def test_default_tone_stretches_contrast(self):
        frame = np.zeros((4, 8), dtype=np.uint8)
        frame[:, :4] = 100
        frame[:, 4:] = 150
        toned = apply_tone(frame, ToneSettings())
        assert toned[0, 0] < 30
        assert toned[0, 7] > 180


class FakeVideoCapture:
    """Stand-in for cv2.VideoCapture producing a constant landscape frame."""

    def __init__(self, index, backend=None, opened=True):
        self.opened = opened
        self.released = False

    def isOpened(self):
        return self.opened and not self.released

    def set(self, prop, value):
        return True

    def get(self, prop):
        return 0.0

    def read(self):
        return True, np.full((108, 192, 3), 60, dtype=np.uint8)

    def release(self):
        self.released = True


class TestCamera:
    """Test capture lifecycle with a fake device."""

    @pytest.fixture
    def fake_device(self, monkeypatch):
        monkeypatch.setattr(Camera, "_check_camera_exists", lambda self: True)
        monkeypatch.setattr(camera_module.cv2, "VideoCapture", FakeVideoCapture)

    def test_missing_device(self):
        with pytest.raises(CameraNotFoundError):
            Camera(camera_index=987).initialize()

    def test_device_that_does_not_open(self, monkeypatch):
        monkeypatch.setattr(Camera, "_check_camera_exists", lambda self: True)
        monkeypatch.setattr(
            camera_module.cv2, "VideoCapture",
            lambda index, backend=None: FakeVideoCapture(index, opened=False),
        )
        with pytest.raises(CameraInitError):
            Camera().initialize()

    def test_snapshot_without_capture(self):
        assert Camera().get_snapshot(timeout=0.01) is None

    def test_snapshot_is_portrait_and_exposed(self, fake_device):
        cell = ExposureCell(default=1.0)
        cam = Camera(exposure_cell=cell, tone=None)
        cam.start_capture()
        try:
            frame = cam.get_snapshot(timeout=2.0)
        finally:
            cam.stop_capture()

        assert frame.shape == (192, 108, 3)
        assert frame[0, 0, 0] == 120
        assert not cam.is_capturing()
        assert cam.camera is None

    def test_samples_reported(self, fake_device):
        samples = []
        got_sample = threading.Event()

        def on_sample(r, g, b):
            samples.append((r, g, b))
            got_sample.set()

        cam = Camera(exposure_cell=ExposureCell(default=0.0), on_sample=on_sample, tone=None)
        cam.start_capture()
        try:
            assert got_sample.wait(timeout=2.0)
        finally:
            cam.stop_capture()

        r, g, b = samples[0]
        assert r == pytest.approx(60 / 255.0)

    def test_restart_capture(self, fake_device):
        cam = Camera()
        cam.start_capture()
        try:
            cam.restart_capture()
            assert cam.is_capturing()
            assert cam.get_snapshot(timeout=2.0) is not None
        finally:
            cam.stop_capture()

    def test_snapshot_is_toned_by_default(self, fake_device):
        cam = Camera(exposure_cell=ExposureCell(default=1.0))
        cam.start_capture()
        try:
            frame = cam.get_snapshot(timeout=2.0)
        finally:
            cam.stop_capture()

        # 60 -> 120 after exposure, pushed below mid-gray by the contrast stretch
        assert frame[0, 0, 0] < 100
