"""
Tests for Layer 4 - scan orchestration state machine.
"""
import threading
import time

import numpy as np
import pytest

from error_handlers import (
    CameraInitError,
    FrameCaptureError,
    OCREngineError,
    PreprocessingError,
    ScanInProgressError,
)
from layer1_capture.exposure import ExposureFeedbackController
from layer4_orchestration import ScanConfig, ScanOrchestrator, ScanPhase

FRAME = np.zeros((8, 8), dtype=np.uint8)


class FakeCamera:
    """Scripted capture collaborator. None in the script = no snapshot."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.snapshots = 0
        self.starts = 0
        self.stops = 0
        self.restarts = 0

    def start_capture(self):
        self.starts += 1

    def stop_capture(self):
        self.stops += 1

    def restart_capture(self):
        self.restarts += 1

    def get_snapshot(self, timeout=1.0):
        self.snapshots += 1
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return FRAME


class BusyRestartCamera(FakeCamera):
    """Fails the first restarts as if the device were still held."""

    def __init__(self, script=None, failing_restarts=1):
        super().__init__(script)
        self.failing_restarts = failing_restarts

    def restart_capture(self):
        super().restart_capture()
        if self.restarts <= self.failing_restarts:
            raise CameraInitError(0, reason="device busy")


class FakeProcessor:

    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def process(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return frame


class FakeOCR:
    """Returns scripted texts, repeating the last one."""

    def __init__(self, texts, hook=None):
        self.texts = list(texts)
        self.hook = hook
        self.calls = 0

    def recognize(self, image):
        self.calls += 1
        if self.hook is not None:
            self.hook(self)
        if len(self.texts) > 1:
            return self.texts.pop(0)
        return self.texts[0]


class FakeSaver:

    def __init__(self):
        self.saved = []

    def save_attempt(self, attempt, image, data):
        self.saved.append((attempt, data))


class Callbacks:

    def __init__(self):
        self.successes = []
        self.aborts = 0

    def on_success(self, record, score):
        self.successes.append((record, score))

    def on_abort(self):
        self.aborts += 1


@pytest.fixture
def valid_text(sample_mrz_text):
    return sample_mrz_text


@pytest.fixture
def three_check_text(sample_mrz_td3):
    """Document number misread: document and composite checks fail."""
    line1, line2 = sample_mrz_td3
    return f"{line1}\n{'M' + line2[1:]}"


@pytest.fixture
def callbacks():
    return Callbacks()


def make_orchestrator(camera=None, processor=None, ocr=None, **config):
    config.setdefault("scan_delay", 0.0)
    return ScanOrchestrator(
        camera=camera or FakeCamera(),
        processor=processor or FakeProcessor(),
        extractor=ocr,
        config=ScanConfig(**config),
    )


class TestScanSuccess:

    def test_first_attempt_succeeds(self, valid_text, callbacks):
        camera = FakeCamera()
        orch = make_orchestrator(camera=camera, ocr=FakeOCR([valid_text]))

        result = orch.run(callbacks.on_success, callbacks.on_abort)

        assert result.succeeded is True
        assert result.score == 5
        assert result.record.surname == "ERIKSSON"
        assert result.session.history == [
            ScanPhase.AWAITING_FRAME,
            ScanPhase.PREPROCESSING,
            ScanPhase.RECOGNIZING,
            ScanPhase.VALIDATING,
            ScanPhase.SUCCEEDED,
        ]
        assert orch.phase == ScanPhase.SUCCEEDED
        assert callbacks.successes == [(result.record, 5)]
        assert callbacks.aborts == 0
        assert camera.starts == 1
        assert camera.stops >= 1

    def test_retries_until_valid(self, valid_text, three_check_text, callbacks):
        ocr = FakeOCR(["", "NOT AN MRZ", three_check_text, valid_text])
        orch = make_orchestrator(ocr=ocr)

        result = orch.run(callbacks.on_success, callbacks.on_abort)

        assert result.succeeded is True
        assert result.session.retry_count == 3
        assert result.session.history.count(ScanPhase.RETRYING) == 3
        assert ocr.calls == 4
        assert len(callbacks.successes) == 1

    def test_score_equal_to_threshold_succeeds(self, three_check_text):
        orch = make_orchestrator(ocr=FakeOCR([three_check_text]), accuracy_threshold=3)

        result = orch.run()

        assert result.succeeded is True
        assert result.score == 3
        assert result.session.retry_count == 0

    def test_score_below_threshold_retries(self, valid_text, three_check_text):
        ocr = FakeOCR([three_check_text, three_check_text, valid_text])
        orch = make_orchestrator(ocr=ocr, accuracy_threshold=4)

        result = orch.run()

        assert result.score == 5
        assert result.session.retry_count == 2
        assert result.session.last_score == 5

    def test_result_to_dict(self, valid_text):
        result = make_orchestrator(ocr=FakeOCR([valid_text])).run()
        data = result.to_dict()

        assert data["success"] is True
        assert data["data"]["document_number"] == "L898902C3"
        assert data["session"]["phase"] == "succeeded"


class TestFrameUnavailable:

    def test_missing_snapshots_restart_capture(self, valid_text):
        camera = FakeCamera([None, None, FRAME])
        ocr = FakeOCR([valid_text])
        orch = make_orchestrator(camera=camera, ocr=ocr)

        result = orch.run()

        assert result.succeeded is True
        assert camera.restarts == 2
        assert result.session.frame_failures == 2
        assert ocr.calls == 1
        assert result.session.history[:4] == [
            ScanPhase.AWAITING_FRAME,
            ScanPhase.AWAITING_FRAME,
            ScanPhase.AWAITING_FRAME,
            ScanPhase.PREPROCESSING,
        ]

    def test_capture_error_is_retried(self, valid_text):
        camera = FakeCamera([FrameCaptureError("device busy")])
        result = make_orchestrator(camera=camera, ocr=FakeOCR([valid_text])).run()

        assert result.succeeded is True
        assert camera.restarts == 1

    def test_failed_restart_is_retried(self, valid_text):
        camera = BusyRestartCamera([None, None])
        ocr = FakeOCR([valid_text])

        result = make_orchestrator(camera=camera, ocr=ocr).run()

        assert result.succeeded is True
        assert camera.restarts == 2
        assert result.session.frame_failures == 2
        assert ScanPhase.ABORTED not in result.session.history
        assert ocr.calls == 1

    def test_failed_restarts_bounded_by_retry_limit(self):
        camera = BusyRestartCamera([None] * 5, failing_restarts=5)
        result = make_orchestrator(camera=camera, ocr=FakeOCR([""]), max_retries=2).run()

        assert result.succeeded is False
        assert "2 retries" in result.reason
        assert camera.restarts == 2


class TestAbort:

    def test_preprocessing_failure_aborts(self, valid_text, callbacks):
        ocr = FakeOCR([valid_text])
        processor = FakeProcessor(error=PreprocessingError("crop region exceeds frame bounds"))
        orch = make_orchestrator(processor=processor, ocr=ocr)

        result = orch.run(callbacks.on_success, callbacks.on_abort)

        assert result.succeeded is False
        assert "crop region" in result.reason
        assert result.session.history[-1] == ScanPhase.ABORTED
        assert ocr.calls == 0
        assert processor.calls == 1
        assert callbacks.aborts == 1
        assert callbacks.successes == []

    def test_stop_during_recognition(self, valid_text, callbacks):
        camera = FakeCamera()
        orch = None

        def stop_while_recognizing(ocr):
            assert orch.phase == ScanPhase.RECOGNIZING
            assert orch.stop() is True

        ocr = FakeOCR([valid_text], hook=stop_while_recognizing)
        orch = make_orchestrator(camera=camera, ocr=ocr)

        result = orch.run(callbacks.on_success, callbacks.on_abort)

        assert result.succeeded is False
        assert result.reason == "stopped"
        history = result.session.history
        assert history[-2:] == [ScanPhase.RECOGNIZING, ScanPhase.ABORTED]
        assert ScanPhase.AWAITING_FRAME not in history[history.index(ScanPhase.RECOGNIZING):]
        assert ocr.calls == 1
        assert camera.snapshots == 1
        assert callbacks.aborts == 1
        assert callbacks.successes == []

    def test_retry_limit(self):
        ocr = FakeOCR([""])
        orch = make_orchestrator(ocr=ocr, max_retries=2)

        result = orch.run()

        assert result.succeeded is False
        assert "2 retries" in result.reason
        assert ocr.calls == 3

    def test_retry_limit_counts_frame_failures(self):
        camera = FakeCamera([None, None, None])
        ocr = FakeOCR([""])
        result = make_orchestrator(camera=camera, ocr=ocr, max_retries=1).run()

        assert result.succeeded is False
        assert ocr.calls == 0

    def test_ocr_engine_missing_aborts(self):
        def missing(ocr):
            raise OCREngineError("tesseract is not installed")

        result = make_orchestrator(ocr=FakeOCR([""], hook=missing)).run()

        assert result.succeeded is False
        assert "tesseract" in result.reason

    def test_unexpected_error_aborts(self):
        def broken(ocr):
            raise RuntimeError("boom")

        result = make_orchestrator(ocr=FakeOCR([""], hook=broken)).run()

        assert result.succeeded is False
        assert "boom" in result.reason

    def test_stop_when_idle(self):
        orch = make_orchestrator(ocr=FakeOCR([""]))
        assert orch.stop() is False
        assert orch.phase == ScanPhase.IDLE


class TestSessionLifecycle:

    def test_exposure_reset_on_start(self, valid_text):
        exposure = ExposureFeedbackController()
        exposure.cell.set(2.7)
        orch = ScanOrchestrator(
            FakeCamera(), FakeProcessor(), FakeOCR([valid_text]),
            config=ScanConfig(scan_delay=0.0), exposure=exposure,
        )

        orch.run()

        assert exposure.exposure == pytest.approx(0.8)

    def test_new_session_after_success(self, valid_text):
        orch = make_orchestrator(ocr=FakeOCR([valid_text]))
        first = orch.run()
        second = orch.run()

        assert first.session is not second.session
        assert second.succeeded is True

    def test_background_session_stops(self, callbacks):
        two_attempts = threading.Event()

        def count(ocr):
            if ocr.calls >= 2:
                two_attempts.set()

        ocr = FakeOCR([""], hook=count)
        orch = make_orchestrator(ocr=ocr, scan_delay=0.005)

        orch.start(callbacks.on_success, callbacks.on_abort)
        assert two_attempts.wait(timeout=2.0)
        assert orch.is_active()

        orch.stop()
        result = orch.wait(timeout=2.0)
        calls_after_stop = ocr.calls
        time.sleep(0.05)

        assert result.succeeded is False
        assert orch.phase == ScanPhase.ABORTED
        assert ocr.calls == calls_after_stop
        assert callbacks.aborts == 1

    def test_second_start_rejected(self):
        entered = threading.Event()
        release = threading.Event()

        def block(ocr):
            entered.set()
            release.wait(timeout=2.0)

        orch = make_orchestrator(ocr=FakeOCR([""], hook=block))
        orch.start()
        try:
            assert entered.wait(timeout=2.0)
            with pytest.raises(ScanInProgressError):
                orch.start()
        finally:
            orch.stop()
            release.set()

        result = orch.wait(timeout=2.0)
        assert result.reason == "stopped"

    def test_debug_saves_attempts(self, valid_text):
        saver = FakeSaver()
        orch = ScanOrchestrator(
            FakeCamera(), FakeProcessor(), FakeOCR(["", valid_text]),
            config=ScanConfig(scan_delay=0.0, debug=True), saver=saver,
        )

        orch.run()

        assert [attempt for attempt, _ in saver.saved] == [1, 2]
        assert saver.saved[0][1]["record"] is None
        assert saver.saved[1][1]["score"] == 5

    def test_no_traces_without_debug(self, valid_text):
        saver = FakeSaver()
        orch = ScanOrchestrator(
            FakeCamera(), FakeProcessor(), FakeOCR([valid_text]),
            config=ScanConfig(scan_delay=0.0), saver=saver,
        )

        orch.run()

        assert saver.saved == []

    def test_default_saver_uses_save_dir(self, valid_text, tmp_path):
        orch = ScanOrchestrator(
            FakeCamera(), FakeProcessor(), FakeOCR([valid_text]),
            config=ScanConfig(scan_delay=0.0, debug=True, save_dir=str(tmp_path)),
        )

        orch.run()

        assert orch.saver.base_dir == str(tmp_path)
        assert len(list((tmp_path / "json").glob("attempt_0001_*.json"))) == 1
        assert len(list((tmp_path / "images").glob("attempt_0001_*.png"))) == 1
