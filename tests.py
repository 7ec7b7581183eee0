"""
Tests for the MRZ scanner Flask application.
"""
import json
import threading

import numpy as np
import pytest

import app as app_module
from error_handlers import (
    CameraError,
    FrameCaptureError,
    MalformedLayoutError,
    ParseError,
    PreprocessingError,
    ScannerError,
    handle_error,
)


class StubCamera:
    """Camera stand-in that always has a frame."""

    def start_capture(self):
        pass

    def stop_capture(self):
        pass

    def restart_capture(self):
        pass

    def get_snapshot(self, timeout=1.0):
        return np.zeros((8, 8), dtype=np.uint8)


class StubProcessor:

    def process(self, frame):
        return frame


class StubOCR:

    def __init__(self, text, gate=None):
        self.text = text
        self.gate = gate

    def recognize(self, image):
        if self.gate is not None:
            self.gate.wait(timeout=2.0)
        return self.text


@pytest.fixture
def scanner(monkeypatch):
    """Coordinator with hardware and OCR replaced by stubs."""
    coordinator = app_module.ScannerCoordinator(camera_index=0, save_dir="unused")
    coordinator.camera = StubCamera()
    coordinator.processor = StubProcessor()
    coordinator.defaults.scan_delay = 0.0
    monkeypatch.setattr(app_module, "scanner", coordinator)
    yield coordinator
    coordinator.stop_scan()


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_ok(self, client):
        """Test /health returns OK status."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'mrz-scanner'


class TestValidateEndpoint:
    """Test raw MRZ text validation."""

    def test_valid_specimen(self, client, sample_mrz_text):
        response = client.post('/api/validate', json={'text': sample_mrz_text})
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['score'] == 5
        assert data['accepted'] is True
        assert data['failed_checks'] == []
        assert data['data']['surname'] == 'ERIKSSON'
        assert data['data']['given_names'] == 'ANNA MARIA'
        assert data['data']['birth_date'] == '1974-08-12'

    def test_partial_score_below_accuracy(self, client, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        text = f"{line1}\n{'M' + line2[1:]}"

        response = client.post('/api/validate', json={'text': text, 'accuracy': 4})
        data = json.loads(response.data)

        assert data['score'] == 3
        assert data['accepted'] is False
        assert data['failed_checks'] == ['document_number', 'composite']

    def test_malformed_text(self, client):
        response = client.post('/api/validate', json={'text': 'HELLO WORLD'})
        assert response.status_code == 422
        data = json.loads(response.data)
        assert data['success'] is False
        assert data['error_code'] == 'MALFORMED_LAYOUT'

    def test_requires_text(self, client):
        response = client.post('/api/validate', json={})
        assert response.status_code == 400
        data = json.loads(response.data)
        assert data['error_code'] == 'NO_TEXT'

    @pytest.mark.parametrize("accuracy", [6, -1, "5", 2.5, True])
    def test_rejects_bad_accuracy(self, client, sample_mrz_text, accuracy):
        response = client.post('/api/validate', json={'text': sample_mrz_text, 'accuracy': accuracy})
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'INVALID_ACCURACY'


class TestScanEndpoints:
    """Test the scan session lifecycle over HTTP."""

    def test_idle_status(self, client, scanner):
        response = client.get('/scan_status')
        data = json.loads(response.data)
        assert data['phase'] == 'idle'
        assert data['active'] is False
        assert data['result'] is None

    def test_stop_when_idle(self, client, scanner):
        response = client.post('/stop_scan')
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['stopped'] is False

    def test_scan_succeeds(self, client, scanner, sample_mrz_text):
        scanner.mrz_extractor = StubOCR(sample_mrz_text)

        response = client.post('/start_scan', json={'accuracy': 5})
        assert response.status_code == 200
        assert json.loads(response.data)['success'] is True

        scanner.orchestrator.wait(timeout=2.0)
        data = json.loads(client.get('/scan_status').data)

        assert data['phase'] == 'succeeded'
        assert data['active'] is False
        assert data['result']['success'] is True
        assert data['result']['score'] == 5
        assert data['result']['data']['document_number'] == 'L898902C3'

    def test_start_while_running_conflicts(self, client, scanner):
        gate = threading.Event()
        scanner.mrz_extractor = StubOCR("", gate=gate)

        assert client.post('/start_scan').status_code == 200
        try:
            response = client.post('/start_scan')
            assert response.status_code == 409
            assert json.loads(response.data)['error_code'] == 'SCAN_IN_PROGRESS'

            stopped = json.loads(client.post('/stop_scan').data)
            assert stopped['stopped'] is True
        finally:
            gate.set()

        scanner.orchestrator.wait(timeout=2.0)
        data = json.loads(client.get('/scan_status').data)
        assert data['phase'] == 'aborted'
        assert data['result']['reason'] == 'stopped'

    def test_start_rejects_bad_accuracy(self, client, scanner):
        response = client.post('/start_scan', json={'accuracy': 9})
        assert response.status_code == 400
        assert scanner.orchestrator is None


class TestErrorHandling:
    """Test error conversion for API responses."""

    def test_scanner_error_to_dict(self):
        error = MalformedLayoutError("expected 2 lines", details={"lines": 1})
        data = handle_error(error)

        assert data['success'] is False
        assert data['error_code'] == 'MALFORMED_LAYOUT'
        assert data['details']['reason'] == 'expected 2 lines'
        assert data['details']['lines'] == 1

    def test_hierarchy(self):
        assert isinstance(MalformedLayoutError("x"), ParseError)
        assert isinstance(FrameCaptureError(), CameraError)
        assert isinstance(PreprocessingError("x"), ScannerError)

    def test_unexpected_error(self):
        data = handle_error(KeyError("boom"))

        assert data['success'] is False
        assert data['error_code'] == 'UNEXPECTED_ERROR'
        assert data['details']['error_type'] == 'KeyError'


class TestNotFound:

    def test_unknown_route(self, client):
        assert client.get('/does-not-exist').status_code == 404
