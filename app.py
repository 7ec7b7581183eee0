"""
Passport MRZ Scanner Service
Thin coordinator for the layered scanning system.

Provides REST API for:
- Starting and stopping an adaptive camera scan session
- Polling the scan phase and the accepted MRZ record
- Validating raw MRZ text without a camera
"""
from flask import Flask, jsonify, request
from flask_cors import CORS
from dataclasses import replace
import logging
import os
import threading

# Import layers
from layer1_capture import Camera, ExposureFeedbackController
from layer2_readjustment import MRZRegionProcessor
from layer3_mrz import MRZExtractor, MRZLineParser, MAX_SCORE, meets_threshold, score
from layer4_orchestration import ScanConfig, ScanOrchestrator

# Import error handling
from error_handlers import ScannerError, ScanInProgressError, handle_error

# Configuration
CAMERA_INDEX = int(os.environ.get('CAMERA_INDEX', 2))
SCAN_ACCURACY = int(os.environ.get('SCAN_ACCURACY', MAX_SCORE))
SCAN_DEBUG = os.environ.get('SCAN_DEBUG', '').lower() in ('1', 'true', 'yes')
SCAN_MAX_RETRIES = int(os.environ['SCAN_MAX_RETRIES']) if os.environ.get('SCAN_MAX_RETRIES') else None
SAVE_DIR = os.environ.get('SAVE_DIR', "Logs/scan_attempts")  # Debug traces per attempt
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG').upper()
TESSERACT_CMD = os.environ.get('TESSERACT_CMD')  # None uses tesseract from PATH

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for cross-origin requests from the kiosk frontend
CORS(app, origins=["*"])


class ScannerCoordinator:
    """
    Coordinates the scanning pipeline across layers
    Thin wrapper that wires layer components into a scan orchestrator
    """

    def __init__(self, camera_index, save_dir, tesseract_cmd=None,
                 accuracy=MAX_SCORE, debug=False, max_retries=None):
        logger.info("Initializing ScannerCoordinator")

        # Layer 1: Capture with exposure feedback
        self.exposure = ExposureFeedbackController()
        self.camera = Camera(
            camera_index=camera_index,
            exposure_cell=self.exposure.cell,
            on_sample=self.exposure.on_sample,
        )

        # Layer 2: MRZ strip preprocessing
        self.processor = MRZRegionProcessor()

        # Layer 3: OCR and parsing
        self.mrz_extractor = MRZExtractor(tesseract_cmd=tesseract_cmd)
        self.parser = MRZLineParser()

        # Layer 4: Orchestration defaults
        self.defaults = ScanConfig(
            accuracy_threshold=accuracy,
            debug=debug,
            max_retries=max_retries,
            save_dir=save_dir,
        )
        self.orchestrator = None
        self._lock = threading.Lock()

        logger.info("ScannerCoordinator initialized successfully")

    def start_scan(self, accuracy=None, debug=None):
        """
        Start a scan session on a worker thread

        Args:
            accuracy: Required checksum score, defaults to SCAN_ACCURACY
            debug: Save every attempt, defaults to SCAN_DEBUG

        Returns:
            ScanSession: The running session

        Raises:
            ScanInProgressError: If a session is already running
        """
        config = self.defaults
        if accuracy is not None:
            config = replace(config, accuracy_threshold=accuracy)
        if debug is not None:
            config = replace(config, debug=debug)

        with self._lock:
            if self.orchestrator is not None and self.orchestrator.is_active():
                raise ScanInProgressError(self.orchestrator.phase.value)

            self.orchestrator = ScanOrchestrator(
                camera=self.camera,
                processor=self.processor,
                extractor=self.mrz_extractor,
                config=config,
                exposure=self.exposure,
                parser=self.parser,
            )
            return self.orchestrator.start(on_success=self._on_success, on_abort=self._on_abort)

    def stop_scan(self):
        """
        Stop the running scan session

        Returns:
            bool: True if a session was running
        """
        with self._lock:
            orchestrator = self.orchestrator
        if orchestrator is None:
            return False
        return orchestrator.stop()

    def status(self):
        """Current phase, session counters and the last result"""
        orchestrator = self.orchestrator
        if orchestrator is None:
            return {"phase": "idle", "active": False, "session": None, "result": None}

        session = orchestrator.session
        result = orchestrator.result
        return {
            "phase": orchestrator.phase.value,
            "active": orchestrator.is_active(),
            "exposure": round(self.exposure.exposure, 3),
            "session": session.to_dict() if session is not None else None,
            "result": result.to_dict() if result is not None else None,
        }

    def validate_text(self, text, accuracy=None):
        """
        Parse and score raw MRZ text (Layer 3 only)

        Raises:
            ParseError: If the text is not a two-line TD3 MRZ
        """
        threshold = self.defaults.accuracy_threshold if accuracy is None else accuracy
        record = self.parser.parse(text)
        quality = score(record)
        return {
            "success": True,
            "score": quality,
            "max_score": MAX_SCORE,
            "accepted": meets_threshold(quality, threshold),
            "failed_checks": record.failed_checks,
            "data": record.to_dict(),
        }

    @staticmethod
    def _on_success(record, quality):
        logger.info(f"✓ MRZ accepted for document {record.document_number} "
                    f"(score {quality}/{MAX_SCORE})")

    @staticmethod
    def _on_abort():
        logger.info("Scan session ended without a valid MRZ")


def _parse_accuracy(value):
    """Accuracy from a request body: integer 0..MAX_SCORE or None"""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_SCORE:
        raise ValueError(f"accuracy must be an integer between 0 and {MAX_SCORE}")
    return value


# Initialize scanner coordinator
logger.info("Starting application initialization")

scanner = ScannerCoordinator(
    camera_index=CAMERA_INDEX,
    save_dir=SAVE_DIR,
    tesseract_cmd=TESSERACT_CMD,
    accuracy=SCAN_ACCURACY,
    debug=SCAN_DEBUG,
    max_retries=SCAN_MAX_RETRIES,
)


# ============================================================================
# API Endpoints
# ============================================================================

@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for service discovery and load balancers"""
    return jsonify({
        "status": "healthy",
        "service": "mrz-scanner",
        "version": "0.1.0"
    })


@app.route('/start_scan', methods=['POST'])
def start_scan():
    """
    Start an adaptive scan session.

    Request (optional JSON):
        {"accuracy": 5, "debug": false}

    Response:
        {"success": true, "session": { ... }}
    """
    logger.info("Start scan request received")
    body = request.get_json(silent=True) or {}

    try:
        accuracy = _parse_accuracy(body.get('accuracy'))
    except ValueError as e:
        return jsonify({
            "success": False,
            "error": str(e),
            "error_code": "INVALID_ACCURACY"
        }), 400

    debug = body.get('debug')
    if debug is not None:
        debug = bool(debug)

    try:
        session = scanner.start_scan(accuracy=accuracy, debug=debug)
    except ScanInProgressError as e:
        return jsonify(handle_error(e)), 409
    except ScannerError as e:
        return jsonify(handle_error(e)), 500

    return jsonify({"success": True, "session": session.to_dict()})


@app.route('/stop_scan', methods=['POST'])
def stop_scan():
    """Stop the running scan session"""
    logger.info("Stop scan request received")
    stopped = scanner.stop_scan()
    logger.info(f"Stop scan result: {stopped}")
    return jsonify({"success": True, "stopped": stopped})


@app.route('/scan_status', methods=['GET'])
def scan_status():
    """Current scan phase and, once finished, the scan result"""
    return jsonify({"success": True, **scanner.status()})


@app.route("/api/validate", methods=["POST"])
def api_validate():
    """
    Parse and score raw MRZ text.

    Request:
        {"text": "P<UTO...\\nL898902C3...", "accuracy": 5}

    Response:
        {
            "success": true,
            "score": 5,
            "accepted": true,
            "data": { ... MRZ fields ... }
        }
    """
    logger.info("API validate request received")
    body = request.get_json(silent=True) or {}
    text = body.get('text')

    if not isinstance(text, str) or not text.strip():
        return jsonify({
            "success": False,
            "error": "No MRZ text provided",
            "error_code": "NO_TEXT"
        }), 400

    try:
        accuracy = _parse_accuracy(body.get('accuracy'))
    except ValueError as e:
        return jsonify({
            "success": False,
            "error": str(e),
            "error_code": "INVALID_ACCURACY"
        }), 400

    try:
        return jsonify(scanner.validate_text(text, accuracy))
    except ScannerError as e:
        logger.error(f"Scanner error during validation: {e}")
        return jsonify(handle_error(e)), 422


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == '__main__':
    print("\n" + "=" * 60)
    print("PASSPORT MRZ SCANNER SERVICE")
    print("=" * 60)
    print("\n📁 Project Structure:")
    print("  layer1_capture/        - Camera handling + exposure feedback")
    print("  layer2_readjustment/   - MRZ strip crop, fit and rotate")
    print("  layer3_mrz/            - OCR, parsing and check digits")
    print("  layer4_orchestration/  - Scan retry state machine")
    print(f"  {SAVE_DIR}/")
    print("    ├── images/          - OCR input per attempt (debug)")
    print("    └── json/            - Attempt results (debug)")
    print("\n📡 API Endpoints:")
    print("  GET  /health           - Health check")
    print("  POST /start_scan       - Start a scan session")
    print("  POST /stop_scan        - Stop the scan session")
    print("  GET  /scan_status      - Phase and result")
    print("  POST /api/validate     - Score raw MRZ text")
    print("\n🎥 Camera:")
    print(f"  Device: /dev/video{CAMERA_INDEX}")
    print(f"  Accuracy: {SCAN_ACCURACY}/{MAX_SCORE}")
    print(f"  Debug traces: {'ON' if SCAN_DEBUG else 'OFF'}")
    print("\n" + "=" * 60)
    print("Server starting... Press Ctrl+C to stop")
    print("=" * 60 + "\n")

    logger.info("Flask server starting")
    app.run(host='0.0.0.0', port=5000, debug=False, threaded=True)
