"""
Layer 4 - Scan Orchestration
Production scan loop: capture -> preprocess -> OCR -> validate, retried
until the MRZ checksums reach the configured accuracy or the scan is stopped.

Features:
- One sequential attempt at a time, on a worker thread or in the caller
- Stop requests observed at every phase boundary
- Exposure reset at the start of every session
- Frame failures restart the capture and retry
- Preprocessing failures abort the session
- Optional retry bound and debug traces per attempt
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from error_handlers import (
    CameraError,
    FrameCaptureError,
    ParseError,
    ScanInProgressError,
    ScannerError,
)
from layer3_mrz import scorer
from layer3_mrz.parser import MRZLineParser, MRZRecord
from layer3_mrz.saver import ImageSaver

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[MRZRecord, int], None]
AbortCallback = Callable[[], None]


class ScanPhase(Enum):
    IDLE = "idle"
    AWAITING_FRAME = "awaiting_frame"
    PREPROCESSING = "preprocessing"
    RECOGNIZING = "recognizing"
    VALIDATING = "validating"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"


TERMINAL_PHASES = (ScanPhase.SUCCEEDED, ScanPhase.ABORTED)


@dataclass
class ScanConfig:
    """Configuration for a scan session."""
    # Minimum number of passing checksums (0-5) to accept a record
    accuracy_threshold: float = scorer.MAX_SCORE
    debug: bool = False

    # Timing
    scan_delay: float = 0.01          # Pause before each snapshot (seconds)
    snapshot_timeout: float = 1.0     # Wait for the next camera frame

    # None retries until success or stop
    max_retries: Optional[int] = None

    # Debug traces
    save_dir: str = "Logs/scan_attempts"


@dataclass
class ScanSession:
    """Runtime state of one scan session."""
    phase: ScanPhase = ScanPhase.IDLE
    retry_count: int = 0
    frame_failures: int = 0
    started_at: float = field(default_factory=time.monotonic)
    ocr_seconds: float = 0.0
    last_score: Optional[int] = None
    history: List[ScanPhase] = field(default_factory=list)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def attempts(self) -> int:
        return self.retry_count + 1

    def to_dict(self) -> Dict:
        return {
            'phase': self.phase.value,
            'retry_count': self.retry_count,
            'frame_failures': self.frame_failures,
            'elapsed': round(self.elapsed, 3),
            'ocr_seconds': round(self.ocr_seconds, 3),
            'last_score': self.last_score,
        }


@dataclass
class ScanResult:
    """Terminal outcome of a scan session."""
    succeeded: bool
    record: Optional[MRZRecord] = None
    score: Optional[int] = None
    reason: Optional[str] = None
    session: Optional[ScanSession] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response."""
        result = {
            'success': self.succeeded,
            'score': self.score,
            'reason': self.reason,
        }
        if self.record is not None:
            result['data'] = self.record.to_dict()
        if self.session is not None:
            result['session'] = self.session.to_dict()
        return result


class _StopRequested(Exception):
    """Raised inside the loop when a stop was seen at a phase boundary."""


class _Abort(Exception):
    """Raised inside the loop to end the session without a record."""


class ScanOrchestrator:
    """
    Drives a scan session through its phases.

    Collaborators:
        camera: start_capture(), stop_capture(), restart_capture(),
            get_snapshot(timeout) -> frame or None
        processor: process(frame) -> image, raises PreprocessingError
        extractor: recognize(image) -> str
        exposure: reset(), optional; restores the default exposure
        saver: save_attempt(attempt, image, data); debug traces, defaults to
            an ImageSaver under config.save_dir
    """

    def __init__(self, camera, processor, extractor, config=None,
                 exposure=None, parser=None, saver=None):
        self.camera = camera
        self.processor = processor
        self.extractor = extractor
        self.config = config or ScanConfig()
        self.exposure = exposure
        self.parser = parser or MRZLineParser()
        self.saver = saver if saver is not None else ImageSaver(base_dir=self.config.save_dir)

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._session: Optional[ScanSession] = None
        self._result: Optional[ScanResult] = None

        logger.info("ScanOrchestrator initialized")
        logger.debug(f"Config: {self.config}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def phase(self) -> ScanPhase:
        with self._lock:
            return self._session.phase if self._session else ScanPhase.IDLE

    @property
    def session(self) -> Optional[ScanSession]:
        return self._session

    @property
    def result(self) -> Optional[ScanResult]:
        return self._result

    def is_active(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.phase not in TERMINAL_PHASES

    def start(self, on_success: Optional[SuccessCallback] = None,
              on_abort: Optional[AbortCallback] = None) -> ScanSession:
        """
        Start a session on a worker thread.

        Returns:
            ScanSession: The new session

        Raises:
            ScanInProgressError: If a session is already running
        """
        session = self._open_session()
        self._thread = threading.Thread(
            target=self._run_session, args=(on_success, on_abort),
            name="scan-orchestrator", daemon=True,
        )
        self._thread.start()
        return session

    def run(self, on_success: Optional[SuccessCallback] = None,
            on_abort: Optional[AbortCallback] = None) -> ScanResult:
        """Run a session in the calling thread until success or abort."""
        self._open_session()
        return self._run_session(on_success, on_abort)

    def stop(self) -> bool:
        """
        Request the running session to stop.

        No snapshot or OCR call is started after this returns. The session
        reaches ABORTED at its next phase boundary.

        Returns:
            bool: True if a session was active
        """
        active = self.is_active()
        self._stop_event.set()
        if active:
            logger.info("Stop requested")
            self._stop_capture()
        return active

    def wait(self, timeout: Optional[float] = None) -> Optional[ScanResult]:
        """Wait for the worker thread and return the session result."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        return self._result

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _open_session(self) -> ScanSession:
        with self._lock:
            if self._session is not None and self._session.phase not in TERMINAL_PHASES:
                raise ScanInProgressError(self._session.phase.value)
            self._stop_event.clear()
            self._session = ScanSession()
            self._result = None

        if self.exposure is not None:
            self.exposure.reset()
        return self._session

    def _run_session(self, on_success, on_abort) -> ScanResult:
        session = self._session
        logger.info("=" * 60)
        logger.info(f"Scan session started (accuracy >= {self.config.accuracy_threshold})")

        try:
            self.camera.start_capture()
            result = self._loop(session)
        except _StopRequested:
            result = self._finish_abort(session, "stopped")
        except _Abort as e:
            result = self._finish_abort(session, str(e))
        except ScannerError as e:
            logger.error(f"{e.error_code}: {e.message}")
            result = self._finish_abort(session, e.message)
        except Exception as e:
            logger.exception(f"Scan session failed: {e}")
            result = self._finish_abort(session, f"unexpected error: {e}")

        self._result = result
        logger.info(f"Scan session finished: {session.phase.value} "
                    f"after {session.attempts} attempt(s), {session.elapsed:.2f}s")
        logger.info("=" * 60)

        if result.succeeded:
            if on_success is not None:
                on_success(result.record, result.score)
        elif on_abort is not None:
            on_abort()
        return result

    def _finish_abort(self, session, reason) -> ScanResult:
        self._stop_capture()
        with self._lock:
            session.phase = ScanPhase.ABORTED
            session.history.append(ScanPhase.ABORTED)
        logger.info(f"Scan aborted: {reason}")
        return ScanResult(succeeded=False, reason=reason, session=session)

    def _stop_capture(self):
        try:
            self.camera.stop_capture()
        except Exception as e:
            logger.warning(f"Could not stop capture: {e}")

    def _enter(self, session, phase):
        """Move to the next phase unless a stop was requested."""
        with self._lock:
            if self._stop_event.is_set():
                raise _StopRequested()
            session.phase = phase
            session.history.append(phase)

    def _log_attempt(self, message):
        if self.config.debug:
            logger.info(message)
        else:
            logger.debug(message)

    # ------------------------------------------------------------------
    # Scan loop
    # ------------------------------------------------------------------

    def _loop(self, session) -> ScanResult:
        cfg = self.config

        while True:
            self._enter(session, ScanPhase.AWAITING_FRAME)
            if self._stop_event.wait(cfg.scan_delay):
                raise _StopRequested()

            frame = self._snapshot(session)
            if frame is None:
                continue

            self._enter(session, ScanPhase.PREPROCESSING)
            image = self.processor.process(frame)

            self._enter(session, ScanPhase.RECOGNIZING)
            started = time.monotonic()
            text = self.extractor.recognize(image)
            session.ocr_seconds += time.monotonic() - started

            self._enter(session, ScanPhase.VALIDATING)
            record, quality = self._validate(session, text)
            self._trace(session, image, text, record, quality)

            if record is not None and scorer.meets_threshold(quality, cfg.accuracy_threshold):
                return self._succeed(session, record, quality)

            self._retry(session)

    def _snapshot(self, session):
        """Take a snapshot, restarting the capture when none is available."""
        try:
            frame = self.camera.get_snapshot(timeout=self.config.snapshot_timeout)
        except FrameCaptureError as e:
            logger.warning(f"{e.error_code}: {e.message}")
            frame = None

        if frame is not None:
            return frame

        session.frame_failures += 1
        logger.warning("Could not get snapshot from camera, restarting capture")
        self._count_retry(session)
        if not self._stop_event.is_set():
            try:
                self.camera.restart_capture()
            except CameraError as e:
                logger.warning(f"Capture restart failed, retrying: {e.error_code}: {e.message}")
        return None

    def _validate(self, session, text):
        if not text:
            self._log_attempt(f"Attempt {session.attempts}: no text recognized")
            return None, 0

        self._log_attempt(f"Attempt {session.attempts}: scan result {text!r}")
        try:
            record = self.parser.parse(text)
        except ParseError as e:
            self._log_attempt(f"Attempt {session.attempts}: {e.error_code} {e.message}")
            return None, 0

        quality = scorer.score(record)
        session.last_score = quality
        if record.failed_checks:
            self._log_attempt(f"Attempt {session.attempts}: failed checks {record.failed_checks}")
        return record, quality

    def _trace(self, session, image, text, record, quality):
        if not self.config.debug:
            return
        try:
            self.saver.save_attempt(session.attempts, image, {
                'text': text,
                'score': quality,
                'record': record.to_dict() if record is not None else None,
            })
        except OSError as e:
            logger.warning(f"Could not save attempt trace: {e}")

    def _succeed(self, session, record, quality) -> ScanResult:
        self._enter(session, ScanPhase.SUCCEEDED)
        self._stop_capture()
        logger.info(f"✓ Scan succeeded with score {quality}/{scorer.MAX_SCORE}")
        return ScanResult(succeeded=True, record=record, score=quality, session=session)

    def _retry(self, session):
        self._enter(session, ScanPhase.RETRYING)
        self._log_attempt(f"Scan quality insufficient: {session.last_score}")
        self._count_retry(session)

    def _count_retry(self, session):
        session.retry_count += 1
        limit = self.config.max_retries
        if limit is not None and session.retry_count > limit:
            raise _Abort(f"no valid scan after {limit} retries")
