"""
Layer 4 - Scan Orchestration
Adaptive capture/OCR/validate retry loop for passport MRZ scanning
"""
from .orchestrator import ScanConfig, ScanOrchestrator, ScanPhase, ScanResult, ScanSession

__all__ = [
    'ScanConfig',
    'ScanOrchestrator',
    'ScanPhase',
    'ScanResult',
    'ScanSession',
]
