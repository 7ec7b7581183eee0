"""
Pytest configuration and fixtures for scanner tests.
"""
import pytest
import os
import sys

# Add the project root to the path so the layer packages import as top-level
sys.path.insert(0, os.path.dirname(__file__))


# ICAO 9303 specimen passport, all check digits valid
SPECIMEN_LINE1 = "P<UTOERIKSSON<<ANNA<MARIA<<<<<<<<<<<<<<<<<<<"
SPECIMEN_LINE2 = "L898902C36UTO7408122F1204159ZE184226B<<<<<10"


@pytest.fixture
def sample_mrz_td3():
    """Sample TD3 MRZ (passport)."""
    return [SPECIMEN_LINE1, SPECIMEN_LINE2]


@pytest.fixture
def sample_mrz_text(sample_mrz_td3):
    """Specimen MRZ as the OCR engine would return it."""
    return "\n".join(sample_mrz_td3) + "\n"


@pytest.fixture
def filler_personal_mrz_td3():
    """Specimen with an empty personal number and '<' as its check digit."""
    return [SPECIMEN_LINE1, "L898902C36UTO7408122F1204159<<<<<<<<<<<<<<<8"]


@pytest.fixture
def app():
    """Create Flask test application."""
    from app import app as flask_app
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
