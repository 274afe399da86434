"""
pytest configuration for the upload pipeline tests.

Adds src directory to Python path for imports and isolates tests from the
developer's environment.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging.context import clear_log_context  # noqa: E402
from core.logging.message_context import clear_message_context  # noqa: E402

# Environment variables referenced by config.yaml
CONFIG_ENV_VARS = (
    "UPLOAD_PIPELINE_CONFIG",
    "UPLOADS_MAX_ATTEMPTS",
    "SES_EMAIL_FROM",
    "SES_EMAIL_TO",
    "CATALOG_STORE_BACKEND",
    "CATALOG_STORE_PATH",
    "NOTIFICATION_SINK_BACKEND",
    "LOG_LEVEL",
    "LOG_TO_STDOUT",
    "METRICS_PORT",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    clear_log_context()
    clear_message_context()
    yield
    clear_log_context()
    clear_message_context()
