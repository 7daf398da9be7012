"""
tests/conftest.py

Purpose
-------
Global pytest configuration for the entire test suite.

What this does
--------------
1) Loads `.env` values at session start (dev convenience).
2) Points the JSONL app logger at a per-session temp directory so tests never
   write into the repo's logs/ folder.
3) Provides a fallback for `OPENAI_MODEL` so settings resolve without config.

No test talks to a real generation service: every client is either the
FakeGenerationClient or an injected stand-in for ChatOpenAI.

File / module dependencies
--------------------------
- incident_report.app_logger (log root redirected here)
- tests.helpers (relay double)
- dotenv, pytest
"""

import os

import dotenv
import pytest

from incident_report import app_logger
from incident_report.config import ChatSettings
from tests.helpers import RecordingRelay

dotenv.load_dotenv()


@pytest.fixture(scope="session", autouse=True)
def configure_log_root(tmp_path_factory):
    """
    Send all JSONL log lines of the run into one temp dir.
    Tests that inspect the log read LOG_DIR/app.jsonl.
    """
    log_dir = tmp_path_factory.mktemp("logs")
    os.environ["LOG_DIR"] = str(log_dir)
    os.environ.setdefault("OPENAI_MODEL", "gpt-4o-mini")
    app_logger.configure(root_dir=log_dir, to_stdout=False, force=True)
    yield log_dir


@pytest.fixture()
def settings() -> ChatSettings:
    return ChatSettings(model_name="gpt-4o-mini")


@pytest.fixture()
def relay() -> RecordingRelay:
    return RecordingRelay()
