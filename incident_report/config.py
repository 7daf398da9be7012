"""
incident_report/config.py — runtime configuration flags.

Values come from the environment (a local `.env` is loaded first). Read them
through `ChatSettings.from_env()` so tests can build their own settings
instead of patching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import dotenv

dotenv.load_dotenv()

# The only H3 resolution the chat accepts as a zone id.
REQUIRED_RESOLUTION: int = 2


def _to_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _to_float(val: str | None, default: float) -> float:
    try:
        return float(val) if val is not None and str(val).strip() else default
    except ValueError:
        return default


def _to_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None and str(val).strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class ChatSettings:
    model_name: str = "gpt-4o-mini"
    temperature: float = 0.2
    timeout_s: float = 30.0
    max_retries: int = 1
    retain_report_on_submit_failure: bool = True

    @classmethod
    def from_env(cls) -> "ChatSettings":
        return cls(
            model_name=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            temperature=_to_float(os.getenv("GENERATION_TEMPERATURE"), 0.2),
            timeout_s=_to_float(os.getenv("GENERATION_TIMEOUT_S"), 30.0),
            max_retries=_to_int(os.getenv("GENERATION_MAX_RETRIES"), 1),
            retain_report_on_submit_failure=_to_bool(
                os.getenv("RETAIN_REPORT_ON_SUBMIT_FAILURE"), default=True
            ),
        )
