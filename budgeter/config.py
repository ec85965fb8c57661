"""Configuration for the budgeter app.

Paths and defaults live here; each can be overridden with an environment
variable.
"""

from __future__ import annotations

import os
from pathlib import Path

_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

DATA_DIR = Path(os.getenv("BUDGETER_DATA_DIR", _PROJECT_ROOT / "saves"))
DEFAULT_SAVE_NAME = os.getenv("BUDGETER_SAVE_NAME", "default")
LOG_LEVEL = os.getenv("BUDGETER_LOG_LEVEL", "WARNING").upper()


def ensure_data_directories() -> None:
    """Create the save directory if it doesn't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
