"""
Runtime settings for hrflow.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_REJECTING_ACTIONS = ["reject", "deny", "decline"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    data_root: str = ".hrflow"
    telemetry_enabled: bool = False
    default_due_days: Optional[int] = Field(default=3, ge=0)
    rejecting_actions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_REJECTING_ACTIONS)
    )
    provisional_prefix: str = "tmp-"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        kwargs = {}
        if os.getenv("HRFLOW_DATA_ROOT"):
            kwargs["data_root"] = os.environ["HRFLOW_DATA_ROOT"]
        kwargs["telemetry_enabled"] = _env_bool("HRFLOW_TELEMETRY", False)
        due_days = os.getenv("HRFLOW_DEFAULT_DUE_DAYS")
        if due_days is not None:
            kwargs["default_due_days"] = int(due_days) if due_days.strip() else None
        rejecting = os.getenv("HRFLOW_REJECTING_ACTIONS")
        if rejecting:
            kwargs["rejecting_actions"] = [
                item.strip().lower() for item in rejecting.split(",") if item.strip()
            ]
        if os.getenv("HRFLOW_PROVISIONAL_PREFIX"):
            kwargs["provisional_prefix"] = os.environ["HRFLOW_PROVISIONAL_PREFIX"]
        if os.getenv("HRFLOW_LOG_LEVEL"):
            kwargs["log_level"] = os.environ["HRFLOW_LOG_LEVEL"].upper()
        return cls(**kwargs)

    @property
    def versions_dir(self) -> Path:
        return Path(self.data_root) / "versions"

    @property
    def telemetry_dir(self) -> Optional[Path]:
        if not self.telemetry_enabled:
            return None
        return Path(self.data_root) / "telemetry"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
