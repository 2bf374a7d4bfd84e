"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class TrackerSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    gm_only: bool
    clear_on_round_advance: bool
    log_level: str


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> TrackerSettings:
    port_raw = os.getenv("PHASETRACKER_PORT", "8000")
    return TrackerSettings(
        server_salt=os.getenv("PHASETRACKER_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("PHASETRACKER_DATABASE_URL"),
        host=os.getenv("PHASETRACKER_HOST", "127.0.0.1"),
        port=int(port_raw),
        gm_only=_env_flag("PHASETRACKER_GM_ONLY", False),
        clear_on_round_advance=_env_flag("PHASETRACKER_CLEAR_ON_ROUND_ADVANCE", False),
        log_level=os.getenv("PHASETRACKER_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str) -> None:
    """Install a root handler for the service process."""
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
