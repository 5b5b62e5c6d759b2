"""
config.py

Environment-driven settings for the Teaching Project Lifecycle API.

Variables
---------
  PROJECTS_ENV               dev | test | prod            (default: dev)
  PROJECTS_LOG_LEVEL         standard logging level name  (default: INFO)
  PROJECTS_LOG_JSON          emit one JSON object per log line
  PROJECTS_LABEL_LANGUAGE    es | en, language of status/action labels in audit text
  PROJECTS_SEED_DEMO_DATA    seed the in-memory catalog at startup (default: on in dev)
  PROJECTS_API_HOST          uvicorn bind host            (default: 127.0.0.1)
  PROJECTS_API_PORT          uvicorn bind port            (default: 8000)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from model import SUPPORTED_LANGUAGES

DEV_ENV_NAMES = {"dev", "development", "local"}


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    log_level: str = "INFO"
    log_json: bool = False
    label_language: str = "es"
    seed_demo_data: bool = True
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def is_dev(self) -> bool:
        return self.env in DEV_ENV_NAMES


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from `environ` (defaults to os.environ)."""
    env_vars = os.environ if environ is None else environ

    env_name = env_vars.get("PROJECTS_ENV", "dev").strip().lower() or "dev"

    language = env_vars.get("PROJECTS_LABEL_LANGUAGE", "es").strip().lower() or "es"
    if language not in SUPPORTED_LANGUAGES:
        raise ValueError(
            f"PROJECTS_LABEL_LANGUAGE must be one of {list(SUPPORTED_LANGUAGES)}, got '{language}'."
        )

    raw_port = env_vars.get("PROJECTS_API_PORT", "8000").strip()
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise ValueError(f"PROJECTS_API_PORT must be an integer, got '{raw_port}'.") from exc
    if not 0 < port < 65536:
        raise ValueError(f"PROJECTS_API_PORT out of range: {port}.")

    return Settings(
        env=env_name,
        log_level=env_vars.get("PROJECTS_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_json=_as_bool(env_vars.get("PROJECTS_LOG_JSON"), default=False),
        label_language=language,
        seed_demo_data=_as_bool(
            env_vars.get("PROJECTS_SEED_DEMO_DATA"),
            default=env_name in DEV_ENV_NAMES,
        ),
        api_host=env_vars.get("PROJECTS_API_HOST", "127.0.0.1").strip() or "127.0.0.1",
        api_port=port,
    )
