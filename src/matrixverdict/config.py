from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from matrixverdict.sources.testing_api import DEFAULT_BASE_URL


class PathsConfig(BaseModel):
    results_dir: Path = Field(default=Path("results"))
    logs_dir: Path = Field(default=Path("logs"))


class PollConfig(BaseModel):
    # Seconds between poll rounds
    interval_s: float = Field(default=15.0)
    # Upper bound of poll rounds before validation runs anyway
    max_rounds: int = Field(default=240)

    # Per-request HTTP settings
    timeout_s: float = Field(default=20.0)
    max_attempts: int = Field(default=3)

    # Backoff between attempts of one request: base * multiplier**n, capped
    retry_base_delay_s: float = Field(default=0.5)
    retry_max_delay_s: float = Field(default=8.0)
    retry_multiplier: float = Field(default=2.0)


class Settings(BaseModel):
    """Application settings.

    Service access:
    - project_id selects the cloud project owning the test matrices.
    - api_token is a bearer token read from env/YAML; it must not be committed.

    Verdict:
    - ignore_failed turns a failed-tests verdict into exit code 0 (failures
      are still reported). The CLI flag --ignore-failed overrides it.
    """

    project_id: Optional[str] = Field(default=None)
    api_token: Optional[str] = Field(default=None)
    api_base_url: str = Field(default=DEFAULT_BASE_URL)

    ignore_failed: bool = Field(default=False)

    poll: PollConfig = Field(default_factory=PollConfig)

    paths: PathsConfig = Field(default_factory=PathsConfig)


def load_settings(config_path: Optional[Path]) -> Settings:
    """Load settings from .env + optional YAML.

    Precedence:
      1) defaults
      2) .env / environment (TESTING_PROJECT_ID, TESTING_API_TOKEN, TESTING_API_BASE_URL)
      3) YAML file (if provided)

    Only the local `.env` is read so that unrelated parent-directory files do
    not leak into runs or tests.
    """

    load_dotenv(dotenv_path=Path(".env"), override=False)

    merged: Dict[str, Any] = Settings().model_dump(mode="python")

    env_project_id = _getenv("TESTING_PROJECT_ID")
    env_api_token = _getenv("TESTING_API_TOKEN")
    env_base_url = _getenv("TESTING_API_BASE_URL")

    if env_project_id is not None:
        merged["project_id"] = env_project_id
    if env_api_token is not None:
        merged["api_token"] = env_api_token
    if env_base_url is not None:
        merged["api_base_url"] = env_base_url

    if config_path is not None:
        cfg = _load_yaml(config_path)
        merged = _deep_merge(merged, cfg)

    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _getenv(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(str(path))
    raw = path.read_text(encoding="utf-8")
    parsed = yaml.safe_load(raw) or {}
    if not isinstance(parsed, dict):
        raise ValueError("YAML config must be a mapping/object at the top level")
    return parsed


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out
