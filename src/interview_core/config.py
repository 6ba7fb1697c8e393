"""Runtime settings for the interview engine, loaded from YAML."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from interview_core.errors import ConfigError

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class Settings(BaseModel):
    sync_endpoint: str | None = None
    sync_debounce_seconds: float = 3.0
    sync_timeout_seconds: float = 10.0
    log_level: str = "INFO"
    validate_edge_endpoints: bool = True


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ConfigError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def load_settings(path: Path | str | None = None) -> Settings:
    """
    Load settings from a YAML file, expanding ${VAR} and ${VAR:-default}.

    No path gives the defaults. An empty file is treated as no overrides.
    """
    if path is None:
        return Settings()
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read settings from {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"settings file {path} must contain a mapping")
    try:
        return Settings(**_expand_payload(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid settings in {path}: {exc}") from exc
