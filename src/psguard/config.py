#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Configuration for psguard.

Loaded once at process start and handed to the policy engine, executor and
history store. Sources, later ones winning:
1. Built-in defaults
2. ~/.config/psguard/config.json (or an explicit path)
3. Environment: PSGUARD_SECURITY_LEVEL, PSGUARD_TIMEOUT, PSGUARD_HISTORY_DB

The Gemini API key is read from GEMINI_API_KEY by the command client and is
never written to the config file.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional

from .safety.models import SecurityLevel

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "psguard"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.json"
DEFAULT_HISTORY_DB = CONFIG_DIR / "history.db"

ENV_SECURITY_LEVEL = "PSGUARD_SECURITY_LEVEL"
ENV_TIMEOUT = "PSGUARD_TIMEOUT"
ENV_HISTORY_DB = "PSGUARD_HISTORY_DB"


class ConfigError(ValueError):
    """A configuration value is invalid."""


@dataclass
class AppConfig:
    """Settings consumed by the safety pipeline."""
    security_level: SecurityLevel = SecurityLevel.STANDARD
    custom_blacklist: List[str] = field(default_factory=list)
    custom_whitelist: List[str] = field(default_factory=list)  # Reserved
    history_retention_days: int = 30
    auto_cleanup: bool = True
    execution_timeout_seconds: int = 60
    history_db_path: str = str(DEFAULT_HISTORY_DB)
    interpreter: str = "powershell"
    gemini_model: str = "gemini-3-flash-preview"

    def __post_init__(self):
        self.security_level = _parse_level(self.security_level)
        self.execution_timeout_seconds = _positive_int(
            'execution_timeout_seconds', self.execution_timeout_seconds)
        self.history_retention_days = _positive_int(
            'history_retention_days', self.history_retention_days)
        self.custom_blacklist = _string_list('custom_blacklist', self.custom_blacklist)
        self.custom_whitelist = _string_list('custom_whitelist', self.custom_whitelist)
        self.auto_cleanup = bool(self.auto_cleanup)

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**known)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['security_level'] = self.security_level.value
        return data

    def save(self, path: Optional[Path] = None):
        """Write the config as JSON."""
        target = Path(path) if path else DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Configuration saved to {target}")


def _parse_level(value) -> SecurityLevel:
    try:
        return SecurityLevel.parse(value)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _positive_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _string_list(name: str, value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"{name} must be a list of strings")
    return [str(item) for item in value if str(item).strip()]


def _read_json(path: Path) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read config {path}: {e}; using defaults")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Config {path} is not a JSON object; using defaults")
        return {}
    return data


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from file and environment.

    Args:
        path: Config file (defaults to ~/.config/psguard/config.json)

    Raises:
        ConfigError: a value is present but invalid
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    data = _read_json(config_path)

    if os.environ.get(ENV_SECURITY_LEVEL):
        data['security_level'] = os.environ[ENV_SECURITY_LEVEL]
    if os.environ.get(ENV_TIMEOUT):
        data['execution_timeout_seconds'] = os.environ[ENV_TIMEOUT]
    if os.environ.get(ENV_HISTORY_DB):
        data['history_db_path'] = os.environ[ENV_HISTORY_DB]

    config = AppConfig.from_dict(data)
    logger.info(f"Configuration loaded (security level: {config.security_level.value})")
    return config
