"""
Configuration for the Credential Lifecycle Engine.

Settings are read from a YAML or JSON file and validated into an
``EngineConfig``. Missing files fall back to defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CREDENTIAL_ENGINE_CONFIG"


class DispatchConfig(BaseModel):
    """Outbox and notification delivery settings."""
    background: bool = Field(True, description="Drain the outbox from a background thread")
    max_attempts: int = Field(3, ge=1, description="Delivery attempts per channel / audit write")
    retry_backoff_seconds: float = Field(0.5, ge=0)
    poll_interval_seconds: float = Field(0.2, gt=0)


class MailConfig(BaseModel):
    """Outbound mail settings. SMTP delivery itself is not handled here."""
    enabled: bool = True
    sender: str = "noreply@example.com"
    admin_email: str = "admin@company.com"
    frontend_url: str = "http://localhost:3000"


class EngineConfig(BaseModel):
    """Top-level engine configuration."""
    state_file: Optional[str] = Field(None, description="JSON state file; None keeps state in memory")
    audit_dir: Optional[str] = Field(None, description="Directory for JSONL audit logs; None keeps them in memory")
    lock_timeout_seconds: Optional[float] = Field(5.0, gt=0, description="Bound on waiting for an identity lock")
    log_level: str = "INFO"
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    mail: MailConfig = Field(default_factory=MailConfig)


def _read_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f) or {}
        return yaml.safe_load(f) or {}


def load_config(
    path: Optional[Union[str, Path]] = None, overrides: Optional[Dict[str, Any]] = None
) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML or JSON file. Defaults to the file named by the
              CREDENTIAL_ENGINE_CONFIG environment variable, if any.
        overrides: Top-level values applied on top of the file

    Returns:
        Validated EngineConfig
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)

    data: Dict[str, Any] = {}
    if path:
        config_path = Path(path)
        if config_path.exists():
            data = _read_file(config_path)
            logger.info(f"Loaded configuration from {config_path}")
        else:
            logger.warning(f"Configuration file not found: {config_path}; using defaults")

    if overrides:
        data.update(overrides)

    return EngineConfig.model_validate(data)
