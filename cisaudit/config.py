"""
Audit configuration
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError


class EnumerationPolicy(str, Enum):
    """What an assertion over zero enumerated entities reports"""
    PASS = "pass"      # vacuous truth: nothing enumerated, nothing violated
    SKIP = "skip"      # report "did not run" instead


class AuditConfig(BaseModel):
    """Settings for one audit run"""
    model_config = ConfigDict(extra="forbid")

    rules_dir: str = Field(default="rules/docker", description="Directory containing control files")
    command_timeout: float = Field(default=10.0, gt=0, description="Per-command timeout in seconds")
    workers: int = Field(default=4, ge=1, le=64, description="Controls evaluated in parallel")
    empty_enumeration: EnumerationPolicy = Field(
        default=EnumerationPolicy.PASS,
        description="Outcome of an enumeration that yields no entities"
    )
    os_release_path: str = Field(default="/etc/os-release", description="Source of OS host facts")
    log_level: str = Field(default="WARNING", description="Logging level name")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    def with_overrides(self, **overrides: Any) -> "AuditConfig":
        """Copy with the given fields replaced; None values are ignored"""
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return AuditConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(config_file: Optional[str] = None) -> AuditConfig:
    """Load configuration from a YAML file, or defaults when no file is given"""
    if not config_file:
        return AuditConfig()

    path = Path(config_file)
    if not path.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file}: expected a mapping of settings")

    try:
        return AuditConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e
