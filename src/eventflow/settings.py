"""Engine settings loaded from the environment."""
from __future__ import annotations

import os
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "EVENTFLOW_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class WorkflowSettings(BaseModel):
    """Defaults applied to every workflow definition and run."""

    model_config = ConfigDict(frozen=True)

    verbose: bool = Field(False, description="Record a dispatch trace and log each dispatch")
    timeout: Optional[float] = Field(None, description="Run deadline in seconds")
    strict: bool = Field(False, description="Fail runs on events no step accepts")
    validate_outputs: bool = Field(False, description="Enforce declared step output kinds")
    log_level: str = Field("INFO", description="Level used by configure_logging")

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "WorkflowSettings":
        """Build settings from ``EVENTFLOW_*`` variables, reading ``.env`` first."""
        if dotenv:
            load_dotenv()
        timeout = os.getenv(ENV_PREFIX + "TIMEOUT")
        return cls(
            verbose=_env_flag("DEBUG"),
            timeout=float(timeout) if timeout else None,
            strict=_env_flag("STRICT"),
            validate_outputs=_env_flag("VALIDATE"),
            log_level=os.getenv(ENV_PREFIX + "LOG_LEVEL", "INFO"),
        )


class RunOptions(BaseModel):
    """Configuration of a single run.

    Unset fields (``None``) fall back to the workflow definition, which in
    turn falls back to :class:`WorkflowSettings`.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    start: Any = None
    timeout: Optional[float] = None
    verbose: Optional[bool] = None
    strict: Optional[bool] = None
    validate_outputs: Optional[bool] = None
    context_factory: Optional[Callable[..., Any]] = None

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive")
        return value


_settings: Optional[WorkflowSettings] = None


def get_settings() -> WorkflowSettings:
    """Process-wide settings, loaded from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = WorkflowSettings.from_env()
    return _settings


def set_settings(settings: Optional[WorkflowSettings]) -> None:
    """Replace the process-wide settings; ``None`` reloads them on next use."""
    global _settings
    _settings = settings
