"""Validated engine settings."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator


class EngineSettings(BaseModel):
    """Effective settings of one engine (defaults + config files + environment + flags)."""
    parallelism: int = Field(10, ge=1, description="Maximum in-flight provider operations")
    lock_timeout: Optional[float] = Field(None, ge=0, description="Seconds to wait for a held lock; None fails immediately")
    refresh: bool = Field(True, description="Re-read recorded resources before planning")
    state_path: str = Field(".converge/state.json", description="Path of the JSON state document")
    log_level: str = Field("WARNING", description="Logging level name")
    providers: Dict[str, str] = Field(default_factory=dict, description="Provider name to import path")
    provider_options: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Provider constructor options")

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level
